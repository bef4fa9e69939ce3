"""Section diff and staging preview against a stored document."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..repositories import DocumentRepository
from ..schemas.diff import DiffRequest, DocDiff, PreviewRequest, PreviewResult
from ..services import diff_staging
from .deps import get_db

router = APIRouter(prefix="/api/diffs", tags=["diffs"])


def _diff_against_stored(db: Session, request: DiffRequest) -> DocDiff:
    doc = DocumentRepository(db).require_by_path(request.repository_id, request.document_path)
    return diff_staging.compute_diff(doc.content, request.proposed_content, document_path=doc.path)


@router.post("", response_model=DocDiff)
def compute_diff(request: DiffRequest, db: Session = Depends(get_db)):
    """Section-by-section diff of ``proposed_content`` against the stored document."""
    return _diff_against_stored(db, request)


@router.post("/preview", response_model=PreviewResult)
def preview(request: PreviewRequest, db: Session = Depends(get_db)):
    """Content after applying the staging decisions; undecided sections count as accepted."""
    diff = _diff_against_stored(db, request)
    session = diff_staging.stage(diff, request.decisions)
    return diff_staging.preview(diff, session)
