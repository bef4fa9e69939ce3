"""QA session endpoints: inspect sessions, answer or skip questions, approve."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..container import Container
from ..schemas.qa import AnswerOutcome, AnswerRequest, ApproveRequest, QASessionResponse
from ..services.qa_session_service import QASessionService
from .deps import get_container, get_db

router = APIRouter(prefix="/api/qa/sessions", tags=["qa"])


def _service(db: Session = Depends(get_db), container: Container = Depends(get_container)) -> QASessionService:
    return QASessionService(db, container.queue)


@router.get("", response_model=List[QASessionResponse])
def list_sessions(
    repository_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    service: QASessionService = Depends(_service),
):
    return service.list_sessions(repository_id=repository_id, status=status, limit=limit)


@router.get("/{session_id}", response_model=QASessionResponse)
def get_session(session_id: str, service: QASessionService = Depends(_service)):
    return service.get(session_id)


@router.post("/{session_id}/questions/{question_id}/answer", response_model=AnswerOutcome)
def answer_question(
    session_id: str,
    question_id: str,
    request: AnswerRequest,
    service: QASessionService = Depends(_service),
):
    """Answer a pending question. The last response queues refinement."""
    return service.answer(session_id, question_id, request.answer, request.answered_by)


@router.post("/{session_id}/questions/{question_id}/skip", response_model=AnswerOutcome)
def skip_question(
    session_id: str,
    question_id: str,
    skipped_by: Optional[str] = Query(None),
    service: QASessionService = Depends(_service),
):
    return service.skip(session_id, question_id, skipped_by)


@router.post("/{session_id}/approve", response_model=QASessionResponse)
def approve_session(
    session_id: str,
    request: ApproveRequest,
    service: QASessionService = Depends(_service),
):
    """Approve a session awaiting response.

    Pending questions block approval unless ``skip_pending`` is set. When
    answers are still unapplied the session stays ``awaiting_response``
    until the queued refinement completes it.
    """
    return service.approve(session_id, approved_by=request.approved_by, skip_pending=request.skip_pending)
