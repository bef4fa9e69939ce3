"""Generation jobs."""

from typing import List, Optional

from ..models import GenerationJob, GenerationStatus
from ..exceptions import GenerationJobNotFoundError
from .base import BaseRepository

_TERMINAL = (GenerationStatus.COMPLETED.value, GenerationStatus.FAILED.value)


class GenerationJobRepository(BaseRepository[GenerationJob]):
    model_class = GenerationJob
    not_found_error = GenerationJobNotFoundError

    def get_by_analysis(self, change_analysis_id: str) -> Optional[GenerationJob]:
        return (
            self.db.query(GenerationJob)
            .filter(GenerationJob.change_analysis_id == change_analysis_id)
            .first()
        )

    def get_active_for_pr(self, repository_id: str, pr_number: int) -> Optional[GenerationJob]:
        return (
            self.db.query(GenerationJob)
            .filter(
                GenerationJob.repository_id == repository_id,
                GenerationJob.pr_number == pr_number,
                GenerationJob.status.notin_(_TERMINAL),
            )
            .first()
        )

    def get_active_for_document(self, document_id: str) -> Optional[GenerationJob]:
        return (
            self.db.query(GenerationJob)
            .filter(
                GenerationJob.document_id == document_id,
                GenerationJob.status.notin_(_TERMINAL),
            )
            .first()
        )

    def list_jobs(self, repository_id: Optional[str] = None, status: Optional[str] = None,
                  limit: int = 20) -> List[GenerationJob]:
        return self.list_recent(limit=limit, repository_id=repository_id, status=status)
