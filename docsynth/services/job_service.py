"""Generation job lifecycle."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..database import utcnow
from ..exceptions import BusinessRuleError, InvalidStateTransitionError
from ..models import GenerationJob, GenerationStatus, GenerationTrigger, PIPELINE_ORDER
from ..queue import JobQueue, names
from ..repositories import (
    ChangeAnalysisRepository,
    GenerationJobRepository,
    IntentContextRepository,
    RepoRepository,
)
from ..schemas.messages import DocGenerationMessage, DocReviewMessage, IntentInferenceMessage

logger = logging.getLogger(__name__)

# Progress reported when a job enters each status.
STATUS_PROGRESS = {
    GenerationStatus.PENDING: 0,
    GenerationStatus.ANALYZING: 10,
    GenerationStatus.INFERRING: 30,
    GenerationStatus.GENERATING: 50,
    GenerationStatus.REVIEWING: 80,
    GenerationStatus.COMPLETED: 100,
}

# Stages a failed job can be resumed from.
RETRYABLE_STAGES = (names.INTENT_INFERENCE, names.DOC_GENERATION, names.DOC_REVIEW)


class JobService:
    """
    Owns every mutation of a ``GenerationJob``.

    Jobs move forward through PENDING -> ANALYZING -> INFERRING ->
    GENERATING -> REVIEWING -> COMPLETED; FAILED is reachable from any
    non-terminal status. Progress never decreases. Every status change is
    appended to the job's history.
    """

    def __init__(self, db: Session, queue: Optional[JobQueue] = None):
        self.db = db
        self.queue = queue
        self.jobs = GenerationJobRepository(db)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_for_analysis(self, change_analysis_id: str, repository_id: str,
                            pr_number: Optional[int]) -> GenerationJob:
        """
        Create the job for a change analysis.

        Returns the existing job when the analysis already has one, so a
        re-run of the analysis stage does not create a second job.
        """
        existing = self.jobs.get_by_analysis(change_analysis_id)
        if existing is not None:
            return existing

        if pr_number is not None:
            active = self.jobs.get_active_for_pr(repository_id, pr_number)
            if active is not None:
                raise BusinessRuleError(
                    f"PR #{pr_number} already has an in-flight generation job {active.id}",
                    details={"generation_job_id": active.id},
                )

        job = GenerationJob(
            repository_id=repository_id,
            change_analysis_id=change_analysis_id,
            trigger=GenerationTrigger.PR.value,
            pr_number=pr_number,
            status=GenerationStatus.PENDING.value,
            progress=0,
        )
        self._record(job, GenerationStatus.PENDING)
        self.jobs.add(job)
        self.db.commit()
        logger.info(f"Created generation job {job.id} for analysis {change_analysis_id}")
        return job

    def create_for_drift(self, repository_id: str, document_id: str,
                         drift_prediction_id: Optional[str]) -> GenerationJob:
        """A drift-triggered job starts at REVIEWING: the document was already regenerated."""
        active = self.jobs.get_active_for_document(document_id)
        if active is not None:
            raise BusinessRuleError(
                f"Document {document_id} already has an in-flight generation job {active.id}",
                details={"generation_job_id": active.id},
            )
        now = utcnow()
        job = GenerationJob(
            repository_id=repository_id,
            trigger=GenerationTrigger.DRIFT.value,
            document_id=document_id,
            drift_prediction_id=drift_prediction_id,
            status=GenerationStatus.PENDING.value,
            progress=0,
            started_at=now,
        )
        self._record(job, GenerationStatus.PENDING)
        for status in (GenerationStatus.GENERATING, GenerationStatus.REVIEWING):
            job.status = status.value
            job.progress = STATUS_PROGRESS[status]
            self._record(job, status)
        self.jobs.add(job)
        self.db.commit()
        logger.info(f"Created drift generation job {job.id} for document {document_id}")
        return job

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self, job_id: str, status: GenerationStatus, progress: Optional[int] = None) -> GenerationJob:
        """
        Move a job forward to *status*.

        A redelivered stage asking for a status the job already passed is a
        no-op. Terminal jobs cannot move.

        Raises:
            InvalidStateTransitionError: the job is terminal, or *status* is FAILED.
        """
        job = self.jobs.get_by_id(job_id)
        current = GenerationStatus(job.status)
        if status == GenerationStatus.FAILED:
            raise InvalidStateTransitionError("generation job", current.value, status.value)
        if current.is_terminal:
            raise InvalidStateTransitionError("generation job", current.value, status.value)

        if PIPELINE_ORDER.index(status) < PIPELINE_ORDER.index(current):
            logger.info(f"Job {job_id} already past {status.value} (at {current.value}); ignoring")
            return job

        target_progress = progress if progress is not None else STATUS_PROGRESS[status]
        changed = status != current
        job.status = status.value
        job.progress = max(job.progress or 0, min(max(target_progress, 0), 100))
        if job.started_at is None and status != GenerationStatus.PENDING:
            job.started_at = utcnow()
        if status == GenerationStatus.COMPLETED:
            job.completed_at = utcnow()
        if changed:
            self._record(job, status)
        self.db.commit()
        if changed:
            logger.info(f"Job {job_id}: {current.value} -> {status.value} ({job.progress}%)")
        return job

    def update_progress(self, job_id: str, progress: int) -> GenerationJob:
        """Raise progress within the current status; lower values are ignored."""
        if not 0 <= progress <= 100:
            raise ValueError(f"progress must be within 0..100, got {progress}")
        job = self.jobs.get_by_id(job_id)
        if GenerationStatus(job.status).is_terminal:
            return job
        if progress > (job.progress or 0):
            job.progress = progress
            self.db.commit()
        return job

    def complete(self, job_id: str, result: Optional[Dict[str, Any]] = None) -> GenerationJob:
        job = self.advance(job_id, GenerationStatus.COMPLETED)
        if result is not None:
            job.result = {**(job.result or {}), **result}
            self.db.commit()
        return job

    def record_result(self, job_id: str, **fields: Any) -> GenerationJob:
        """Merge *fields* into the job's result. Caller commits."""
        job = self.jobs.get_by_id(job_id)
        job.result = {**(job.result or {}), **fields}
        return job

    def fail(self, job_id: str, error_message: str, stage: Optional[str] = None) -> GenerationJob:
        """Mark a job FAILED, remembering the stage to resume from. Idempotent."""
        job = self.jobs.get_by_id(job_id)
        current = GenerationStatus(job.status)
        if current == GenerationStatus.FAILED:
            return job
        if current.is_terminal:
            raise InvalidStateTransitionError("generation job", current.value, GenerationStatus.FAILED.value)

        job.status = GenerationStatus.FAILED.value
        job.error_message = error_message
        job.failed_stage = stage
        job.completed_at = utcnow()
        self._record(job, GenerationStatus.FAILED)
        self.db.commit()
        logger.warning(f"Job {job_id} failed at {stage or current.value}: {error_message}")
        return job

    def retry(self, job_id: str) -> GenerationJob:
        """
        Operator retry of a FAILED job.

        Resets the job to PENDING with progress 0 and re-enqueues the entry
        message of the stage that failed.

        Raises:
            BusinessRuleError: the job is not FAILED or has no resumable stage.
        """
        job = self.jobs.get_by_id(job_id)
        if job.status != GenerationStatus.FAILED.value:
            raise BusinessRuleError(
                f"Only failed jobs can be retried; job {job_id} is {job.status}",
                details={"status": job.status},
            )
        stage = job.failed_stage if job.failed_stage in RETRYABLE_STAGES else None
        if stage is None and job.trigger == GenerationTrigger.DRIFT.value:
            stage = names.DOC_REVIEW
        if stage is None:
            raise BusinessRuleError(
                f"Job {job_id} has no stage to resume from",
                details={"failed_stage": job.failed_stage},
            )
        if self.queue is None:
            raise BusinessRuleError("Retrying a job requires a queue")

        stage, payload = self._entry_message(job, stage)
        job.status = GenerationStatus.PENDING.value
        job.progress = 0
        job.retry_count = (job.retry_count or 0) + 1
        job.error_message = None
        job.completed_at = None
        self._record(job, GenerationStatus.PENDING)
        self.db.commit()

        entity_id = job.id if stage == names.DOC_REVIEW else job.change_analysis_id
        self.queue.enqueue(stage, payload, job_id=names.stage_job_id(stage, entity_id, retry=job.retry_count))
        logger.info(f"Operator retry {job.retry_count} of job {job_id} from {stage}")
        return job

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> GenerationJob:
        return self.jobs.get_by_id(job_id)

    def list_jobs(self, repository_id: Optional[str] = None, status: Optional[str] = None,
                  limit: int = 20) -> List[GenerationJob]:
        return self.jobs.list_jobs(repository_id=repository_id, status=status, limit=limit)

    # ------------------------------------------------------------------

    def _entry_message(self, job: GenerationJob, stage: str) -> Tuple[str, Dict[str, Any]]:
        repo = RepoRepository(self.db).get_by_id(job.repository_id)
        if stage == names.DOC_REVIEW:
            intent = (IntentContextRepository(self.db).get_by_analysis(job.change_analysis_id)
                      if job.change_analysis_id else None)
            return stage, DocReviewMessage(
                generation_job_id=job.id,
                repository_id=repo.id,
                installation_id=repo.installation_id,
                change_analysis_id=job.change_analysis_id,
                intent_context_id=intent.id if intent else None,
            ).to_payload()

        analysis = ChangeAnalysisRepository(self.db).get_by_id(job.change_analysis_id)
        if stage == names.DOC_GENERATION:
            intent = IntentContextRepository(self.db).get_by_analysis(analysis.id)
            if intent is not None:
                return stage, DocGenerationMessage(
                    change_analysis_id=analysis.id,
                    intent_context_id=intent.id,
                    repository_id=repo.id,
                    installation_id=repo.installation_id,
                ).to_payload()
            # No intent was stored; resume one stage earlier.
        return names.INTENT_INFERENCE, IntentInferenceMessage(
            change_analysis_id=analysis.id,
            repository_id=repo.id,
            installation_id=repo.installation_id,
        ).to_payload()

    @staticmethod
    def _record(job: GenerationJob, status: GenerationStatus) -> None:
        # Reassign so SQLAlchemy sees the JSON column change.
        job.history = list(job.history or []) + [{
            "status": status.value,
            "progress": job.progress or 0,
            "at": utcnow().isoformat(),
        }]
