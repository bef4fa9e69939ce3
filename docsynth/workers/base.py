"""Shared plumbing for stage handlers."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..container import Container
from ..models import ChangeAnalysis
from ..queue import JobContext, JobHandle, names
from ..repositories import PREventRepository, RepoRepository
from ..schemas.intent import PullRequestContext
from ..schemas.messages import QueueMessage
from ..services.job_service import JobService

logger = logging.getLogger(__name__)


def pr_context_for(db: Session, analysis: ChangeAnalysis) -> PullRequestContext:
    """The PR behind a change analysis, as the LLM stages see it."""
    event = PREventRepository(db).get_by_id(analysis.pr_event_id)
    repo = RepoRepository(db).get_by_id(analysis.repository_id)
    return PullRequestContext(
        owner=repo.owner,
        repo=repo.name,
        number=event.pr_number,
        title=event.title or "",
        body=event.body,
        author=event.author,
    )


class StageHandler:
    """
    One queue's job handler.

    Subclasses implement ``handle``. When the queue gives up on a job,
    ``on_exhausted`` marks the owning generation job FAILED at
    ``resume_stage`` so an operator retry resumes there.
    """

    queue_name = ""
    resume_stage: Optional[str] = None

    def __init__(self, container: Container) -> None:
        self.container = container

    async def __call__(self, ctx: JobContext) -> None:
        await self.handle(ctx)

    async def handle(self, ctx: JobContext) -> None:
        raise NotImplementedError

    def generation_job_id(self, ctx: JobContext) -> Optional[str]:
        """Generation job owning *ctx*, if it can be found from the raw payload."""
        return None

    async def on_exhausted(self, ctx: JobContext, exc: BaseException) -> None:
        job_id = self.generation_job_id(ctx)
        if job_id is None:
            logger.warning(
                f"{ctx.queue_name}/{ctx.job_id} exhausted its attempts: {exc}",
                extra={"queue": ctx.queue_name, "job_id": ctx.job_id},
            )
            return
        with self.container.session() as db:
            JobService(db).fail(job_id, str(exc) or exc.__class__.__name__,
                                stage=self.resume_stage or self.queue_name)

    def enqueue(self, queue_name: str, message: QueueMessage, entity_id: str) -> JobHandle:
        """Enqueue the next stage under its deterministic job id."""
        return self.container.queue.enqueue(
            queue_name,
            message.to_payload(),
            job_id=names.stage_job_id(queue_name, entity_id),
        )

    def job_for_analysis(self, change_analysis_id: Optional[str]) -> Optional[str]:
        if not change_analysis_id:
            return None
        with self.container.session() as db:
            job = JobService(db).jobs.get_by_analysis(change_analysis_id)
            return job.id if job is not None else None
