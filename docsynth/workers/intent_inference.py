"""intent-inference: explain why the change was made."""

import logging
from typing import Optional

from ..exceptions import JobValidationError
from ..models import GenerationStatus
from ..queue import JobContext, names
from ..repositories import ChangeAnalysisRepository, IntentContextRepository
from ..schemas.messages import DocGenerationMessage, IntentInferenceMessage
from ..services.job_service import JobService
from .base import StageHandler, pr_context_for

logger = logging.getLogger(__name__)


class IntentInferenceHandler(StageHandler):
    queue_name = names.INTENT_INFERENCE

    async def handle(self, ctx: JobContext) -> None:
        msg = IntentInferenceMessage.parse_payload(ctx.payload)

        with self.container.session() as db:
            analysis = ChangeAnalysisRepository(db).get_by_id(msg.change_analysis_id)
            jobs = JobService(db)
            job = jobs.jobs.get_by_analysis(analysis.id)
            if job is None:
                raise JobValidationError(f"Change analysis {analysis.id} has no generation job",
                                         field="changeAnalysisId")
            jobs.advance(job.id, GenerationStatus.INFERRING)
            existing = IntentContextRepository(db).get_by_analysis(analysis.id)
            intent_id = existing.id if existing is not None else None
            pr = pr_context_for(db, analysis)
            changes = ChangeAnalysisRepository.to_result(analysis).changes

        if intent_id is None:
            intent = await self.container.intent_engine.infer(pr, changes)
            await ctx.update_progress(80)
            with self.container.session() as db:
                context = IntentContextRepository(db).create(msg.change_analysis_id, intent)
                db.commit()
                intent_id = context.id
            logger.info(
                f"Inferred intent for {pr.full_name}#{pr.number}"
                + (" (fallback)" if intent.degraded else ""),
                extra={"queue": ctx.queue_name, "job_id": ctx.job_id},
            )

        self.enqueue(
            names.DOC_GENERATION,
            DocGenerationMessage(
                change_analysis_id=msg.change_analysis_id,
                intent_context_id=intent_id,
                repository_id=msg.repository_id,
                installation_id=msg.installation_id,
            ),
            msg.change_analysis_id,
        )

    def generation_job_id(self, ctx: JobContext) -> Optional[str]:
        return self.job_for_analysis(ctx.payload.get("changeAnalysisId"))
