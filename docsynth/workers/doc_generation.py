"""doc-generation: write the documents a change calls for."""

import logging
from typing import Dict, Optional

from ..exceptions import JobValidationError
from ..models import GenerationStatus
from ..queue import JobContext, names
from ..repositories import ChangeAnalysisRepository, DocumentRepository, IntentContextRepository, RepoRepository
from ..schemas.messages import DocGenerationMessage, DocReviewMessage
from ..services.doc_generator import API_REFERENCE_PATH, CHANGELOG_PATH, README_PATH
from ..services.job_service import JobService
from .base import StageHandler, pr_context_for

logger = logging.getLogger(__name__)

CANDIDATE_PATHS = (README_PATH, CHANGELOG_PATH, API_REFERENCE_PATH)


class DocGenerationHandler(StageHandler):
    queue_name = names.DOC_GENERATION

    async def handle(self, ctx: JobContext) -> None:
        msg = DocGenerationMessage.parse_payload(ctx.payload)

        with self.container.session() as db:
            analysis = ChangeAnalysisRepository(db).get_by_id(msg.change_analysis_id)
            intent = IntentContextRepository(db).get_by_id(msg.intent_context_id)
            jobs = JobService(db)
            job = jobs.jobs.get_by_analysis(analysis.id)
            if job is None:
                raise JobValidationError(f"Change analysis {analysis.id} has no generation job",
                                         field="changeAnalysisId")
            job_id = job.id
            jobs.advance(job_id, GenerationStatus.GENERATING)
            pr = pr_context_for(db, analysis)
            analysis_result = ChangeAnalysisRepository.to_result(analysis)
            intent_result = IntentContextRepository.to_result(intent)
            repo = RepoRepository(db).get_by_id(msg.repository_id)
            branch = repo.default_branch
            documents = DocumentRepository(db)
            existing: Dict[str, str] = {}
            for path in CANDIDATE_PATHS:
                doc = documents.get_by_path(msg.repository_id, path)
                if doc is not None:
                    existing[path] = doc.content

        for path in CANDIDATE_PATHS:
            if path not in existing:
                content = await self.container.source_control.get_file_content(pr.owner, pr.repo, path, ref=branch)
                if content is not None:
                    existing[path] = content
        await ctx.update_progress(20)

        result = await self.container.generator.generate(pr, analysis_result, intent_result, existing)
        await ctx.update_progress(80)

        with self.container.session() as db:
            documents = DocumentRepository(db)
            metadata = {"trigger": "pr", "job_id": job_id, "provider": result.provider}
            for generated in result.documents:
                documents.upsert_generated(msg.repository_id, generated, metadata, pr_number=pr.number)
            JobService(db).record_result(
                job_id,
                documents=[d.path for d in result.documents],
                provider=result.provider,
            )
            db.commit()
        logger.info(
            f"Stored {len(result.documents)} document(s) for job {job_id}",
            extra={"queue": ctx.queue_name, "job_id": ctx.job_id},
        )

        self.enqueue(
            names.DOC_REVIEW,
            DocReviewMessage(
                generation_job_id=job_id,
                repository_id=msg.repository_id,
                installation_id=msg.installation_id,
                change_analysis_id=msg.change_analysis_id,
                intent_context_id=msg.intent_context_id,
            ),
            job_id,
        )

    def generation_job_id(self, ctx: JobContext) -> Optional[str]:
        return self.job_for_analysis(ctx.payload.get("changeAnalysisId"))
