"""change-analysis: classify a PR's files and open its generation job."""

import logging
from typing import Any, Dict, Optional

from ..exceptions import BusinessRuleError
from ..models import GenerationStatus
from ..queue import JobContext, names
from ..repositories import ChangeAnalysisRepository, PREventRepository
from ..schemas.changes import ChangeType, FileChange
from ..schemas.messages import ChangeAnalysisMessage, IntentInferenceMessage
from ..services.job_service import JobService
from .base import StageHandler

logger = logging.getLogger(__name__)

_GITHUB_STATUS = {
    "added": ChangeType.ADDED,
    "removed": ChangeType.DELETED,
}


def file_change_from_github(entry: Dict[str, Any]) -> FileChange:
    """Map one entry of GitHub's "list pull request files" response."""
    return FileChange(
        path=entry.get("filename") or "",
        change_type=_GITHUB_STATUS.get(entry.get("status"), ChangeType.MODIFIED),
        additions=entry.get("additions") or 0,
        deletions=entry.get("deletions") or 0,
        patch=entry.get("patch"),
        previous_path=entry.get("previous_filename"),
    )


class ChangeAnalysisHandler(StageHandler):
    queue_name = names.CHANGE_ANALYSIS
    resume_stage = names.INTENT_INFERENCE

    async def handle(self, ctx: JobContext) -> None:
        msg = ChangeAnalysisMessage.parse_payload(ctx.payload)
        log_extra = {"queue": ctx.queue_name, "job_id": ctx.job_id}

        with self.container.session() as db:
            analysis = ChangeAnalysisRepository(db).get_by_pr_event(msg.pr_event_id)
            analysis_id = analysis.id if analysis is not None else None

        if analysis_id is None:
            files = await self.container.source_control.get_pull_request_files(
                msg.owner, msg.repo, msg.pr_number,
            )
            await ctx.update_progress(40)
            result = self.container.analyzer.analyze([file_change_from_github(f) for f in files])
            with self.container.session() as db:
                event = PREventRepository(db).get_by_id(msg.pr_event_id)
                analysis = ChangeAnalysisRepository(db).create(event, result)
                db.commit()
                analysis_id = analysis.id
            logger.info(
                f"Analyzed {msg.owner}/{msg.repo}#{msg.pr_number}: {result.priority.value}, "
                f"{len(result.changes)} file(s)",
                extra=log_extra,
            )
        await ctx.update_progress(70)

        with self.container.session() as db:
            analysis = ChangeAnalysisRepository(db).get_by_id(analysis_id)
            if not analysis.requires_documentation:
                logger.info(f"No documentation needed for PR #{msg.pr_number}", extra=log_extra)
                return
            jobs = JobService(db)
            try:
                job = jobs.create_for_analysis(analysis.id, msg.repository_id, msg.pr_number)
            except BusinessRuleError as e:
                logger.info(f"Skipping PR #{msg.pr_number}: {e.message}", extra=log_extra)
                return
            jobs.advance(job.id, GenerationStatus.ANALYZING)

        self.enqueue(
            names.INTENT_INFERENCE,
            IntentInferenceMessage(
                change_analysis_id=analysis_id,
                repository_id=msg.repository_id,
                installation_id=msg.installation_id,
            ),
            analysis_id,
        )

    def generation_job_id(self, ctx: JobContext) -> Optional[str]:
        pr_event_id = ctx.payload.get("prEventId")
        if not pr_event_id:
            return None
        with self.container.session() as db:
            analysis = ChangeAnalysisRepository(db).get_by_pr_event(pr_event_id)
            analysis_id = analysis.id if analysis is not None else None
        return self.job_for_analysis(analysis_id)
