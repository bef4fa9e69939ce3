"""doc-review: score generated documents and route the QA session."""

import logging
from typing import List, Optional

from ..models import GenerationJob, GenerationStatus, QASessionStatus, QuestionStatus
from ..queue import JobContext, names
from ..repositories import ChangeAnalysisRepository, DocumentRepository, QASessionRepository, RepoRepository
from ..schemas.intent import PullRequestContext
from ..schemas.messages import DocReviewMessage
from ..schemas.qa import ReviewDocument
from ..services.job_service import JobService
from ..services.qa_gate import (
    build_auto_approved_comment,
    build_manual_review_comment,
    build_questions_comment,
)
from ..services.qa_session_service import QASessionService
from .base import StageHandler, pr_context_for

logger = logging.getLogger(__name__)

_ROUTED = (QASessionStatus.APPROVED.value, QASessionStatus.AWAITING_RESPONSE.value,
           QASessionStatus.COMPLETED.value)


def _document_paths(db, job: GenerationJob) -> List[str]:
    paths = list((job.result or {}).get("documents") or [])
    if not paths and job.document_id:
        paths = [DocumentRepository(db).get_by_id(job.document_id).path]
    return paths


class DocReviewHandler(StageHandler):
    queue_name = names.DOC_REVIEW

    async def handle(self, ctx: JobContext) -> None:
        msg = DocReviewMessage.parse_payload(ctx.payload)
        log_extra = {"queue": ctx.queue_name, "job_id": ctx.job_id}

        with self.container.session() as db:
            jobs = JobService(db)
            job = jobs.get(msg.generation_job_id)
            if job.status == GenerationStatus.COMPLETED.value:
                logger.info(f"Job {job.id} already reviewed", extra=log_extra)
                return
            jobs.advance(job.id, GenerationStatus.REVIEWING)
            paths = _document_paths(db, job)
            qa = QASessionService(db)
            session = qa.create_session(job.repository_id, job.id, job.pr_number, paths)
            session_id = session.id
            routed = session.status in _ROUTED

            if job.change_analysis_id:
                analysis = ChangeAnalysisRepository(db).get_by_id(job.change_analysis_id)
                pr = pr_context_for(db, analysis)
                code_context = self._code_context(analysis)
            else:
                repo = RepoRepository(db).get_by_id(job.repository_id)
                pr = PullRequestContext(owner=repo.owner, repo=repo.name,
                                        title=f"Drift refresh of {', '.join(paths)}")
                code_context = "Documents regenerated after drift was detected."

            if not routed:
                qa.start_review(session_id)
                documents = DocumentRepository(db)
                review_docs = []
                for path in paths:
                    doc = documents.require_by_path(job.repository_id, path)
                    review_docs.append(ReviewDocument(path=doc.path, title=doc.title, content=doc.content))

        if not routed:
            await ctx.update_progress(20)
            analysis_result = await self.container.qa_gate.analyze_documentation(review_docs, code_context, pr)
            await ctx.update_progress(70)
            with self.container.session() as db:
                QASessionService(db).record_analysis(session_id, analysis_result)

        await self._announce(session_id, pr, log_extra)

        with self.container.session() as db:
            session = QASessionRepository(db).get_by_id(session_id)
            JobService(db).complete(msg.generation_job_id, {
                "qa_session_id": session.id,
                "qa_status": session.status,
            })
        logger.info(f"Job {msg.generation_job_id} reviewed; QA session {session_id} is {session.status}",
                    extra=log_extra)

    async def _announce(self, session_id: str, pr: PullRequestContext, log_extra: dict) -> None:
        """Post the routing outcome on the PR once."""
        with self.container.session() as db:
            session = QASessionRepository(db).get_by_id(session_id)
            if session.pr_number is None or session.comment_id is not None:
                return
            score = session.confidence_score or 0.0
            paths = list(session.document_paths or [])
            if session.status == QASessionStatus.APPROVED.value:
                body = build_auto_approved_comment(score, paths, session.suggested_improvements or [])
            elif any(q.status == QuestionStatus.PENDING.value for q in session.questions):
                body = build_questions_comment(
                    [q for q in session.questions if q.status == QuestionStatus.PENDING.value], score,
                )
            else:
                body = build_manual_review_comment(score, paths)
            pr_number = session.pr_number

        comment = await self.container.source_control.create_pr_comment(pr.owner, pr.repo, pr_number, body)
        with self.container.session() as db:
            QASessionService(db).set_comment_id(session_id, (comment or {}).get("id"))
        logger.info(f"Posted QA outcome on {pr.full_name}#{pr_number}", extra=log_extra)

    @staticmethod
    def _code_context(analysis) -> str:
        result = ChangeAnalysisRepository.to_result(analysis)
        lines = [result.summary]
        for change in result.changes:
            lines.append(f"- {change.path} ({change.change_type.value}, +{change.additions}/-{change.deletions})")
            lines.extend(f"  - {s.type.value}: {s.name}" for s in change.semantic_changes)
        return "\n".join(lines)

    def generation_job_id(self, ctx: JobContext) -> Optional[str]:
        return ctx.payload.get("generationJobId")
