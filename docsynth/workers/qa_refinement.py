"""qa-refinement: fold answered questions back into the documents."""

import logging

from ..models import QASessionStatus
from ..queue import JobContext, names
from ..repositories import DocumentRepository, QASessionRepository, RepoRepository
from ..schemas.messages import QARefinementMessage
from ..schemas.qa import ReviewDocument
from ..services.qa_gate import build_completion_comment
from ..services.qa_session_service import QASessionService
from .base import StageHandler

logger = logging.getLogger(__name__)


class QARefinementHandler(StageHandler):
    queue_name = names.QA_REFINEMENT

    async def handle(self, ctx: JobContext) -> None:
        msg = QARefinementMessage.parse_payload(ctx.payload)
        log_extra = {"queue": ctx.queue_name, "job_id": ctx.job_id}

        with self.container.session() as db:
            session = QASessionRepository(db).get_by_id(msg.session_id)
            if session.status != QASessionStatus.AWAITING_RESPONSE.value:
                logger.info(f"QA session {session.id} is {session.status}; nothing to refine", extra=log_extra)
                return
            grouped = QASessionService(db).documents_to_refine(session.id)
            documents = DocumentRepository(db)
            work = []
            for path, questions in grouped.items():
                doc = documents.require_by_path(session.repository_id, path)
                pairs = [(q.question, q.answer or "") for q in questions]
                work.append((ReviewDocument(path=doc.path, title=doc.title, content=doc.content), pairs))

        applied = 0
        try:
            for done, (document, pairs) in enumerate(work, 1):
                refined = await self.container.qa_gate.refine_document(document, pairs)
                with self.container.session() as db:
                    applied += QASessionService(db).apply_refinement(msg.session_id, document.path, refined.content, {
                        "trigger": "qa-refinement",
                        "session_id": msg.session_id,
                        "provider": refined.provider,
                    })
                await ctx.update_progress(10 + 80 * done // len(work))

            with self.container.session() as db:
                session = QASessionService(db).finish_refinement(msg.session_id)
                pr_number = session.pr_number
                paths = list(session.document_paths or [])
                repo = RepoRepository(db).get_by_id(session.repository_id)
                owner, name = repo.owner, repo.name
        except Exception as e:
            with self.container.session() as db:
                QASessionService(db).record_refinement_error(msg.session_id, str(e) or e.__class__.__name__)
            raise

        if pr_number is not None:
            await self.container.source_control.create_pr_comment(
                owner, name, pr_number, build_completion_comment(paths, applied),
            )
        logger.info(f"Refined QA session {msg.session_id}: {applied} answer(s) applied", extra=log_extra)
