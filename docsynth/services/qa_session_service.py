"""QA session and question state machines (persistence side)."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..database import utcnow
from ..exceptions import BusinessRuleError, InvalidStateTransitionError, QASessionNotFoundError
from ..models import QAQuestion, QASession, QASessionStatus, QueueJobState, QuestionStatus
from ..queue import JobQueue, names
from ..repositories import DocumentRepository, QAQuestionRepository, QASessionRepository, RepoRepository
from ..schemas.messages import QARefinementMessage
from ..schemas.qa import AnswerOutcome, QAAnalysisResult, QADecision
from .qa_gate import ParsedAnswer, decide, is_approve_command, parse_answers_from_comment

logger = logging.getLogger(__name__)

SESSION_TRANSITIONS = {
    QASessionStatus.PENDING: {QASessionStatus.REVIEWING},
    QASessionStatus.REVIEWING: {QASessionStatus.APPROVED, QASessionStatus.AWAITING_RESPONSE},
    QASessionStatus.AWAITING_RESPONSE: {QASessionStatus.COMPLETED},
    QASessionStatus.APPROVED: set(),
    QASessionStatus.COMPLETED: set(),
}

QUESTION_TRANSITIONS = {
    QuestionStatus.PENDING: {QuestionStatus.ANSWERED, QuestionStatus.SKIPPED},
    QuestionStatus.ANSWERED: {QuestionStatus.APPLIED},
    QuestionStatus.SKIPPED: set(),
    QuestionStatus.APPLIED: set(),
}


@dataclass
class CommentOutcome:
    session_id: Optional[str] = None
    answered: int = 0
    skipped: int = 0
    approved: bool = False
    refinement_queued: bool = False
    messages: List[str] = field(default_factory=list)


class QASessionService:
    """
    Owns every mutation of QA sessions and their questions.

    Sessions: pending -> reviewing -> approved | awaiting_response,
    awaiting_response -> completed. A session never reaches completed
    while a question is pending. Questions: pending -> answered | skipped,
    answered -> applied.
    """

    def __init__(self, db: Session, queue: Optional[JobQueue] = None):
        self.db = db
        self.queue = queue
        self.sessions = QASessionRepository(db)
        self.questions = QAQuestionRepository(db)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def create_session(self, repository_id: str, generation_job_id: str, pr_number: Optional[int],
                       document_paths: Sequence[str]) -> QASession:
        """Create the session for a job, or return the one it already has."""
        existing = self.sessions.get_by_job(generation_job_id)
        if existing is not None:
            return existing
        session = QASession(
            repository_id=repository_id,
            generation_job_id=generation_job_id,
            pr_number=pr_number,
            status=QASessionStatus.PENDING.value,
            document_paths=list(document_paths),
        )
        self.sessions.add(session)
        self.db.commit()
        return session

    def start_review(self, session_id: str) -> QASession:
        session = self.sessions.get_by_id(session_id)
        if session.status == QASessionStatus.REVIEWING.value:
            return session
        self._transition(session, QASessionStatus.REVIEWING)
        self.db.commit()
        return session

    def record_analysis(self, session_id: str, analysis: QAAnalysisResult) -> Tuple[QASession, QADecision]:
        """
        Store the scorer's questions and route the session.

        On auto-approval the non-critical questions are kept for reference
        as ``skipped``.
        """
        session = self.sessions.get_by_id(session_id)
        if session.status != QASessionStatus.REVIEWING.value:
            raise InvalidStateTransitionError("QA session", session.status, "routed")

        decision = decide(analysis)
        questions = self.questions.add_batch(session, analysis.questions)
        session.confidence_score = analysis.confidence_score
        session.suggested_improvements = list(analysis.suggested_improvements)
        session.notice = decision.notice
        session.reviewed_at = utcnow()

        if decision.status == QASessionStatus.APPROVED:
            for question in questions:
                question.status = QuestionStatus.SKIPPED.value
            session.auto_approved = True
            self._transition(session, QASessionStatus.APPROVED)
            session.completed_at = utcnow()
        else:
            self._transition(session, QASessionStatus.AWAITING_RESPONSE)

        self.db.commit()
        logger.info(
            f"QA session {session.id} -> {session.status} "
            f"(confidence {analysis.confidence_score:.0f}, {len(questions)} question(s))"
        )
        return session, decision

    def set_comment_id(self, session_id: str, comment_id: Optional[str]) -> None:
        session = self.sessions.get_by_id(session_id)
        session.comment_id = str(comment_id) if comment_id is not None else None
        self.db.commit()

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def answer(self, session_id: str, question_id: str, answer: str,
               answered_by: Optional[str] = None) -> AnswerOutcome:
        answer = (answer or "").strip()
        if not answer:
            raise BusinessRuleError("Answer must not be empty")
        session, question = self._pending_question(session_id, question_id, QuestionStatus.ANSWERED)
        question.status = QuestionStatus.ANSWERED.value
        question.answer = answer
        question.answered_by = answered_by
        question.answered_at = utcnow()
        return self._after_response(session, question)

    def skip(self, session_id: str, question_id: str, skipped_by: Optional[str] = None) -> AnswerOutcome:
        session, question = self._pending_question(session_id, question_id, QuestionStatus.SKIPPED)
        question.status = QuestionStatus.SKIPPED.value
        question.answered_by = skipped_by
        question.answered_at = utcnow()
        return self._after_response(session, question)

    def apply_comment(self, repository_id: str, pr_number: int, body: str,
                      author: Optional[str] = None) -> CommentOutcome:
        """Apply answers and ``/qa approve`` from a PR comment to the PR's open session."""
        outcome = CommentOutcome()
        session = self.sessions.get_awaiting_for_pr(repository_id, pr_number)
        if session is None:
            outcome.messages.append("No QA session is awaiting answers on this pull request")
            return outcome
        outcome.session_id = session.id

        pending_ids = [q.id for q in session.questions if q.status == QuestionStatus.PENDING.value]
        parsed: List[ParsedAnswer] = parse_answers_from_comment(body, pending_ids)
        for item in parsed:
            if item.skip:
                result = self.skip(session.id, item.question_id, author)
                outcome.skipped += 1
            else:
                result = self.answer(session.id, item.question_id, item.answer, author)
                outcome.answered += 1
            outcome.refinement_queued |= result.refinement_queued

        if is_approve_command(body):
            if session.status == QASessionStatus.COMPLETED.value:
                # The answers above already resolved the session.
                outcome.approved = True
                return outcome
            try:
                approved = self.approve(session.id, approved_by=author)
            except (BusinessRuleError, InvalidStateTransitionError) as e:
                outcome.messages.append(e.message)
            else:
                outcome.approved = approved.status == QASessionStatus.COMPLETED.value
                outcome.refinement_queued |= not outcome.approved
        return outcome

    def approve(self, session_id: str, approved_by: Optional[str] = None,
                skip_pending: bool = False) -> QASession:
        """
        Manual approval of an ``awaiting_response`` session.

        Pending questions block approval unless *skip_pending* skips them.
        Answers not yet applied are refined first; the refinement completes
        the session.

        Raises:
            BusinessRuleError: questions are still pending.
            InvalidStateTransitionError: the session is not awaiting response.
        """
        session = self.sessions.get_by_id(session_id)
        if session.status != QASessionStatus.AWAITING_RESPONSE.value:
            raise InvalidStateTransitionError("QA session", session.status, QASessionStatus.COMPLETED.value)

        pending = [q for q in session.questions if q.status == QuestionStatus.PENDING.value]
        if pending and not skip_pending:
            raise BusinessRuleError(
                f"{len(pending)} question(s) are still pending; answer or skip them first",
                details={"pending": len(pending)},
            )
        now = utcnow()
        for question in pending:
            question.status = QuestionStatus.SKIPPED.value
            question.answered_by = approved_by
            question.answered_at = now

        if any(q.status == QuestionStatus.ANSWERED.value for q in session.questions):
            self.db.commit()
            self._enqueue_refinement(session)
            logger.info(f"QA session {session.id} approved by {approved_by}; refinement queued")
            return session

        self._complete(session)
        self.db.commit()
        logger.info(f"QA session {session.id} approved by {approved_by}")
        return session

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def documents_to_refine(self, session_id: str) -> Dict[str, List[QAQuestion]]:
        """Answered (not yet applied) questions grouped by document path."""
        session = self.sessions.get_by_id(session_id)
        grouped: Dict[str, List[QAQuestion]] = {}
        for question in session.questions:
            if question.status == QuestionStatus.ANSWERED.value:
                grouped.setdefault(question.document_path, []).append(question)
        return grouped

    def apply_refinement(self, session_id: str, document_path: str, content: str,
                         author_metadata: Dict[str, str]) -> int:
        """
        Write one refined document and mark its answered questions applied.

        The document write, its version row and the question transitions
        commit together; on any error nothing of this document is kept.
        """
        session = self.sessions.get_by_id(session_id)
        try:
            doc = DocumentRepository(self.db).require_by_path(session.repository_id, document_path)
            DocumentRepository(self.db).update_content(doc, content, "ai", author_metadata)
            now = utcnow()
            applied = 0
            for question in session.questions:
                if question.document_path == document_path and question.status == QuestionStatus.ANSWERED.value:
                    self._move_question(question, QuestionStatus.APPLIED)
                    question.applied_at = now
                    applied += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Refined {document_path} for QA session {session_id} ({applied} answer(s))")
        return applied

    def finish_refinement(self, session_id: str) -> QASession:
        """Complete the session once nothing is pending or waiting to be applied."""
        session = self.sessions.get_by_id(session_id)
        if session.status != QASessionStatus.AWAITING_RESPONSE.value:
            return session
        if any(q.status in (QuestionStatus.PENDING.value, QuestionStatus.ANSWERED.value)
               for q in session.questions):
            raise BusinessRuleError(f"QA session {session_id} still has unresolved questions")
        session.error_note = None
        self._complete(session)
        self.db.commit()
        logger.info(f"QA session {session_id} completed")
        return session

    def record_refinement_error(self, session_id: str, error: str) -> None:
        session = self.sessions.get_by_id(session_id)
        session.error_note = f"Refinement failed: {error}"
        self.db.commit()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> QASession:
        return self.sessions.get_by_id(session_id)

    def list_sessions(self, repository_id: Optional[str] = None, status: Optional[str] = None,
                      limit: int = 50) -> List[QASession]:
        return self.sessions.list_sessions(repository_id=repository_id, status=status, limit=limit)

    # ------------------------------------------------------------------

    def _pending_question(self, session_id: str, question_id: str,
                          target: QuestionStatus) -> Tuple[QASession, QAQuestion]:
        session = self.sessions.get_by_id_optional(session_id)
        if session is None:
            raise QASessionNotFoundError(session_id)
        question = self.questions.get_in_session(session_id, question_id)
        if session.status != QASessionStatus.AWAITING_RESPONSE.value:
            raise InvalidStateTransitionError("QA session", session.status, "answering")
        self._check_question(question, target)
        return session, question

    def _after_response(self, session: QASession, question: QAQuestion) -> AnswerOutcome:
        self.db.flush()
        pending = self.questions.count_by_status(session.id, QuestionStatus.PENDING)
        self.db.commit()

        queued = False
        if pending == 0:
            if any(q.status == QuestionStatus.ANSWERED.value for q in session.questions):
                queued = self._enqueue_refinement(session)
            else:
                # Everything was skipped; nothing to rewrite.
                self._complete(session)
                self.db.commit()
        return AnswerOutcome(
            session_id=session.id,
            question_id=question.id,
            question_status=question.status,
            pending_remaining=pending,
            refinement_queued=queued,
        )

    def _enqueue_refinement(self, session: QASession) -> bool:
        if self.queue is None:
            logger.warning(f"No queue configured; refinement of QA session {session.id} not scheduled")
            return False
        repo = RepoRepository(self.db).get_by_id(session.repository_id)
        message = QARefinementMessage(
            session_id=session.id,
            repository_id=repo.id,
            installation_id=repo.installation_id,
        )
        job_id = names.stage_job_id(names.QA_REFINEMENT, session.id)
        handle = self.queue.enqueue(names.QA_REFINEMENT, message.to_payload(), job_id=job_id)
        if handle.created:
            return True

        # Coalesced: a waiting or running job will pick the answers up.
        status = self.queue.get_status(names.QA_REFINEMENT, job_id)
        if status is None or status.state not in (QueueJobState.FAILED.value, QueueJobState.COMPLETED.value):
            return True
        if status.state == QueueJobState.FAILED.value:
            self.queue.retry_failed(names.QA_REFINEMENT, job_id)
            logger.info(f"Refinement of QA session {session.id} had failed; queued a fresh attempt")
            return True
        logger.warning(f"Refinement of QA session {session.id} already ran ({status.state}); not requeued")
        return False

    def _complete(self, session: QASession) -> None:
        if any(q.status == QuestionStatus.PENDING.value for q in session.questions):
            raise BusinessRuleError(f"QA session {session.id} cannot complete with pending questions")
        self._transition(session, QASessionStatus.COMPLETED)
        session.completed_at = utcnow()

    @staticmethod
    def _transition(session: QASession, target: QASessionStatus) -> None:
        current = QASessionStatus(session.status)
        if target not in SESSION_TRANSITIONS[current]:
            raise InvalidStateTransitionError("QA session", current.value, target.value)
        session.status = target.value

    @staticmethod
    def _check_question(question: QAQuestion, target: QuestionStatus) -> None:
        current = QuestionStatus(question.status)
        if target not in QUESTION_TRANSITIONS[current]:
            raise InvalidStateTransitionError("QA question", current.value, target.value)

    def _move_question(self, question: QAQuestion, target: QuestionStatus) -> None:
        self._check_question(question, target)
        question.status = target.value
