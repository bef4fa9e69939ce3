"""QA sessions and questions."""

from typing import List, Optional

from ..models import QASession, QAQuestion, QASessionStatus, QuestionStatus
from ..schemas.qa import QuestionDraft
from ..exceptions import QASessionNotFoundError, QAQuestionNotFoundError
from .base import BaseRepository

_OPEN_SESSION_STATES = (
    QASessionStatus.PENDING.value,
    QASessionStatus.REVIEWING.value,
    QASessionStatus.AWAITING_RESPONSE.value,
)


class QASessionRepository(BaseRepository[QASession]):
    model_class = QASession
    not_found_error = QASessionNotFoundError

    def get_by_job(self, generation_job_id: str) -> Optional[QASession]:
        return (
            self.db.query(QASession)
            .filter(QASession.generation_job_id == generation_job_id)
            .first()
        )

    def get_open_for_pr(self, repository_id: str, pr_number: int) -> Optional[QASession]:
        return (
            self.db.query(QASession)
            .filter(
                QASession.repository_id == repository_id,
                QASession.pr_number == pr_number,
                QASession.status.in_(_OPEN_SESSION_STATES),
            )
            .order_by(QASession.created_at.desc())
            .first()
        )

    def get_awaiting_for_pr(self, repository_id: str, pr_number: int) -> Optional[QASession]:
        return (
            self.db.query(QASession)
            .filter(
                QASession.repository_id == repository_id,
                QASession.pr_number == pr_number,
                QASession.status == QASessionStatus.AWAITING_RESPONSE.value,
            )
            .order_by(QASession.created_at.desc())
            .first()
        )

    def has_open_session_for_path(self, repository_id: str, path: str) -> bool:
        sessions = (
            self.db.query(QASession)
            .filter(
                QASession.repository_id == repository_id,
                QASession.status.in_(_OPEN_SESSION_STATES),
            )
            .all()
        )
        return any(path in (s.document_paths or []) for s in sessions)

    def list_sessions(self, repository_id: Optional[str] = None, status: Optional[str] = None,
                      limit: int = 50) -> List[QASession]:
        return self.list_recent(limit=limit, repository_id=repository_id, status=status)


class QAQuestionRepository(BaseRepository[QAQuestion]):
    model_class = QAQuestion
    not_found_error = QAQuestionNotFoundError

    def add_batch(self, session: QASession, drafts: List[QuestionDraft]) -> List[QAQuestion]:
        start = len(session.questions)
        questions = []
        for offset, draft in enumerate(drafts):
            question = QAQuestion(
                session_id=session.id,
                position=start + offset,
                question_type=draft.question_type.value,
                category=draft.category.value,
                priority=draft.priority.value,
                question=draft.question,
                context=draft.context,
                document_path=draft.document_path,
                line_start=draft.line_start,
                line_end=draft.line_end,
                status=QuestionStatus.PENDING.value,
            )
            session.questions.append(question)
            questions.append(question)
        self.db.flush()
        return questions

    def get_in_session(self, session_id: str, question_id: str) -> QAQuestion:
        question = (
            self.db.query(QAQuestion)
            .filter(QAQuestion.session_id == session_id, QAQuestion.id == question_id)
            .first()
        )
        if question is None:
            raise QAQuestionNotFoundError(question_id)
        return question

    def count_by_status(self, session_id: str, status: QuestionStatus) -> int:
        return (
            self.db.query(QAQuestion)
            .filter(QAQuestion.session_id == session_id, QAQuestion.status == status.value)
            .count()
        )
