"""QA session and question models."""

from enum import Enum

from sqlalchemy import Column, String, Text, Integer, Float, Boolean, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from ..database import Base, new_id, utcnow


class QASessionStatus(str, Enum):
    PENDING = "pending"
    REVIEWING = "reviewing"
    AWAITING_RESPONSE = "awaiting_response"
    APPROVED = "approved"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (QASessionStatus.APPROVED, QASessionStatus.COMPLETED)


class QuestionType(str, Enum):
    AMBIGUITY = "ambiguity"
    MISSING_EXAMPLE = "missing_example"
    UNCLEAR_TERM = "unclear_term"
    VERIFICATION = "verification"
    EDGE_CASE = "edge_case"


class QuestionCategory(str, Enum):
    API = "api"
    BEHAVIOR = "behavior"
    USAGE = "usage"
    ARCHITECTURE = "architecture"
    TERMINOLOGY = "terminology"


class QuestionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class QuestionStatus(str, Enum):
    PENDING = "pending"
    ANSWERED = "answered"
    SKIPPED = "skipped"
    APPLIED = "applied"


class QASession(Base):
    """
    Review of the documents produced by one generation job.

    Status transitions: pending -> reviewing -> approved | awaiting_response,
    awaiting_response -> completed. ``QASessionService`` enforces them.
    """

    __tablename__ = "qa_sessions"
    __table_args__ = (
        Index("ix_qa_sessions_repo_pr", "repository_id", "pr_number"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    repository_id = Column(String(50), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    generation_job_id = Column(String(50), ForeignKey("generation_jobs.id", ondelete="SET NULL"),
                               nullable=True, unique=True)
    pr_number = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False, default=QASessionStatus.PENDING.value)
    confidence_score = Column(Float, nullable=True)  # 0-100
    auto_approved = Column(Boolean, nullable=False, default=False)
    document_paths = Column(JSON, nullable=False, default=list)
    suggested_improvements = Column(JSON, nullable=False, default=list)

    notice = Column(Text, nullable=True)      # e.g. manual review requested
    error_note = Column(Text, nullable=True)  # last refinement failure
    comment_id = Column(String(50), nullable=True)  # PR comment announcing the outcome

    created_at = Column(DateTime(timezone=True), default=utcnow)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    questions = relationship(
        "QAQuestion",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="QAQuestion.position",
    )


class QAQuestion(Base):
    """One question raised by the QA gate."""

    __tablename__ = "qa_questions"
    __table_args__ = (
        Index("ix_qa_questions_session", "session_id"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    session_id = Column(String(50), ForeignKey("qa_sessions.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)  # insertion order within the session

    question_type = Column(String(20), nullable=False)
    category = Column(String(20), nullable=False)
    priority = Column(String(10), nullable=False)
    question = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    document_path = Column(String(500), nullable=False)
    line_start = Column(Integer, nullable=True)
    line_end = Column(Integer, nullable=True)

    status = Column(String(10), nullable=False, default=QuestionStatus.PENDING.value)
    answer = Column(Text, nullable=True)
    answered_by = Column(String(100), nullable=True)
    answered_at = Column(DateTime(timezone=True), nullable=True)
    applied_at = Column(DateTime(timezone=True), nullable=True)

    session = relationship("QASession", back_populates="questions")
