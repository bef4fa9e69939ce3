"""QA gate schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.qa import QuestionCategory, QuestionPriority, QuestionType, QASessionStatus


class QuestionDraft(BaseModel):
    """A question proposed by the scorer, before it is stored."""
    question_type: QuestionType
    category: QuestionCategory = QuestionCategory.BEHAVIOR
    question: str = Field(min_length=1)
    context: str = ""
    document_path: str
    line_start: Optional[int] = Field(default=None, ge=0)
    line_end: Optional[int] = Field(default=None, ge=0)
    priority: QuestionPriority = QuestionPriority.MEDIUM


class QAAnalysisResult(BaseModel):
    questions: List[QuestionDraft] = []
    confidence_score: float = Field(ge=0.0, le=100.0)
    can_auto_approve: bool
    suggested_improvements: List[str] = []
    degraded: bool = False

    @property
    def critical_count(self) -> int:
        return sum(1 for q in self.questions if q.priority == QuestionPriority.CRITICAL)


class QADecision(BaseModel):
    """Where a reviewed session goes next."""
    status: QASessionStatus
    auto_approved: bool
    notice: Optional[str] = None


class ReviewDocument(BaseModel):
    """A document handed to the scorer or to refinement."""
    path: str
    title: str = ""
    content: str


class QAQuestionResponse(BaseModel):
    id: str
    question_type: str
    category: str
    priority: str
    question: str
    context: Optional[str] = None
    document_path: str
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    status: str
    answer: Optional[str] = None
    answered_by: Optional[str] = None
    answered_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QASessionResponse(BaseModel):
    id: str
    repository_id: str
    generation_job_id: Optional[str] = None
    pr_number: Optional[int] = None
    status: str
    confidence_score: Optional[float] = None
    auto_approved: bool
    document_paths: List[str] = []
    suggested_improvements: List[str] = []
    notice: Optional[str] = None
    error_note: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    questions: List[QAQuestionResponse] = []

    class Config:
        from_attributes = True


class AnswerRequest(BaseModel):
    answer: str
    answered_by: Optional[str] = None

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Answer must not be empty")
        return v


class ApproveRequest(BaseModel):
    approved_by: Optional[str] = None
    skip_pending: bool = False


class AnswerOutcome(BaseModel):
    """Result of recording an answer or skip."""
    session_id: str
    question_id: str
    question_status: str
    pending_remaining: int
    refinement_queued: bool = False
