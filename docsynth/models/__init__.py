"""SQLAlchemy models."""

from .repository import Repository
from .pr_event import PREvent
from .change_analysis import ChangeAnalysis, ChangePriority
from .intent_context import IntentContext
from .document import Document, DocumentVersion
from .drift_prediction import DriftPrediction, DriftStatus, RiskLevel, ACTIVE_DRIFT_STATUSES
from .generation_job import GenerationJob, GenerationStatus, GenerationTrigger, PIPELINE_ORDER
from .qa import (
    QASession,
    QAQuestion,
    QASessionStatus,
    QuestionType,
    QuestionCategory,
    QuestionPriority,
    QuestionStatus,
)
from .queue_job import QueueJob, QueueJobState, CLAIMABLE_STATES

__all__ = [
    "Repository",
    "PREvent",
    "ChangeAnalysis",
    "ChangePriority",
    "IntentContext",
    "Document",
    "DocumentVersion",
    "DriftPrediction",
    "DriftStatus",
    "RiskLevel",
    "ACTIVE_DRIFT_STATUSES",
    "GenerationJob",
    "GenerationStatus",
    "GenerationTrigger",
    "PIPELINE_ORDER",
    "QASession",
    "QAQuestion",
    "QASessionStatus",
    "QuestionType",
    "QuestionCategory",
    "QuestionPriority",
    "QuestionStatus",
    "QueueJob",
    "QueueJobState",
    "CLAIMABLE_STATES",
]
