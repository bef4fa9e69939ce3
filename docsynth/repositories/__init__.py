"""Typed data access, one repository per entity."""

from .base import BaseRepository
from .repo_repository import RepoRepository
from .pr_event_repository import PREventRepository
from .change_analysis_repository import ChangeAnalysisRepository
from .intent_context_repository import IntentContextRepository
from .generation_job_repository import GenerationJobRepository
from .document_repository import DocumentRepository
from .qa_repository import QASessionRepository, QAQuestionRepository
from .drift_repository import DriftPredictionRepository

__all__ = [
    "BaseRepository",
    "RepoRepository",
    "PREventRepository",
    "ChangeAnalysisRepository",
    "IntentContextRepository",
    "GenerationJobRepository",
    "DocumentRepository",
    "QASessionRepository",
    "QAQuestionRepository",
    "DriftPredictionRepository",
]
