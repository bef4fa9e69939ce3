"""Generation job model: one documentation change request end-to-end."""

from enum import Enum

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, JSON, Index
from ..database import Base, new_id, utcnow


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    INFERRING = "INFERRING"
    GENERATING = "GENERATING"
    REVIEWING = "REVIEWING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)


# Pipeline order; FAILED sits outside it.
PIPELINE_ORDER = [
    GenerationStatus.PENDING,
    GenerationStatus.ANALYZING,
    GenerationStatus.INFERRING,
    GenerationStatus.GENERATING,
    GenerationStatus.REVIEWING,
    GenerationStatus.COMPLETED,
]


class GenerationTrigger(str, Enum):
    PR = "pr"
    DRIFT = "drift"


class GenerationJob(Base):
    """
    Tracks one documentation change request through the pipeline.

    Status transitions: PENDING -> ANALYZING -> INFERRING -> GENERATING ->
    REVIEWING -> COMPLETED, FAILED from any non-terminal state. Only
    ``JobService`` mutates rows; progress never decreases except on an
    operator retry, which resets the job to PENDING.
    """

    __tablename__ = "generation_jobs"
    __table_args__ = (
        Index("ix_generation_jobs_repo_pr", "repository_id", "pr_number"),
        Index("ix_generation_jobs_status", "status"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    repository_id = Column(String(50), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    change_analysis_id = Column(String(50), ForeignKey("change_analyses.id", ondelete="SET NULL"),
                                nullable=True, unique=True)
    trigger = Column(String(10), nullable=False, default=GenerationTrigger.PR.value)
    pr_number = Column(Integer, nullable=True)

    # Drift-triggered jobs point at the document and prediction they heal
    document_id = Column(String(50), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    drift_prediction_id = Column(String(50), ForeignKey("drift_predictions.id", ondelete="SET NULL"),
                                 nullable=True)

    status = Column(String(20), nullable=False, default=GenerationStatus.PENDING.value)
    progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    failed_stage = Column(String(30), nullable=True)  # queue name to resume from
    retry_count = Column(Integer, nullable=False, default=0)

    result = Column(JSON, nullable=True)  # {"documents": [paths]}
    history = Column(JSON, nullable=False, default=list)  # [{status, progress, at}]

    created_at = Column(DateTime(timezone=True), default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
