"""Drift predictions for stored documents."""

from enum import Enum

from sqlalchemy import Column, String, Text, Float, DateTime, ForeignKey, JSON, Index
from ..database import Base, new_id, utcnow


class DriftStatus(str, Enum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


ACTIVE_DRIFT_STATUSES = (DriftStatus.OPEN.value, DriftStatus.ACKNOWLEDGED.value)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DriftPrediction(Base):
    """
    Staleness estimate for one document.

    Refreshed by scans while open or acknowledged; moved by ``takeAction``
    or resolved by the healing worker after a successful regeneration.
    """

    __tablename__ = "drift_predictions"
    __table_args__ = (
        Index("ix_drift_predictions_repo_status", "repository_id", "status"),
        Index("ix_drift_predictions_document", "document_id"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    repository_id = Column(String(50), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    document_id = Column(String(50), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    document_path = Column(String(500), nullable=False)

    drift_probability = Column(Float, nullable=False)  # 0-1
    risk_level = Column(String(10), nullable=False)
    signals = Column(JSON, nullable=False)  # DriftSignals

    status = Column(String(15), nullable=False, default=DriftStatus.OPEN.value)
    reviewed_by = Column(String(100), nullable=True)
    action_taken = Column(String(20), nullable=True)
    last_error = Column(Text, nullable=True)

    predicted_at = Column(DateTime(timezone=True), default=utcnow)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
