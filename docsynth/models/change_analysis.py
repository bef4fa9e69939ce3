"""Change analysis results, immutable once written."""

from enum import Enum

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, ForeignKey, JSON, Index, event
from ..database import Base, new_id, utcnow


class ChangePriority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NONE = "NONE"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ChangePriority.NONE: 0,
    ChangePriority.LOW: 1,
    ChangePriority.MEDIUM: 2,
    ChangePriority.HIGH: 3,
    ChangePriority.CRITICAL: 4,
}


class ChangeAnalysis(Base):
    """
    Documentation impact of one PR event.

    ``changes`` and ``documentation_impact`` are serialized from
    ``schemas.changes``; read them back through ``ChangeAnalysisRepository``.
    """

    __tablename__ = "change_analyses"
    __table_args__ = (
        Index("ix_change_analyses_repo_created", "repository_id", "created_at"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    pr_event_id = Column(String(50), ForeignKey("pr_events.id", ondelete="CASCADE"),
                         nullable=False, unique=True)
    repository_id = Column(String(50), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    pr_number = Column(Integer, nullable=True)

    changes = Column(JSON, nullable=False)
    priority = Column(String(10), nullable=False)
    requires_documentation = Column(Boolean, nullable=False)
    documentation_impact = Column(JSON, nullable=False)
    summary = Column(Text, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), default=utcnow)


@event.listens_for(ChangeAnalysis, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError(f"ChangeAnalysis {target.id} is immutable")
