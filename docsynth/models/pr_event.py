"""Stored pull-request webhook events."""

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, Index
from ..database import Base, new_id, utcnow


class PREvent(Base):
    """One received ``pull_request`` event; owner of a ChangeAnalysis."""

    __tablename__ = "pr_events"
    __table_args__ = (
        Index("ix_pr_events_repo_pr", "repository_id", "pr_number"),
    )

    id = Column(String(50), primary_key=True, default=new_id)
    repository_id = Column(String(50), ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False)
    pr_number = Column(Integer, nullable=False)
    action = Column(String(30), nullable=False)
    # X-GitHub-Delivery; a redelivered webhook maps back to its first event.
    delivery_id = Column(String(100), nullable=True, unique=True)

    title = Column(Text, nullable=False, default="")
    body = Column(Text, nullable=True)
    author = Column(String(100), nullable=True)
    head_ref = Column(String(255), nullable=True)
    base_ref = Column(String(255), nullable=True)
    head_sha = Column(String(40), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
