"""Durable queue rows backing ``queue.JobQueue``."""

from enum import Enum

from sqlalchemy import Column, String, Text, Integer, DateTime, JSON, Index, UniqueConstraint
from ..database import Base, utcnow


class QueueJobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


CLAIMABLE_STATES = (QueueJobState.WAITING.value, QueueJobState.DELAYED.value)


class QueueJob(Base):
    """One job on a named queue. ``job_id`` is unique per queue."""

    __tablename__ = "queue_jobs"
    __table_args__ = (
        UniqueConstraint("queue_name", "job_id", name="uq_queue_jobs_queue_job"),
        Index("ix_queue_jobs_claim", "queue_name", "state", "available_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue_name = Column(String(50), nullable=False)
    job_id = Column(String(200), nullable=False)
    payload = Column(JSON, nullable=False)

    state = Column(String(10), nullable=False, default=QueueJobState.WAITING.value)
    priority = Column(Integer, nullable=False, default=0)  # lower runs first
    progress = Column(Integer, nullable=False, default=0)
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    backoff_ms = Column(Integer, nullable=False, default=1000)
    failed_reason = Column(Text, nullable=True)

    available_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    locked_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)
