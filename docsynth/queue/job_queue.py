"""Durable named work queues on the relational store.

At-least-once delivery: a job is claimed by flipping its row to ``active``
with a conditional UPDATE, and only leaves that state through
``complete``, ``fail``, ``release`` or stalled-job recovery. Duplicate
``job_id``s within a queue are coalesced at enqueue time.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..database import SessionFactory, utcnow
from ..exceptions import BusinessRuleError, QueueJobNotFoundError
from ..models import QueueJob, QueueJobState, CLAIMABLE_STATES
from ..schemas.jobs import QueueJobStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 1000
DEFAULT_LOCK_SECONDS = 30 * 60

# A claim can lose the race to another consumer; try the next candidate.
_CLAIM_RETRIES = 5


@dataclass(frozen=True)
class JobHandle:
    queue_name: str
    job_id: str
    created: bool  # False when coalesced with an existing job


@dataclass(frozen=True)
class ClaimedJob:
    """Snapshot of a job at claim time, detached from any session."""
    id: int
    queue_name: str
    job_id: str
    payload: Dict[str, Any]
    attempts_made: int
    max_attempts: int

    @classmethod
    def from_row(cls, row: QueueJob) -> "ClaimedJob":
        return cls(
            id=row.id,
            queue_name=row.queue_name,
            job_id=row.job_id,
            payload=dict(row.payload or {}),
            attempts_made=row.attempts_made,
            max_attempts=row.max_attempts,
        )


class JobQueue:
    """SQL-backed queue shared by producers and consumers of every stage."""

    def __init__(
        self,
        session_factory: SessionFactory,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        lock_seconds: int = DEFAULT_LOCK_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.lock_seconds = lock_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def enqueue(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        job_id: Optional[str] = None,
        delay_ms: Optional[int] = None,
        priority: int = 0,
    ) -> JobHandle:
        """Add a job. An existing ``job_id`` on the same queue is returned instead."""
        job_id = job_id or str(uuid.uuid4())
        now = self._clock()
        delayed = bool(delay_ms and delay_ms > 0)

        db = self._session_factory()
        try:
            existing = self._find(db, queue_name, job_id)
            if existing is not None:
                logger.info(f"Job {queue_name}/{job_id} already queued ({existing.state}), coalescing")
                return JobHandle(queue_name, job_id, created=False)

            row = QueueJob(
                queue_name=queue_name,
                job_id=job_id,
                payload=payload,
                state=QueueJobState.DELAYED.value if delayed else QueueJobState.WAITING.value,
                priority=priority,
                max_attempts=self.max_attempts,
                backoff_ms=self.backoff_ms,
                available_at=now + timedelta(milliseconds=delay_ms) if delayed else now,
                created_at=now,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # Lost an enqueue race for the same job_id.
                db.rollback()
                return JobHandle(queue_name, job_id, created=False)

            logger.info(f"Enqueued {queue_name}/{job_id}", extra={"queue": queue_name, "job_id": job_id})
            return JobHandle(queue_name, job_id, created=True)
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    def claim_next(self, queue_name: str) -> Optional[ClaimedJob]:
        """Atomically move the next available job to ``active``."""
        now = self._clock()
        db = self._session_factory()
        try:
            for _ in range(_CLAIM_RETRIES):
                candidate = (
                    db.query(QueueJob.id)
                    .filter(
                        QueueJob.queue_name == queue_name,
                        QueueJob.state.in_(CLAIMABLE_STATES),
                        QueueJob.available_at <= now,
                    )
                    .order_by(QueueJob.priority.asc(), QueueJob.available_at.asc(), QueueJob.id.asc())
                    .first()
                )
                if candidate is None:
                    return None

                claimed = (
                    db.query(QueueJob)
                    .filter(QueueJob.id == candidate.id, QueueJob.state.in_(CLAIMABLE_STATES))
                    .update(
                        {
                            QueueJob.state: QueueJobState.ACTIVE.value,
                            QueueJob.attempts_made: QueueJob.attempts_made + 1,
                            QueueJob.progress: 0,
                            QueueJob.locked_until: now + timedelta(seconds=self.lock_seconds),
                        },
                        synchronize_session=False,
                    )
                )
                db.commit()
                if claimed == 1:
                    return ClaimedJob.from_row(db.get(QueueJob, candidate.id))
            return None
        finally:
            db.close()

    def update_progress(self, row_id: int, progress: int) -> None:
        """Persist progress if it is higher than the stored value; extends the lock."""
        now = self._clock()
        db = self._session_factory()
        try:
            db.query(QueueJob).filter(
                QueueJob.id == row_id,
                QueueJob.state == QueueJobState.ACTIVE.value,
                QueueJob.progress < progress,
            ).update(
                {
                    QueueJob.progress: progress,
                    QueueJob.locked_until: now + timedelta(seconds=self.lock_seconds),
                },
                synchronize_session=False,
            )
            db.commit()
        finally:
            db.close()

    def complete(self, row_id: int) -> None:
        db = self._session_factory()
        try:
            row = self._get(db, row_id)
            row.state = QueueJobState.COMPLETED.value
            row.progress = 100
            row.locked_until = None
            row.finished_at = self._clock()
            db.commit()
        finally:
            db.close()

    def fail(self, row_id: int, error: str, retryable: bool = True) -> QueueJobState:
        """Record a failed attempt. Returns ``delayed`` (retry scheduled) or ``failed``."""
        now = self._clock()
        db = self._session_factory()
        try:
            row = self._get(db, row_id)
            row.failed_reason = error
            row.locked_until = None

            if retryable and row.attempts_made < row.max_attempts:
                delay = row.backoff_ms * (2 ** max(row.attempts_made - 1, 0))
                row.state = QueueJobState.DELAYED.value
                row.available_at = now + timedelta(milliseconds=delay)
                logger.info(
                    f"Job {row.queue_name}/{row.job_id} failed attempt {row.attempts_made}/{row.max_attempts}, "
                    f"retrying in {delay}ms: {error}"
                )
            else:
                row.state = QueueJobState.FAILED.value
                row.finished_at = now
                logger.warning(
                    f"Job {row.queue_name}/{row.job_id} failed permanently after "
                    f"{row.attempts_made} attempt(s): {error}"
                )
            state = QueueJobState(row.state)
            db.commit()
            return state
        finally:
            db.close()

    def release(self, row_id: int) -> None:
        """Return an active job to ``waiting`` without consuming an attempt."""
        db = self._session_factory()
        try:
            row = self._get(db, row_id)
            if row.state != QueueJobState.ACTIVE.value:
                return
            row.state = QueueJobState.WAITING.value
            row.attempts_made = max(row.attempts_made - 1, 0)
            row.progress = 0
            row.locked_until = None
            db.commit()
            logger.info(f"Released {row.queue_name}/{row.job_id} back to the queue")
        finally:
            db.close()

    def requeue_stalled(self, queue_name: str) -> int:
        """Recover jobs whose worker died while holding them."""
        now = self._clock()
        db = self._session_factory()
        try:
            stalled = (
                db.query(QueueJob)
                .filter(
                    QueueJob.queue_name == queue_name,
                    QueueJob.state == QueueJobState.ACTIVE.value,
                    QueueJob.locked_until < now,
                )
                .all()
            )
            for row in stalled:
                row.locked_until = None
                if row.attempts_made >= row.max_attempts:
                    row.state = QueueJobState.FAILED.value
                    row.failed_reason = "job stalled on its final attempt"
                    row.finished_at = now
                else:
                    row.state = QueueJobState.WAITING.value
                    row.progress = 0
                    row.available_at = now
            db.commit()
            if stalled:
                logger.warning(f"Recovered {len(stalled)} stalled job(s) on {queue_name}")
            return len(stalled)
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Observability and operator actions
    # ------------------------------------------------------------------

    def get_status(self, queue_name: str, job_id: str) -> Optional[QueueJobStatus]:
        db = self._session_factory()
        try:
            row = self._find(db, queue_name, job_id)
            if row is None:
                return None
            return QueueJobStatus(
                queue_name=row.queue_name,
                job_id=row.job_id,
                state=row.state,
                progress=row.progress,
                attempts_made=row.attempts_made,
                failed_reason=row.failed_reason,
            )
        finally:
            db.close()

    def metrics(self, queue_name: str) -> Dict[str, int]:
        db = self._session_factory()
        try:
            counts = {state.value: 0 for state in QueueJobState}
            rows = (
                db.query(QueueJob.state, func.count(QueueJob.id))
                .filter(QueueJob.queue_name == queue_name)
                .group_by(QueueJob.state)
                .all()
            )
            counts.update({state: count for state, count in rows})
            return counts
        finally:
            db.close()

    def retry_failed(self, queue_name: str, job_id: str) -> JobHandle:
        """Operator action: give a failed job a fresh attempt budget."""
        db = self._session_factory()
        try:
            row = self._find(db, queue_name, job_id)
            if row is None:
                raise QueueJobNotFoundError(f"{queue_name}/{job_id}")
            if row.state != QueueJobState.FAILED.value:
                raise BusinessRuleError(
                    f"Only failed jobs can be retried; {queue_name}/{job_id} is {row.state}",
                    details={"state": row.state},
                )
            row.state = QueueJobState.WAITING.value
            row.attempts_made = 0
            row.progress = 0
            row.failed_reason = None
            row.finished_at = None
            row.available_at = self._clock()
            db.commit()
            logger.info(f"Operator retry of {queue_name}/{job_id}")
            return JobHandle(queue_name, job_id, created=False)
        finally:
            db.close()

    # ------------------------------------------------------------------

    @staticmethod
    def _find(db, queue_name: str, job_id: str) -> Optional[QueueJob]:
        return (
            db.query(QueueJob)
            .filter(QueueJob.queue_name == queue_name, QueueJob.job_id == job_id)
            .first()
        )

    @staticmethod
    def _get(db, row_id: int) -> QueueJob:
        row = db.get(QueueJob, row_id)
        if row is None:
            raise QueueJobNotFoundError(row_id)
        return row
