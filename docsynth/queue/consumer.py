"""Queue consumption: one supervisor task per queue, a bounded worker pool.

The supervisor claims jobs and starts one asyncio task per job, never more
than ``concurrency`` at once. Handlers report progress by sending on a
channel drained by a writer task, so no callback closes over mutable job
state.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from ..core.logging_config import request_id_var
from ..core.rate_limit import AdmissionGate
from ..exceptions import ValidationError
from ..models import QueueJobState
from .job_queue import ClaimedJob, JobQueue

logger = logging.getLogger(__name__)

_STALLED_CHECK_SECONDS = 60.0


class JobContext:
    """What a handler sees of the job it is running."""

    def __init__(self, job: ClaimedJob, channel: "asyncio.Queue[Optional[int]]") -> None:
        self.queue_name = job.queue_name
        self.job_id = job.job_id
        self.payload: Dict[str, Any] = job.payload
        self.attempts_made = job.attempts_made
        self.max_attempts = job.max_attempts
        self._channel = channel
        self._progress = 0

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made >= self.max_attempts

    @property
    def progress(self) -> int:
        return self._progress

    async def update_progress(self, value: int) -> None:
        """Report progress in 0..100. Lower values than already reported are ignored."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"progress must be a number, got {value!r}")
        if not 0 <= value <= 100:
            raise ValueError(f"progress must be within 0..100, got {value}")
        value = int(value)
        if value <= self._progress:
            return
        self._progress = value
        await self._channel.put(value)


JobHandler = Callable[[JobContext], Awaitable[None]]
ExhaustedHook = Callable[[JobContext, BaseException], Awaitable[None]]


class QueueConsumer:
    """Supervisor for one named queue."""

    def __init__(
        self,
        queue: JobQueue,
        queue_name: str,
        handler: JobHandler,
        concurrency: int = 1,
        poll_interval: float = 1.0,
        gate: Optional[AdmissionGate] = None,
        on_exhausted: Optional[ExhaustedHook] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.queue_name = queue_name
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.gate = gate
        self.on_exhausted = on_exhausted

    # ------------------------------------------------------------------
    # Supervisor loop
    # ------------------------------------------------------------------

    async def run(self, stop: asyncio.Event) -> None:
        """Pull and dispatch jobs until *stop* is set, then cancel in-flight work.

        Cancelled jobs are released back to the queue without losing an attempt.
        """
        loop = asyncio.get_running_loop()
        self.queue.requeue_stalled(self.queue_name)
        last_stalled_check = loop.time()
        in_flight: Set[asyncio.Task] = set()
        logger.info(f"Consumer for {self.queue_name} started (concurrency={self.concurrency})")

        try:
            while not stop.is_set():
                if loop.time() - last_stalled_check >= _STALLED_CHECK_SECONDS:
                    self.queue.requeue_stalled(self.queue_name)
                    last_stalled_check = loop.time()

                if len(in_flight) >= self.concurrency:
                    await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                    continue

                claimed = self.queue.claim_next(self.queue_name)
                if claimed is None:
                    await _wait_or_stop(stop, self.poll_interval)
                    continue

                retry_after = self._admission_delay(claimed)
                if retry_after:
                    await _wait_or_stop(stop, retry_after)
                    continue

                task = asyncio.create_task(self._process(claimed))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        finally:
            for task in list(in_flight):
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            logger.info(f"Consumer for {self.queue_name} stopped")

    async def run_once(self) -> int:
        """Process the jobs claimable right now, up to ``concurrency`` in parallel.

        Returns the number of jobs processed.
        """
        batch = []
        while len(batch) < self.concurrency:
            claimed = self.queue.claim_next(self.queue_name)
            if claimed is None:
                break
            if self._admission_delay(claimed):
                break
            batch.append(claimed)
        if batch:
            await asyncio.gather(*(self._process(job) for job in batch))
        return len(batch)

    def _admission_delay(self, claimed: ClaimedJob) -> float:
        """0 when the job may start; otherwise release it and return the wait."""
        if self.gate is None:
            return 0.0
        decision = self.gate.admit(self.queue_name)
        if decision.allowed:
            return 0.0
        self.queue.release(claimed.id)
        return max(decision.retry_after, self.poll_interval)

    # ------------------------------------------------------------------
    # One job
    # ------------------------------------------------------------------

    async def _process(self, claimed: ClaimedJob) -> bool:
        channel: "asyncio.Queue[Optional[int]]" = asyncio.Queue()
        ctx = JobContext(claimed, channel)
        token = request_id_var.set(f"{claimed.queue_name}:{claimed.job_id}")
        writer = asyncio.create_task(self._write_progress(claimed.id, channel))
        log_extra = {"queue": claimed.queue_name, "job_id": claimed.job_id,
                     "attempt": claimed.attempts_made}
        logger.info(f"Processing {claimed.queue_name}/{claimed.job_id}", extra=log_extra)

        try:
            await self.handler(ctx)
        except asyncio.CancelledError:
            await _close_channel(writer, channel)
            self.queue.release(claimed.id)
            logger.info(f"Cancelled {claimed.queue_name}/{claimed.job_id}; requeued", extra=log_extra)
            raise
        except Exception as exc:
            await _close_channel(writer, channel)
            retryable = not isinstance(exc, ValidationError)
            reason = str(exc) or exc.__class__.__name__
            if retryable:
                logger.warning(f"Job {claimed.queue_name}/{claimed.job_id} raised: {reason}",
                               extra=log_extra, exc_info=True)
            else:
                logger.error(f"Job {claimed.queue_name}/{claimed.job_id} rejected: {reason}", extra=log_extra)

            state = self.queue.fail(claimed.id, reason, retryable=retryable)
            if state == QueueJobState.FAILED and self.on_exhausted is not None:
                try:
                    await self.on_exhausted(ctx, exc)
                except Exception:
                    logger.exception(f"Failure hook for {claimed.queue_name}/{claimed.job_id} raised",
                                     extra=log_extra)
            return False
        else:
            await _close_channel(writer, channel)
            self.queue.complete(claimed.id)
            logger.info(f"Completed {claimed.queue_name}/{claimed.job_id}", extra=log_extra)
            return True
        finally:
            request_id_var.reset(token)

    async def _write_progress(self, row_id: int, channel: "asyncio.Queue[Optional[int]]") -> None:
        while True:
            value = await channel.get()
            if value is None:
                return
            self.queue.update_progress(row_id, value)


async def _close_channel(writer: asyncio.Task, channel: "asyncio.Queue[Optional[int]]") -> None:
    channel.put_nowait(None)
    await writer


async def _wait_or_stop(stop: asyncio.Event, timeout: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass


async def run_until_idle(consumers: Iterable[QueueConsumer], max_rounds: int = 100) -> int:
    """Run ``run_once`` on every consumer until a full round processes nothing.

    Returns the total number of jobs processed.
    """
    consumers = list(consumers)
    total = 0
    for _ in range(max_rounds):
        processed = 0
        for consumer in consumers:
            processed += await consumer.run_once()
        total += processed
        if processed == 0:
            break
    return total
