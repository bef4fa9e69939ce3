"""Durable job queue and per-queue consumers."""

from .job_queue import JobQueue, JobHandle, ClaimedJob
from .consumer import JobContext, QueueConsumer, run_until_idle
from . import names

__all__ = [
    "JobQueue",
    "JobHandle",
    "ClaimedJob",
    "JobContext",
    "QueueConsumer",
    "run_until_idle",
    "names",
]
