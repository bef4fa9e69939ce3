"""API routes."""

from .webhooks import router as webhooks_router
from .jobs import router as jobs_router, queues_router
from .qa import router as qa_router
from .drift import router as drift_router, healing_router
from .diffs import router as diffs_router

__all__ = [
    "webhooks_router",
    "jobs_router",
    "queues_router",
    "qa_router",
    "drift_router",
    "healing_router",
    "diffs_router",
]
