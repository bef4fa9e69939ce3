"""Generation job and queue status schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class GenerationJobResponse(BaseModel):
    """Schema for generation job status."""
    id: str
    repository_id: str
    change_analysis_id: Optional[str] = None
    trigger: str
    pr_number: Optional[int] = None
    document_id: Optional[str] = None
    status: str
    progress: int
    error_message: Optional[str] = None
    failed_stage: Optional[str] = None
    retry_count: int
    result: Optional[Dict[str, Any]] = None
    history: List[Dict[str, Any]] = []
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QueueJobStatus(BaseModel):
    """Externally observable queue job state: ``{state, progress, attemptsMade, failedReason}``."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    queue_name: str
    job_id: str
    state: str
    progress: int
    attempts_made: int
    failed_reason: Optional[str] = None


class QueueMetrics(BaseModel):
    queue_name: str
    counts: Dict[str, int]
