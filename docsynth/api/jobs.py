"""Generation job and queue status endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..container import Container
from ..exceptions import QueueJobNotFoundError, ValidationError
from ..queue import names
from ..schemas.jobs import GenerationJobResponse, QueueJobStatus, QueueMetrics
from ..services.job_service import JobService
from .deps import get_container, get_db, limit_triggers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
queues_router = APIRouter(prefix="/api/queues", tags=["queues"])


@router.get("", response_model=List[GenerationJobResponse])
def list_jobs(
    repository_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """List generation jobs, newest first."""
    return JobService(db).list_jobs(repository_id=repository_id, status=status, limit=limit)


@router.get("/{job_id}", response_model=GenerationJobResponse)
def get_job(job_id: str, db: Session = Depends(get_db)):
    return JobService(db).get(job_id)


@router.post("/{job_id}/retry", response_model=GenerationJobResponse,
             dependencies=[Depends(limit_triggers)])
def retry_job(
    job_id: str,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Operator retry of a failed job from the stage that failed."""
    return JobService(db, container.queue).retry(job_id)


def _check_queue(queue_name: str) -> None:
    if queue_name not in names.ALL_QUEUES:
        raise ValidationError(f"Unknown queue '{queue_name}'", field="queue")


@queues_router.get("/{queue_name}/jobs/{job_id}", response_model=QueueJobStatus, response_model_by_alias=True)
def get_queue_job(queue_name: str, job_id: str, container: Container = Depends(get_container)):
    """State of one queue job: ``{state, progress, attemptsMade, failedReason}``."""
    _check_queue(queue_name)
    status = container.queue.get_status(queue_name, job_id)
    if status is None:
        raise QueueJobNotFoundError(f"{queue_name}/{job_id}")
    return status


@queues_router.post("/{queue_name}/jobs/{job_id}/retry", response_model=QueueJobStatus,
                    response_model_by_alias=True, dependencies=[Depends(limit_triggers)])
def retry_queue_job(queue_name: str, job_id: str, container: Container = Depends(get_container)):
    _check_queue(queue_name)
    container.queue.retry_failed(queue_name, job_id)
    return container.queue.get_status(queue_name, job_id)


@queues_router.get("/{queue_name}/metrics", response_model=QueueMetrics)
def get_queue_metrics(queue_name: str, container: Container = Depends(get_container)):
    _check_queue(queue_name)
    return QueueMetrics(queue_name=queue_name, counts=container.queue.metrics(queue_name))
