"""Drift prediction and self-healing endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..container import Container
from ..repositories import RepoRepository
from ..schemas.drift import (
    DriftPredictionResponse,
    DriftScanResult,
    DriftStats,
    HealingConfig,
    HealingConfigUpdate,
    HealingRunAccepted,
    HealingRunRequest,
    TakeActionRequest,
)
from ..services.drift_monitor import DriftMonitor
from .deps import get_container, get_db, limit_triggers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/drift", tags=["drift"])
healing_router = APIRouter(prefix="/api/self-healing", tags=["self-healing"])


def _monitor(db: Session = Depends(get_db), container: Container = Depends(get_container)) -> DriftMonitor:
    return DriftMonitor(db, clock=container.clock)


@router.get("/predictions", response_model=List[DriftPredictionResponse])
def list_predictions(
    repository_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    risk_level: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    monitor: DriftMonitor = Depends(_monitor),
):
    """Predictions ordered by drift probability, highest first."""
    return monitor.list_predictions(repository_id=repository_id, status=status,
                                    risk_level=risk_level, limit=limit)


@router.get("/stats", response_model=DriftStats)
def get_stats(repository_id: Optional[str] = Query(None), monitor: DriftMonitor = Depends(_monitor)):
    return monitor.get_stats(repository_id)


@router.post("/predictions/{prediction_id}/action", response_model=DriftPredictionResponse)
def take_action(prediction_id: str, request: TakeActionRequest, monitor: DriftMonitor = Depends(_monitor)):
    """``update_doc`` resolves, ``dismiss`` dismisses, ``acknowledge`` acknowledges."""
    return monitor.take_action(prediction_id, request.action, request.user_id)


@router.post("/repositories/{repository_id}/scan", response_model=DriftScanResult,
             dependencies=[Depends(limit_triggers)])
def scan_repository(repository_id: str, monitor: DriftMonitor = Depends(_monitor)):
    """Score every document of the repository now."""
    return monitor.scan_repository(repository_id)


@healing_router.get("/{repository_id}/config", response_model=HealingConfig)
def get_config(repository_id: str, db: Session = Depends(get_db)):
    return RepoRepository(db).healing_config(repository_id)


@healing_router.put("/{repository_id}/config", response_model=HealingConfig)
def update_config(repository_id: str, update: HealingConfigUpdate, db: Session = Depends(get_db)):
    config = RepoRepository(db).update_healing_config(repository_id, update)
    db.commit()
    logger.info(f"Self-healing config of {repository_id} updated: {update.model_dump(exclude_none=True)}")
    return config


@healing_router.post("/{repository_id}/run", response_model=HealingRunAccepted, status_code=202,
                     dependencies=[Depends(limit_triggers)])
def request_run(
    repository_id: str,
    request: HealingRunRequest,
    container: Container = Depends(get_container),
):
    """Queue a self-healing run; overrides apply to this run only."""
    handle = container.self_healing.request_run(repository_id, request)
    return HealingRunAccepted(queue_name=handle.queue_name, job_id=handle.job_id, created=handle.created)
