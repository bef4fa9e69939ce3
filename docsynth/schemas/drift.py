"""Drift monitoring and self-healing schemas."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DriftSignals(BaseModel):
    """Raw signal vector; serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code_changes: float = Field(default=0, ge=0)
    api_changes: float = Field(default=0, ge=0)
    dependency_changes: float = Field(default=0, ge=0)
    time_since_update_days: float = Field(default=0, ge=0)


class DriftAction(str, Enum):
    UPDATE_DOC = "update_doc"
    DISMISS = "dismiss"
    ACKNOWLEDGE = "acknowledge"


class HealingAction(str, Enum):
    ASSESS_DRIFT = "assess-drift"
    REGENERATE = "regenerate"
    CREATE_PR = "create-pr"


class HealingConfig(BaseModel):
    healing_enabled: bool = True
    drift_threshold: float = Field(default=40.0, ge=0.0, le=100.0)
    confidence_minimum: float = Field(default=0.7, ge=0.0, le=1.0)
    max_sections_per_run: int = Field(default=10, ge=1)
    auto_pr: bool = False

    class Config:
        from_attributes = True


class HealingConfigUpdate(BaseModel):
    healing_enabled: Optional[bool] = None
    drift_threshold: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    confidence_minimum: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_sections_per_run: Optional[int] = Field(default=None, ge=1)
    auto_pr: Optional[bool] = None


class TakeActionRequest(BaseModel):
    action: DriftAction
    user_id: Optional[str] = None


class HealingRunRequest(BaseModel):
    action: HealingAction = HealingAction.REGENERATE
    drift_threshold: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    confidence_minimum: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_sections_per_run: Optional[int] = Field(default=None, ge=1)
    user_id: Optional[str] = None
    org_id: Optional[str] = None


class DriftPredictionResponse(BaseModel):
    id: str
    repository_id: str
    document_id: str
    document_path: str
    drift_probability: float
    risk_level: str
    signals: Dict[str, float]
    status: str
    reviewed_by: Optional[str] = None
    action_taken: Optional[str] = None
    last_error: Optional[str] = None
    predicted_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DriftStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_risk: Dict[str, int]
    average_active_probability: float


class DriftScanResult(BaseModel):
    repository_id: str
    documents_scanned: int
    predictions_created: int
    predictions_refreshed: int
    high_risk: int


class RegenerationOutcome(BaseModel):
    document_path: str
    status: str  # regenerated | skipped | failed
    reason: Optional[str] = None
    sections_applied: int = 0
    generation_job_id: Optional[str] = None


class HealingRunResult(BaseModel):
    repository_id: str
    action: HealingAction
    scan: Optional[DriftScanResult] = None
    outcomes: List[RegenerationOutcome] = []
    pull_request_url: Optional[str] = None

    @property
    def regenerated(self) -> List[RegenerationOutcome]:
        return [o for o in self.outcomes if o.status == "regenerated"]


class HealingRunAccepted(BaseModel):
    """A queued ``self-healing-auto`` run."""
    queue_name: str
    job_id: str
    created: bool
