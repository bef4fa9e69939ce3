"""Drift prediction: how likely a stored document is out of date."""

import fnmatch
import logging
import posixpath
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..database import as_utc, utcnow
from ..exceptions import InvalidStateTransitionError, ValidationError
from ..models import ACTIVE_DRIFT_STATUSES, ChangeAnalysis, Document, DriftPrediction, DriftStatus, RiskLevel
from ..repositories import (
    ChangeAnalysisRepository,
    DocumentRepository,
    DriftPredictionRepository,
    RepoRepository,
)
from ..schemas.changes import API_CHANGE_TYPES
from ..schemas.drift import DriftAction, DriftScanResult, DriftSignals, DriftStats

logger = logging.getLogger(__name__)

DRIFT_WEIGHTS = {
    "code_changes": 0.35,
    "api_changes": 0.30,
    "dependency_changes": 0.15,
    "time_since_update_days": 0.20,
}

# A signal at or above its threshold counts fully.
SIGNAL_THRESHOLDS = {
    "code_changes": 20,
    "api_changes": 10,
    "dependency_changes": 5,
    "time_since_update_days": 60,
}

HIGH_RISK_PROBABILITY = 0.7
MEDIUM_RISK_PROBABILITY = 0.4

DEPENDENCY_MANIFESTS = (
    "package.json",
    "requirements*.txt",
    "pyproject.toml",
    "go.mod",
    "Cargo.toml",
    "Gemfile",
    "pom.xml",
    "build.gradle",
)

ACTION_STATUS = {
    DriftAction.UPDATE_DOC: DriftStatus.RESOLVED,
    DriftAction.DISMISS: DriftStatus.DISMISSED,
    DriftAction.ACKNOWLEDGE: DriftStatus.ACKNOWLEDGED,
}


def validate_signals(raw: Union[DriftSignals, Mapping[str, Any]]) -> DriftSignals:
    """Accept a signal vector (camelCase or snake_case keys).

    Raises:
        ValidationError: a signal is negative or not a number.
    """
    if isinstance(raw, DriftSignals):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("Drift signals must be an object", field="signals")
    for key, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Signal {key} must be a number", field=f"signals.{key}")
    try:
        return DriftSignals.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"Invalid drift signals: {first.get('msg')}", field=f"signals.{field}") from e


def calculate_drift_probability(signals: Union[DriftSignals, Mapping[str, Any]]) -> float:
    """Weighted sum of the normalized signals, in [0, 1]."""
    signals = validate_signals(signals)
    total = 0.0
    for name, weight in DRIFT_WEIGHTS.items():
        normalized = min(getattr(signals, name) / SIGNAL_THRESHOLDS[name], 1.0)
        total += weight * normalized
    return round(min(total, 1.0), 4)


def categorize_risk(probability: float) -> RiskLevel:
    if probability >= HIGH_RISK_PROBABILITY:
        return RiskLevel.HIGH
    if probability >= MEDIUM_RISK_PROBABILITY:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def is_dependency_manifest(path: str) -> bool:
    name = posixpath.basename(path)
    return any(fnmatch.fnmatch(name, pattern) for pattern in DEPENDENCY_MANIFESTS)


def _covers(source_paths: List[str], path: str) -> bool:
    if not source_paths:
        return True
    for source in source_paths:
        prefix = source.rstrip("/")
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


def compute_signals(document: Document, analyses: Iterable[ChangeAnalysis], now: datetime) -> DriftSignals:
    """Signals for *document* from the analyses recorded since its last update."""
    source_paths = list(document.source_paths or [])
    code = api = deps = 0
    for analysis in analyses:
        for change in ChangeAnalysisRepository.to_result(analysis).changes:
            if is_dependency_manifest(change.path):
                deps += 1
            if change.path == document.path or not _covers(source_paths, change.path):
                continue
            code += 1
            api += sum(1 for s in change.semantic_changes if s.type in API_CHANGE_TYPES)

    updated = as_utc(document.updated_at or document.created_at) or now
    days = max((now - updated).days, 0)
    return DriftSignals(
        code_changes=code,
        api_changes=api,
        dependency_changes=deps,
        time_since_update_days=days,
    )


class DriftMonitor:
    """Scans documents, keeps predictions current and applies reviewer actions."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.predictions = DriftPredictionRepository(db)

    def scan_repository(self, repository_id: str) -> DriftScanResult:
        """Refresh the prediction of every document of a repository."""
        RepoRepository(self.db).get_by_id(repository_id)
        documents = DocumentRepository(self.db).list_for_repository(repository_id)
        analyses_repo = ChangeAnalysisRepository(self.db)
        now = self.clock()

        created = refreshed = high = 0
        for doc in documents:
            analyses = analyses_repo.list_since(repository_id, as_utc(doc.updated_at))
            signals = compute_signals(doc, analyses, now)
            probability = calculate_drift_probability(signals)
            risk = categorize_risk(probability)
            if risk == RiskLevel.HIGH:
                high += 1

            active = self.predictions.get_active_for_document(doc.id)
            if active is not None:
                self._refresh(active, signals, probability, risk, now)
                refreshed += 1
                continue

            latest = self.predictions.get_latest_for_document(doc.id)
            if (latest is not None and latest.status == DriftStatus.DISMISSED.value
                    and latest.drift_probability >= probability):
                continue
            self.predictions.add(DriftPrediction(
                repository_id=repository_id,
                document_id=doc.id,
                document_path=doc.path,
                drift_probability=probability,
                risk_level=risk.value,
                signals=signals.model_dump(by_alias=True),
                status=DriftStatus.OPEN.value,
                predicted_at=now,
            ))
            created += 1

        self.db.commit()
        result = DriftScanResult(
            repository_id=repository_id,
            documents_scanned=len(documents),
            predictions_created=created,
            predictions_refreshed=refreshed,
            high_risk=high,
        )
        logger.info(
            f"Drift scan of {repository_id}: {len(documents)} document(s), "
            f"{created} new, {refreshed} refreshed, {high} high risk"
        )
        return result

    def take_action(self, prediction_id: str, action: Union[DriftAction, str],
                    user_id: Optional[str] = None) -> DriftPrediction:
        """
        Apply a reviewer action to an open or acknowledged prediction.

        Raises:
            ValidationError: unknown action.
            InvalidStateTransitionError: the prediction is already closed.
        """
        try:
            action = DriftAction(action)
        except ValueError:
            raise ValidationError(f"Unknown drift action {action!r}", field="action") from None

        prediction = self.predictions.get_by_id(prediction_id)
        target = ACTION_STATUS[action]
        if prediction.status not in ACTIVE_DRIFT_STATUSES:
            raise InvalidStateTransitionError("drift prediction", prediction.status, target.value)

        now = self.clock()
        prediction.status = target.value
        prediction.action_taken = action.value
        prediction.reviewed_by = user_id
        prediction.reviewed_at = now
        if target == DriftStatus.RESOLVED:
            prediction.resolved_at = now
        self.db.commit()
        logger.info(f"Drift prediction {prediction_id}: {action.value} by {user_id}")
        return prediction

    def resolve(self, prediction_id: str) -> DriftPrediction:
        """Mark a prediction resolved after a successful regeneration. Caller commits."""
        prediction = self.predictions.get_by_id(prediction_id)
        now = self.clock()
        prediction.status = DriftStatus.RESOLVED.value
        prediction.action_taken = "regenerated"
        prediction.resolved_at = now
        prediction.last_error = None
        return prediction

    def record_error(self, prediction_id: str, error: str) -> None:
        prediction = self.predictions.get_by_id(prediction_id)
        prediction.last_error = error
        self.db.commit()

    def get_stats(self, repository_id: Optional[str] = None) -> DriftStats:
        by_status = {status.value: 0 for status in DriftStatus}
        by_status.update(self.predictions.count_by("status", repository_id))
        by_risk = {risk.value: 0 for risk in RiskLevel}
        by_risk.update(self.predictions.count_by("risk_level", repository_id))
        return DriftStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_risk=by_risk,
            average_active_probability=round(self.predictions.average_active_probability(repository_id), 4),
        )

    def list_predictions(self, repository_id: Optional[str] = None, status: Optional[str] = None,
                         risk_level: Optional[str] = None, limit: int = 50) -> List[DriftPrediction]:
        return self.predictions.list_predictions(
            repository_id=repository_id, status=status, risk_level=risk_level, limit=limit,
        )

    @staticmethod
    def _refresh(prediction: DriftPrediction, signals: DriftSignals, probability: float,
                 risk: RiskLevel, now: datetime) -> None:
        prediction.drift_probability = probability
        prediction.risk_level = risk.value
        prediction.signals = signals.model_dump(by_alias=True)
        prediction.predicted_at = now
