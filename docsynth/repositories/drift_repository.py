"""Drift predictions."""

from typing import Dict, List, Optional

from sqlalchemy import func

from ..models import DriftPrediction, ACTIVE_DRIFT_STATUSES
from ..exceptions import DriftPredictionNotFoundError
from .base import BaseRepository


class DriftPredictionRepository(BaseRepository[DriftPrediction]):
    model_class = DriftPrediction
    not_found_error = DriftPredictionNotFoundError

    def get_active_for_document(self, document_id: str) -> Optional[DriftPrediction]:
        return (
            self.db.query(DriftPrediction)
            .filter(
                DriftPrediction.document_id == document_id,
                DriftPrediction.status.in_(ACTIVE_DRIFT_STATUSES),
            )
            .order_by(DriftPrediction.predicted_at.desc())
            .first()
        )

    def get_latest_for_document(self, document_id: str) -> Optional[DriftPrediction]:
        return (
            self.db.query(DriftPrediction)
            .filter(DriftPrediction.document_id == document_id)
            .order_by(DriftPrediction.predicted_at.desc())
            .first()
        )

    def list_predictions(
        self,
        repository_id: Optional[str] = None,
        status: Optional[str] = None,
        risk_level: Optional[str] = None,
        limit: int = 50,
    ) -> List[DriftPrediction]:
        query = self.db.query(DriftPrediction)
        if repository_id:
            query = query.filter(DriftPrediction.repository_id == repository_id)
        if status:
            query = query.filter(DriftPrediction.status == status)
        if risk_level:
            query = query.filter(DriftPrediction.risk_level == risk_level)
        return (
            query.order_by(DriftPrediction.drift_probability.desc(), DriftPrediction.predicted_at.desc())
            .limit(limit)
            .all()
        )

    def list_open_above(self, repository_id: str, min_probability: float) -> List[DriftPrediction]:
        """Open predictions strictly above ``min_probability`` (0-1), highest first."""
        return (
            self.db.query(DriftPrediction)
            .filter(
                DriftPrediction.repository_id == repository_id,
                DriftPrediction.status == "open",
                DriftPrediction.drift_probability > min_probability,
            )
            .order_by(DriftPrediction.drift_probability.desc())
            .all()
        )

    def count_by(self, column: str, repository_id: Optional[str] = None) -> Dict[str, int]:
        col = getattr(DriftPrediction, column)
        query = self.db.query(col, func.count(DriftPrediction.id))
        if repository_id:
            query = query.filter(DriftPrediction.repository_id == repository_id)
        return {key: count for key, count in query.group_by(col).all()}

    def average_active_probability(self, repository_id: Optional[str] = None) -> float:
        query = self.db.query(func.avg(DriftPrediction.drift_probability)).filter(
            DriftPrediction.status.in_(ACTIVE_DRIFT_STATUSES)
        )
        if repository_id:
            query = query.filter(DriftPrediction.repository_id == repository_id)
        return float(query.scalar() or 0.0)
