"""Stored pull-request events."""

from typing import Optional

from ..models import PREvent
from ..exceptions import PREventNotFoundError
from .base import BaseRepository


class PREventRepository(BaseRepository[PREvent]):
    model_class = PREvent
    not_found_error = PREventNotFoundError

    def get_latest_for_pr(self, repository_id: str, pr_number: int) -> Optional[PREvent]:
        return (
            self.db.query(PREvent)
            .filter(PREvent.repository_id == repository_id, PREvent.pr_number == pr_number)
            .order_by(PREvent.created_at.desc())
            .first()
        )

    def get_by_delivery_id(self, delivery_id: str) -> Optional[PREvent]:
        return self.db.query(PREvent).filter(PREvent.delivery_id == delivery_id).first()
