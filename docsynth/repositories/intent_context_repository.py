"""Intent contexts."""

from typing import Optional

from ..models import IntentContext
from ..schemas.intent import ContextSource, IntentResult
from ..exceptions import IntentContextNotFoundError
from .base import BaseRepository


class IntentContextRepository(BaseRepository[IntentContext]):
    model_class = IntentContext
    not_found_error = IntentContextNotFoundError

    def create(self, change_analysis_id: str, result: IntentResult) -> IntentContext:
        context = IntentContext(
            change_analysis_id=change_analysis_id,
            business_purpose=result.business_purpose,
            technical_approach=result.technical_approach,
            alternatives_considered=list(result.alternatives_considered),
            target_audience=result.target_audience,
            key_concepts=list(result.key_concepts),
            sources=[s.model_dump(mode="json") for s in result.sources],
            degraded=result.degraded,
        )
        return self.add(context)

    def get_by_analysis(self, change_analysis_id: str) -> Optional[IntentContext]:
        return (
            self.db.query(IntentContext)
            .filter(IntentContext.change_analysis_id == change_analysis_id)
            .first()
        )

    @staticmethod
    def to_result(context: IntentContext) -> IntentResult:
        return IntentResult(
            business_purpose=context.business_purpose,
            technical_approach=context.technical_approach,
            alternatives_considered=context.alternatives_considered or [],
            target_audience=context.target_audience,
            key_concepts=context.key_concepts or [],
            sources=[ContextSource.model_validate(s) for s in context.sources or []],
            degraded=context.degraded,
        )
