"""Change analyses. Rows are written once; reads go through the schema."""

from datetime import datetime
from typing import List, Optional

from ..models import ChangeAnalysis, PREvent
from ..schemas.changes import ChangeAnalysisResult, DocumentationImpact, FileChange
from ..exceptions import ChangeAnalysisNotFoundError
from .base import BaseRepository


class ChangeAnalysisRepository(BaseRepository[ChangeAnalysis]):
    model_class = ChangeAnalysis
    not_found_error = ChangeAnalysisNotFoundError

    def create(self, pr_event: PREvent, result: ChangeAnalysisResult) -> ChangeAnalysis:
        # Patches are large and only needed while analyzing.
        changes = [c.model_dump(mode="json", exclude={"patch"}) for c in result.changes]
        analysis = ChangeAnalysis(
            pr_event_id=pr_event.id,
            repository_id=pr_event.repository_id,
            pr_number=pr_event.pr_number,
            changes=changes,
            priority=result.priority.value,
            requires_documentation=result.requires_documentation,
            documentation_impact=result.documentation_impact.model_dump(mode="json"),
            summary=result.summary,
        )
        return self.add(analysis)

    def get_by_pr_event(self, pr_event_id: str) -> Optional[ChangeAnalysis]:
        return self.db.query(ChangeAnalysis).filter(ChangeAnalysis.pr_event_id == pr_event_id).first()

    def list_since(self, repository_id: str, since: Optional[datetime]) -> List[ChangeAnalysis]:
        query = self.db.query(ChangeAnalysis).filter(ChangeAnalysis.repository_id == repository_id)
        if since is not None:
            query = query.filter(ChangeAnalysis.created_at > since)
        return query.order_by(ChangeAnalysis.created_at.asc()).all()

    @staticmethod
    def to_result(analysis: ChangeAnalysis) -> ChangeAnalysisResult:
        return ChangeAnalysisResult(
            changes=[FileChange.model_validate(c) for c in analysis.changes],
            priority=analysis.priority,
            requires_documentation=analysis.requires_documentation,
            documentation_impact=DocumentationImpact.model_validate(analysis.documentation_impact),
            summary=analysis.summary or "",
        )
