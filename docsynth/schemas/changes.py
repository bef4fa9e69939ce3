"""Change-set schemas shared by the analyzer, the pipeline and the drift monitor."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.change_analysis import ChangePriority


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class SemanticChangeType(str, Enum):
    NEW_EXPORT = "new-export"
    NEW_FUNCTION = "new-function"
    NEW_CLASS = "new-class"
    NEW_INTERFACE = "new-interface"
    NEW_TYPE = "new-type"
    NEW_ENDPOINT = "new-endpoint"
    API_CHANGE = "api-change"
    SIGNATURE_CHANGE = "signature-change"
    REMOVAL = "removal"
    DEPRECATION = "deprecation"


NEW_API_TYPES = frozenset({
    SemanticChangeType.NEW_EXPORT,
    SemanticChangeType.NEW_FUNCTION,
    SemanticChangeType.NEW_CLASS,
    SemanticChangeType.NEW_INTERFACE,
    SemanticChangeType.NEW_TYPE,
    SemanticChangeType.NEW_ENDPOINT,
})

API_CHANGE_TYPES = NEW_API_TYPES | {
    SemanticChangeType.API_CHANGE,
    SemanticChangeType.SIGNATURE_CHANGE,
    SemanticChangeType.REMOVAL,
}


class FileCategory(str, Enum):
    SOURCE = "source"
    TEST = "test"
    GENERATED = "generated"
    CONFIG = "config"
    DOCS = "docs"
    OTHER = "other"


class CodeLocation(BaseModel):
    file: str
    start_line: int = Field(default=0, ge=0)
    end_line: int = Field(default=0, ge=0)


class SemanticChange(BaseModel):
    """A structured marker such as "new exported function ``foo``"."""
    type: SemanticChangeType
    name: str = ""
    description: str = ""
    location: Optional[CodeLocation] = None
    breaking: bool = False
    exported: bool = True


class FileChange(BaseModel):
    """One changed file. ``category`` is assigned by the analyzer."""
    path: str = Field(min_length=1)
    change_type: ChangeType
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    patch: Optional[str] = None
    previous_path: Optional[str] = None
    semantic_changes: List[SemanticChange] = []
    category: Optional[FileCategory] = None

    @field_validator('path')
    @classmethod
    def normalize_path(cls, v: str) -> str:
        v = v.strip()
        if v.startswith('./'):
            v = v[2:]
        v = v.lstrip('/')
        if not v:
            raise ValueError("path must not be blank")
        return v

    @property
    def total_lines(self) -> int:
        return self.additions + self.deletions


class DocumentationImpact(BaseModel):
    affected_docs: List[str] = []
    new_docs_needed: List[str] = []
    update_priority: ChangePriority = ChangePriority.NONE


class ChangeAnalysisResult(BaseModel):
    """Analyzer output, persisted as a ``ChangeAnalysis`` row."""
    changes: List[FileChange]
    priority: ChangePriority
    requires_documentation: bool
    documentation_impact: DocumentationImpact
    summary: str = ""

    @model_validator(mode="after")
    def _every_file_categorized(self) -> "ChangeAnalysisResult":
        if any(change.category is None for change in self.changes):
            raise ValueError("every change must carry a category")
        return self

    @property
    def total_additions(self) -> int:
        return sum(c.additions for c in self.changes)

    @property
    def total_deletions(self) -> int:
        return sum(c.deletions for c in self.changes)

    @property
    def semantic_changes(self) -> List[SemanticChange]:
        return [s for c in self.changes for s in c.semantic_changes]
