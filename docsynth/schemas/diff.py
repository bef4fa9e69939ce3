"""Section diff and staging schemas. Ephemeral, never persisted."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class SectionChangeType(str, Enum):
    ADDITION = "addition"
    DELETION = "deletion"
    MODIFICATION = "modification"
    UNCHANGED = "unchanged"


class DocSection(BaseModel):
    title: str  # "" for the preamble before the first heading
    level: int  # 0 for the preamble
    content: str  # heading line included


class SectionDiff(BaseModel):
    section_id: str
    title: str
    change_type: SectionChangeType
    original_content: Optional[str] = None
    proposed_content: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)


class DiffSummary(BaseModel):
    additions: int = 0
    deletions: int = 0
    modifications: int = 0
    unchanged: int = 0
    overall_confidence: float = 1.0


class DocDiff(BaseModel):
    document_path: str = ""
    sections: List[SectionDiff]
    summary: DiffSummary

    def section(self, section_id: str) -> Optional[SectionDiff]:
        for s in self.sections:
            if s.section_id == section_id:
                return s
        return None


class StagingDecisionType(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EDITED = "edited"


class StagingDecision(BaseModel):
    section_id: str
    decision: StagingDecisionType
    edited_content: Optional[str] = None

    @model_validator(mode="after")
    def _edit_needs_content(self) -> "StagingDecision":
        if self.decision == StagingDecisionType.EDITED and self.edited_content is None:
            raise ValueError("edited decisions require edited_content")
        return self


class StagingSession(BaseModel):
    document_path: str = ""
    decisions: Dict[str, StagingDecision]


class PreviewResult(BaseModel):
    content: str
    accepted: int
    rejected: int
    edited: int


class DiffRequest(BaseModel):
    repository_id: str
    document_path: str
    proposed_content: str


class PreviewRequest(DiffRequest):
    decisions: List[StagingDecision] = []
