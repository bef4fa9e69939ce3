"""Intent inference schemas."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ContextSourceType(str, Enum):
    PR = "pr"
    GITHUB_ISSUE = "github-issue"
    JIRA = "jira"
    LINEAR = "linear"
    SLACK = "slack"


class ContextSource(BaseModel):
    type: ContextSourceType
    identifier: str
    title: Optional[str] = None
    content: str = ""
    url: Optional[str] = None
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)


class PullRequestContext(BaseModel):
    """What the pipeline knows about the PR behind a change."""
    owner: str
    repo: str
    number: Optional[int] = None
    title: str = ""
    body: Optional[str] = None
    author: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class IntentResult(BaseModel):
    business_purpose: str
    technical_approach: str
    alternatives_considered: List[str] = []
    target_audience: str = "Developers"
    key_concepts: List[str] = []
    sources: List[ContextSource] = []
    degraded: bool = False
