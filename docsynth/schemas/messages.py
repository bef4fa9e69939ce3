"""Queue message contracts. JSON payloads use camelCase keys."""

from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..exceptions import JobValidationError
from .drift import HealingAction

MessageT = TypeVar("MessageT", bound="QueueMessage")


class QueueMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def parse_payload(cls: Type[MessageT], payload: Dict[str, Any]) -> MessageT:
        """Validate a consumed payload; malformed input is not retryable."""
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ()))
            raise JobValidationError(
                f"Invalid {cls.__name__} payload: {first.get('msg')}", field=field or None
            ) from e


class ChangeAnalysisMessage(QueueMessage):
    pr_event_id: str = Field(min_length=1)
    repository_id: str = Field(min_length=1)
    installation_id: Optional[str] = None
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    pr_number: int = Field(ge=1)


class IntentInferenceMessage(QueueMessage):
    change_analysis_id: str = Field(min_length=1)
    repository_id: str = Field(min_length=1)
    installation_id: Optional[str] = None


class DocGenerationMessage(QueueMessage):
    change_analysis_id: str = Field(min_length=1)
    intent_context_id: str = Field(min_length=1)
    repository_id: str = Field(min_length=1)
    installation_id: Optional[str] = None


class DocReviewMessage(QueueMessage):
    generation_job_id: str = Field(min_length=1)
    repository_id: str = Field(min_length=1)
    installation_id: Optional[str] = None
    change_analysis_id: Optional[str] = None
    intent_context_id: Optional[str] = None


class QARefinementMessage(QueueMessage):
    session_id: str = Field(min_length=1)
    repository_id: str = Field(min_length=1)
    installation_id: Optional[str] = None


class SelfHealingMessage(QueueMessage):
    repository_id: str = Field(min_length=1)
    action: HealingAction
    drift_threshold: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    confidence_minimum: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_sections_per_run: Optional[int] = Field(default=None, ge=1)
