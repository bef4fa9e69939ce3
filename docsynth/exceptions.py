"""Custom exception hierarchy for DocSynth."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses and job failure reasons."""

    # Not found
    REPOSITORY_NOT_FOUND = "REPOSITORY_NOT_FOUND"
    PR_EVENT_NOT_FOUND = "PR_EVENT_NOT_FOUND"
    CHANGE_ANALYSIS_NOT_FOUND = "CHANGE_ANALYSIS_NOT_FOUND"
    INTENT_CONTEXT_NOT_FOUND = "INTENT_CONTEXT_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    QA_SESSION_NOT_FOUND = "QA_SESSION_NOT_FOUND"
    QA_QUESTION_NOT_FOUND = "QA_QUESTION_NOT_FOUND"
    DRIFT_PREDICTION_NOT_FOUND = "DRIFT_PREDICTION_NOT_FOUND"
    QUEUE_JOB_NOT_FOUND = "QUEUE_JOB_NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CHANGE_SET = "INVALID_CHANGE_SET"
    INVALID_JOB_PAYLOAD = "INVALID_JOB_PAYLOAD"

    # Business rules
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"

    # Webhook errors
    WEBHOOK_VALIDATION_FAILED = "WEBHOOK_VALIDATION_FAILED"

    # Rate limiting
    RATE_LIMITED = "RATE_LIMITED"

    # Upstream collaborators
    LLM_PROVIDER_ERROR = "LLM_PROVIDER_ERROR"
    SOURCE_CONTROL_ERROR = "SOURCE_CONTROL_ERROR"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class DocSynthError(Exception):
    """
    Base exception for all DocSynth errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(DocSynthError):
    """An entity looked up by id does not exist."""

    entity = "Entity"
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, entity_id: Any):
        super().__init__(
            f"{self.entity} not found: {entity_id}",
            self.code,
            status_code=404,
            details={"id": str(entity_id)}
        )


class RepositoryNotFoundError(NotFoundError):
    entity = "Repository"
    code = ErrorCode.REPOSITORY_NOT_FOUND


class PREventNotFoundError(NotFoundError):
    entity = "PR event"
    code = ErrorCode.PR_EVENT_NOT_FOUND


class ChangeAnalysisNotFoundError(NotFoundError):
    entity = "Change analysis"
    code = ErrorCode.CHANGE_ANALYSIS_NOT_FOUND


class IntentContextNotFoundError(NotFoundError):
    entity = "Intent context"
    code = ErrorCode.INTENT_CONTEXT_NOT_FOUND


class GenerationJobNotFoundError(NotFoundError):
    entity = "Generation job"
    code = ErrorCode.JOB_NOT_FOUND


class DocumentNotFoundError(NotFoundError):
    entity = "Document"
    code = ErrorCode.DOCUMENT_NOT_FOUND


class QASessionNotFoundError(NotFoundError):
    entity = "QA session"
    code = ErrorCode.QA_SESSION_NOT_FOUND


class QAQuestionNotFoundError(NotFoundError):
    entity = "QA question"
    code = ErrorCode.QA_QUESTION_NOT_FOUND


class DriftPredictionNotFoundError(NotFoundError):
    entity = "Drift prediction"
    code = ErrorCode.DRIFT_PREDICTION_NOT_FOUND


class QueueJobNotFoundError(NotFoundError):
    entity = "Queue job"
    code = ErrorCode.QUEUE_JOB_NOT_FOUND


# ---------------------------------------------------------------------------
# Validation (never retried)
# ---------------------------------------------------------------------------

class ValidationError(DocSynthError):
    """Validation failed for user input."""

    def __init__(self, message: str, field: Optional[str] = None,
                 error_code: ErrorCode = ErrorCode.VALIDATION_ERROR):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            error_code,
            status_code=400,
            details=details
        )


class ChangeValidationError(ValidationError):
    """A change set handed to the analyzer is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field, ErrorCode.INVALID_CHANGE_SET)


class JobValidationError(ValidationError):
    """A queue payload is malformed; the job fails without retry."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, field, ErrorCode.INVALID_JOB_PAYLOAD)


# ---------------------------------------------------------------------------
# Business rules
# ---------------------------------------------------------------------------

class BusinessRuleError(DocSynthError):
    """Request rejected synchronously because it breaks a business rule."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            ErrorCode.BUSINESS_RULE_VIOLATION,
            status_code=409,
            details=details
        )


class InvalidStateTransitionError(DocSynthError):
    """A state machine was asked for a transition it does not allow."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{target}'",
            ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={"entity": entity, "current": current, "target": target}
        )


class WebhookValidationError(DocSynthError):
    """Webhook signature validation failed."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(
            message,
            ErrorCode.WEBHOOK_VALIDATION_FAILED,
            status_code=401,
        )


class RateLimitedError(DocSynthError):
    """Admission denied by a rate limiter."""

    def __init__(self, retry_after: float, key: str = ""):
        super().__init__(
            "Too many requests",
            ErrorCode.RATE_LIMITED,
            status_code=429,
            details={"retry_after": round(retry_after, 1), "key": key}
        )
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Upstream collaborators (transient, retried by the queue)
# ---------------------------------------------------------------------------

class LLMProviderError(DocSynthError):
    """The LLM provider call failed or timed out."""

    def __init__(self, message: str, model: str = ""):
        super().__init__(
            message,
            ErrorCode.LLM_PROVIDER_ERROR,
            status_code=502,
            details={"model": model} if model else {}
        )


class SourceControlError(DocSynthError):
    """A source-control API call failed after retries."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(
            message,
            ErrorCode.SOURCE_CONTROL_ERROR,
            status_code=502,
            details={"upstream_status": status} if status else {}
        )
        self.status = status
