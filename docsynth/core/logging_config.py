"""Structured logging configuration for DocSynth.

JSON lines in production, human-readable text in development. A
contextvars-based request id (HTTP requests) or job id (queue workers) is
included in every record when set.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional


# Set by the request context middleware and by the queue consumer per job.
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")


class _JsonFormatter(logging.Formatter):
    """Emit each log record as a single JSON line.

    Fields passed through ``extra`` are merged into the top-level object, so
    ``logger.info("claimed", extra={"queue": "doc-review"})`` yields a
    ``"queue"`` key next to the standard fields.
    """

    _RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = request_id_var.get("")
        if rid:
            payload["request_id"] = rid

        for key, value in record.__dict__.items():
            if key not in self._RESERVED and key not in payload:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class _TextFormatter(logging.Formatter):
    """Text format with the request/job id appended when present."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        rid = request_id_var.get("")
        return f"{line} [{rid}]" if rid else line


# Common API key and token shapes, replaced whole.
_TOKEN_PATTERNS = [
    re.compile(r"\b(sk-[a-zA-Z0-9\-_]{20,})\b"),         # OpenAI / Anthropic keys
    re.compile(r"\b(gh[pousr]_[a-zA-Z0-9]{20,})\b"),     # GitHub tokens
    re.compile(r"\b(xox[abpr]-[a-zA-Z0-9\-]{10,})\b"),   # Slack tokens
    re.compile(r"\b(lin_api_[a-zA-Z0-9]{20,})\b"),       # Linear keys
]

# Secrets following a marker; the marker (group 1) is kept.
_PREFIXED_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)[a-zA-Z0-9._\-]{20,}"),
    re.compile(
        r"(?i)((?:api_key|api_token|secret|password|token|authorization)[=:]\s*)[^\s,\x27\"]{8,}"
    ),
]

_REDACTED = "***REDACTED***"


class _SecretFilter(logging.Filter):
    """Redact potential secrets from log messages and exception text."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        record.msg = self._redact(str(record.msg))
        if record.exc_text:
            record.exc_text = self._redact(record.exc_text)
        return True

    @staticmethod
    def _redact(text: str) -> str:
        for pattern in _TOKEN_PATTERNS:
            text = pattern.sub(_REDACTED, text)
        for pattern in _PREFIXED_PATTERNS:
            text = pattern.sub(lambda m: m.group(1) + _REDACTED, text)
        return text


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure application-wide logging.

    Args:
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL. Defaults to INFO.
        log_format: ``"json"`` for structured output, ``"text"`` for human-readable.
                    Defaults to ``"json"``.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_SecretFilter())

    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            _TextFormatter(
                fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Reduce noise from third-party libraries.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured", extra={"level": level, "format": fmt})
