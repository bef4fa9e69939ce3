"""Exception handler turning ``DocSynthError`` into JSON envelopes."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ..exceptions import DocSynthError, RateLimitedError

logger = logging.getLogger(__name__)


async def docsynth_exception_handler(request: Request, exc: DocSynthError) -> JSONResponse:
    """Log the error and return ``exc.to_dict()`` with the error's status code."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"DocSynthError: {exc.error_code.value}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code,
        },
    )
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(int(exc.retry_after) + 1)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
