"""FastAPI dependencies shared by the routers."""

from typing import Iterator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..container import Container
from ..core.rate_limit import AdmissionGate, client_key
from ..database import session_scope
from ..exceptions import RateLimitedError
from ..middleware.request_context import client_ip


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_db(container: Container = Depends(get_container)) -> Iterator[Session]:
    """Per-request session; rolled back if the handler raises."""
    yield from session_scope(container.session_factory)


def limit_triggers(
    request: Request,
    container: Container = Depends(get_container),
) -> None:
    """Throttle manual pipeline triggers per user, organization or IP.

    Identity comes from the ``X-User-Id`` / ``X-Org-Id`` headers set by the
    gateway in front of the API.
    """
    key = client_key(
        user_id=request.headers.get("x-user-id"),
        org_id=request.headers.get("x-org-id"),
        ip=client_ip(request),
    )
    decision = AdmissionGate("manual-triggers", container.trigger_limiter).admit(key)
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after, key=key)
