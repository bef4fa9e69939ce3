"""GitHub webhook endpoint: pull requests start the pipeline, PR comments answer QA questions."""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..container import Container
from ..exceptions import ValidationError, WebhookValidationError
from ..models import PREvent
from ..queue import names
from ..repositories import PREventRepository, RepoRepository
from ..schemas.messages import ChangeAnalysisMessage
from ..schemas.webhook import WebhookResponse
from ..services.qa_session_service import QASessionService
from .deps import get_container, get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

PULL_REQUEST_ACTIONS = frozenset({"opened", "synchronize", "reopened", "ready_for_review"})


def _verify_github_signature(payload: bytes, signature_header: str, secret: str) -> bool:
    """
    Verify GitHub webhook HMAC-SHA256 signature.

    Args:
        payload: Raw request body bytes
        signature_header: Value of X-Hub-Signature-256 header
        secret: Webhook secret configured in GitHub

    Returns:
        True if signature is valid
    """
    if not signature_header or not signature_header.startswith("sha256="):
        return False

    expected_sig = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256
    ).hexdigest()

    received_sig = signature_header[7:]  # Strip "sha256=" prefix
    return hmac.compare_digest(expected_sig, received_sig)


@router.post("/github", response_model=WebhookResponse)
async def github_webhook(
    request: Request,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    """
    Receive GitHub webhooks.

    ``pull_request`` events store a PR event and enqueue change analysis;
    a redelivery (same ``X-GitHub-Delivery``) maps back to its first event
    and coalesces on that event's ``analyze-<prEventId>`` job id.
    ``issue_comment`` events on a pull request apply QA answers and
    ``/qa approve``.
    """
    body = await request.body()

    webhook_secret = container.settings.github_webhook_secret
    if webhook_secret:
        signature = request.headers.get("X-Hub-Signature-256", "")
        if not _verify_github_signature(body, signature, webhook_secret):
            logger.warning("Webhook signature verification failed")
            raise WebhookValidationError()
    else:
        logger.warning("GITHUB_WEBHOOK_SECRET not configured, skipping signature verification")

    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Invalid JSON payload", field="body") from None
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object", field="body")

    event_type = request.headers.get("X-GitHub-Event", "")
    if event_type == "ping":
        return WebhookResponse(status="ok", message="pong")
    if event_type == "pull_request":
        return _handle_pull_request(payload, db, container, request.headers.get("X-GitHub-Delivery") or None)
    if event_type == "issue_comment":
        return _handle_issue_comment(payload, db, container)

    return WebhookResponse(status="ignored", message=f"Event type '{event_type}' ignored")


def _handle_pull_request(
    payload: Dict[str, Any],
    db: Session,
    container: Container,
    delivery_id: Optional[str] = None,
) -> WebhookResponse:
    action = payload.get("action", "")
    if action not in PULL_REQUEST_ACTIONS:
        return WebhookResponse(status="ignored", message=f"pull_request action '{action}' ignored")

    pr = payload.get("pull_request") or {}
    repo_data = payload.get("repository") or {}
    full_name = repo_data.get("full_name")
    number = pr.get("number") or payload.get("number")
    if not full_name or "/" not in full_name:
        raise ValidationError("No repository full_name in payload", field="repository.full_name")
    if not isinstance(number, int):
        raise ValidationError("No pull request number in payload", field="pull_request.number")

    installation = payload.get("installation") or {}
    installation_id = str(installation["id"]) if installation.get("id") is not None else None

    repo = RepoRepository(db).upsert(
        full_name,
        installation_id=installation_id,
        default_branch=repo_data.get("default_branch"),
    )
    events = PREventRepository(db)
    event = events.get_by_delivery_id(delivery_id) if delivery_id else None
    redelivered = event is not None
    if event is None:
        try:
            event = events.add(PREvent(
                repository_id=repo.id,
                pr_number=number,
                action=action,
                delivery_id=delivery_id,
                title=pr.get("title") or "",
                body=pr.get("body"),
                author=(pr.get("user") or {}).get("login"),
                head_ref=(pr.get("head") or {}).get("ref"),
                base_ref=(pr.get("base") or {}).get("ref"),
                head_sha=(pr.get("head") or {}).get("sha"),
            ))
            db.commit()
        except IntegrityError:
            # A concurrent redelivery stored the event first.
            db.rollback()
            event = events.get_by_delivery_id(delivery_id) if delivery_id else None
            if event is None:
                raise
            redelivered = True
    else:
        db.commit()

    message = ChangeAnalysisMessage(
        pr_event_id=event.id,
        repository_id=repo.id,
        installation_id=installation_id,
        owner=repo.owner,
        repo=repo.name,
        pr_number=number,
    )
    job_id = names.stage_job_id(names.CHANGE_ANALYSIS, event.id)
    container.queue.enqueue(names.CHANGE_ANALYSIS, message.to_payload(), job_id=job_id)
    if redelivered:
        logger.info(f"Delivery {delivery_id} for {full_name}#{number} already received; coalesced into {job_id}")
        return WebhookResponse(
            status="duplicate",
            job_id=job_id,
            message=f"Delivery {delivery_id} already received",
        )
    logger.info(f"PR {full_name}#{number} {action}: change analysis queued as {job_id}")

    return WebhookResponse(
        status="queued",
        job_id=job_id,
        message=f"Change analysis enqueued for {full_name}#{number}",
    )


def _handle_issue_comment(payload: Dict[str, Any], db: Session, container: Container) -> WebhookResponse:
    issue = payload.get("issue") or {}
    comment = payload.get("comment") or {}
    if payload.get("action") != "created" or not issue.get("pull_request"):
        return WebhookResponse(status="ignored", message="Only new comments on pull requests are processed")
    user = comment.get("user") or {}
    if user.get("type") == "Bot":
        return WebhookResponse(status="ignored", message="Bot comments are ignored")

    full_name = (payload.get("repository") or {}).get("full_name", "")
    repo = RepoRepository(db).get_by_full_name(full_name)
    if repo is None:
        return WebhookResponse(status="ignored", message=f"Repository '{full_name}' is not tracked")

    outcome = QASessionService(db, container.queue).apply_comment(
        repo.id, issue.get("number"), comment.get("body") or "", author=user.get("login"),
    )
    if outcome.session_id is None:
        return WebhookResponse(status="ignored", message="; ".join(outcome.messages))

    summary = f"{outcome.answered} answered, {outcome.skipped} skipped"
    if outcome.approved:
        summary += ", session approved"
    if outcome.refinement_queued:
        summary += ", refinement queued"
    if outcome.messages:
        summary += f" ({'; '.join(outcome.messages)})"
    logger.info(f"QA comment on {full_name}#{issue.get('number')}: {summary}")
    return WebhookResponse(status="processed", job_id=outcome.session_id, message=summary)
