"""HTTP tests for the webhook, job, queue, QA, drift and diff endpoints."""

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from docsynth.container import build_container
from docsynth.main import create_app
from docsynth.queue import names
from docsynth.schemas.qa import QAAnalysisResult, QuestionDraft
from docsynth.services.job_service import JobService
from docsynth.services.qa_session_service import QASessionService


def pull_request_payload(action="opened", number=42, full_name="acme/shop"):
    return {
        "action": action,
        "number": number,
        "pull_request": {
            "number": number,
            "title": "Add invoice formatting",
            "body": "Fixes #3",
            "user": {"login": "dev"},
            "head": {"ref": "feature/invoices", "sha": "abc123"},
            "base": {"ref": "main"},
        },
        "repository": {"full_name": full_name, "default_branch": "main"},
        "installation": {"id": 99},
    }


def post_event(client, event, payload, **headers):
    return client.post(
        "/api/webhooks/github",
        content=json.dumps(payload),
        headers={"X-GitHub-Event": event, "Content-Type": "application/json", **headers},
    )


def _client_for(settings, engine, llm, source_control, **overrides):
    container = build_container(settings.model_copy(update=overrides), engine=engine, llm=llm,
                                source_control=source_control, context_providers=[])
    return TestClient(create_app(container))


class TestWebhookIntake:
    def test_pull_request_queues_change_analysis(self, client, container):
        response = post_event(client, "pull_request", pull_request_payload())
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "queued"
        assert body["job_id"].startswith("analyze-")
        status = container.queue.get_status(names.CHANGE_ANALYSIS, body["job_id"])
        assert status.state == "waiting"

    def test_redelivery_coalesces_on_delivery_id(self, client, container):
        first = post_event(client, "pull_request", pull_request_payload(), **{"X-GitHub-Delivery": "d-1"}).json()
        again = post_event(client, "pull_request", pull_request_payload(), **{"X-GitHub-Delivery": "d-1"}).json()
        assert first["status"] == "queued"
        assert again["status"] == "duplicate"
        assert again["job_id"] == first["job_id"]
        assert container.queue.metrics(names.CHANGE_ANALYSIS)["waiting"] == 1

        other = post_event(client, "pull_request", pull_request_payload("synchronize"),
                           **{"X-GitHub-Delivery": "d-2"}).json()
        assert other["status"] == "queued"
        assert other["job_id"] != first["job_id"]

    def test_ping(self, client):
        assert post_event(client, "ping", {"zen": "hi"}).json()["message"] == "pong"

    def test_closed_action_ignored(self, client):
        assert post_event(client, "pull_request", pull_request_payload("closed")).json()["status"] == "ignored"

    def test_unknown_event_ignored(self, client):
        assert post_event(client, "star", {}).json()["status"] == "ignored"

    def test_invalid_json(self, client):
        response = client.post("/api/webhooks/github", content=b"{nope",
                               headers={"X-GitHub-Event": "pull_request"})
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_missing_repository_name(self, client):
        payload = pull_request_payload()
        del payload["repository"]["full_name"]
        assert post_event(client, "pull_request", payload).status_code == 400

    def test_signature_required_when_secret_set(self, settings, engine, llm, source_control):
        with _client_for(settings, engine, llm, source_control, github_webhook_secret="s3cret") as client:
            payload = pull_request_payload()
            assert post_event(client, "pull_request", payload).status_code == 401

            raw = json.dumps(payload).encode()
            signature = "sha256=" + hmac.new(b"s3cret", raw, hashlib.sha256).hexdigest()
            response = client.post("/api/webhooks/github", content=raw, headers={
                "X-GitHub-Event": "pull_request", "X-Hub-Signature-256": signature,
            })
            assert response.status_code == 200
            assert response.json()["status"] == "queued"


def session_with_question(db, factory, queue):
    """An awaiting_response session on acme/shop#42 with one pending question."""
    repo = factory.repo()
    job = JobService(db).create_for_analysis(factory.analysis(repo).id, repo.id, 42)
    service = QASessionService(db, queue)
    session = service.create_session(repo.id, job.id, 42, ["README.md"])
    service.start_review(session.id)
    session, _ = service.record_analysis(session.id, QAAnalysisResult(
        questions=[QuestionDraft(question_type="ambiguity", question="Currency?", document_path="README.md")],
        confidence_score=60, can_auto_approve=False,
    ))
    return session.id, session.questions[0].id


def comment_payload(body, user_type="User", full_name="acme/shop"):
    return {
        "action": "created",
        "issue": {"number": 42, "pull_request": {"url": "https://api.github.com/x"}},
        "comment": {"body": body, "user": {"login": "dev", "type": user_type}},
        "repository": {"full_name": full_name},
    }


class TestCommentWebhook:
    def test_answer_by_comment_queues_refinement(self, client, container, db, factory):
        session_id, question_id = session_with_question(db, factory, container.queue)
        response = post_event(client, "issue_comment", comment_payload(f"qa-id:{question_id} USD"))
        body = response.json()
        assert body["status"] == "processed"
        assert body["job_id"] == session_id
        assert "refinement queued" in body["message"]
        assert container.queue.get_status(names.QA_REFINEMENT, f"refine-{session_id}") is not None

    def test_bot_comments_ignored(self, client, container, db, factory):
        session_with_question(db, factory, container.queue)
        response = post_event(client, "issue_comment", comment_payload("qa-id:x USD", user_type="Bot"))
        assert response.json()["status"] == "ignored"

    def test_untracked_repository(self, client):
        payload = comment_payload("hello", full_name="other/repo")
        assert post_event(client, "issue_comment", payload).json()["status"] == "ignored"


class TestJobEndpoints:
    @pytest.fixture()
    def failed_job_id(self, db, factory):
        repo = factory.repo()
        service = JobService(db)
        job = service.create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        service.fail(job.id, "provider down", stage=names.INTENT_INFERENCE)
        return job.id

    def test_list_and_get(self, client, failed_job_id):
        listed = client.get("/api/jobs", params={"status": "FAILED"}).json()
        assert [j["id"] for j in listed] == [failed_job_id]
        job = client.get(f"/api/jobs/{failed_job_id}").json()
        assert job["failed_stage"] == names.INTENT_INFERENCE
        assert [h["status"] for h in job["history"]] == ["PENDING", "FAILED"]

    def test_unknown_job_is_404(self, client):
        response = client.get("/api/jobs/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "JOB_NOT_FOUND"

    def test_retry(self, client, container, failed_job_id):
        response = client.post(f"/api/jobs/{failed_job_id}/retry")
        assert response.status_code == 200
        assert response.json()["retry_count"] == 1
        analysis_id = response.json()["change_analysis_id"]
        assert container.queue.get_status(names.INTENT_INFERENCE, f"intent-{analysis_id}-retry1") is not None

    def test_retry_of_running_job_conflicts(self, client, db, factory):
        repo = factory.repo()
        job = JobService(db).create_for_analysis(factory.analysis(repo).id, repo.id, 42)
        assert client.post(f"/api/jobs/{job.id}/retry").status_code == 409

    def test_trigger_limit(self, settings, engine, llm, source_control, failed_job_id):
        with _client_for(settings, engine, llm, source_control, trigger_limit_per_minute=1) as client:
            headers = {"X-User-Id": "u1"}
            assert client.post(f"/api/jobs/{failed_job_id}/retry", headers=headers).status_code == 200
            response = client.post(f"/api/jobs/{failed_job_id}/retry", headers=headers)
            assert response.status_code == 429
            assert response.json()["error"] == "RATE_LIMITED"
            assert "Retry-After" in response.headers


class TestQueueEndpoints:
    def test_status_uses_camel_case(self, client, container):
        container.queue.enqueue(names.DOC_REVIEW, {"generationJobId": "j", "repositoryId": "r"}, job_id="review-j")
        body = client.get(f"/api/queues/{names.DOC_REVIEW}/jobs/review-j").json()
        assert body["state"] == "waiting"
        assert body["attemptsMade"] == 0
        assert body["failedReason"] is None

    def test_unknown_queue(self, client):
        assert client.get("/api/queues/nope/metrics").status_code == 400

    def test_unknown_queue_job(self, client):
        assert client.get(f"/api/queues/{names.DOC_REVIEW}/jobs/none").status_code == 404

    def test_metrics(self, client, container):
        container.queue.enqueue(names.SELF_HEALING, {"repositoryId": "r", "action": "assess-drift"})
        counts = client.get(f"/api/queues/{names.SELF_HEALING}/metrics").json()["counts"]
        assert counts["waiting"] == 1
        assert counts["failed"] == 0


class TestQAEndpoints:
    def test_answer_then_inspect(self, client, container, db, factory):
        session_id, question_id = session_with_question(db, factory, container.queue)
        response = client.post(f"/api/qa/sessions/{session_id}/questions/{question_id}/answer",
                               json={"answer": "USD", "answered_by": "dev"})
        assert response.status_code == 200
        assert response.json()["refinement_queued"] is True

        session = client.get(f"/api/qa/sessions/{session_id}").json()
        assert session["status"] == "awaiting_response"
        assert session["questions"][0]["status"] == "answered"

    def test_approve_with_pending_questions_is_rejected(self, client, container, db, factory):
        session_id, _ = session_with_question(db, factory, container.queue)
        response = client.post(f"/api/qa/sessions/{session_id}/approve", json={"approved_by": "lead"})
        assert response.status_code == 409
        approved = client.post(f"/api/qa/sessions/{session_id}/approve",
                               json={"approved_by": "lead", "skip_pending": True})
        assert approved.json()["status"] == "completed"

    def test_listing_by_status(self, client, container, db, factory):
        session_id, _ = session_with_question(db, factory, container.queue)
        listed = client.get("/api/qa/sessions", params={"status": "awaiting_response"}).json()
        assert [s["id"] for s in listed] == [session_id]


class TestDriftAndHealing:
    @pytest.fixture()
    def repo_id(self, factory):
        repo = factory.repo()
        factory.document(repo)
        return repo.id

    def test_scan_list_and_act(self, client, repo_id):
        scan = client.post(f"/api/drift/repositories/{repo_id}/scan").json()
        assert scan["predictions_created"] == 1

        [prediction] = client.get("/api/drift/predictions", params={"repository_id": repo_id}).json()
        assert set(prediction["signals"]) == {"codeChanges", "apiChanges", "dependencyChanges",
                                              "timeSinceUpdateDays"}
        acted = client.post(f"/api/drift/predictions/{prediction['id']}/action",
                            json={"action": "acknowledge", "user_id": "lead"}).json()
        assert acted["status"] == "acknowledged"
        assert client.get("/api/drift/stats").json()["by_status"]["acknowledged"] == 1

    def test_invalid_action_body(self, client, repo_id):
        client.post(f"/api/drift/repositories/{repo_id}/scan")
        [prediction] = client.get("/api/drift/predictions").json()
        response = client.post(f"/api/drift/predictions/{prediction['id']}/action", json={"action": "escalate"})
        assert response.status_code == 422

    def test_healing_config_and_run(self, client, container, repo_id):
        config = client.put(f"/api/self-healing/{repo_id}/config", json={"drift_threshold": 25}).json()
        assert config["drift_threshold"] == 25
        assert client.get(f"/api/self-healing/{repo_id}/config").json()["drift_threshold"] == 25

        response = client.post(f"/api/self-healing/{repo_id}/run", json={"action": "assess-drift"})
        assert response.status_code == 202
        job_id = response.json()["job_id"]
        assert container.queue.get_status(names.SELF_HEALING, job_id).state == "waiting"

    def test_disabled_healing_rejects_runs(self, client, repo_id):
        client.put(f"/api/self-healing/{repo_id}/config", json={"healing_enabled": False})
        assert client.post(f"/api/self-healing/{repo_id}/run", json={}).status_code == 409


class TestDiffEndpoints:
    @pytest.fixture()
    def repo_id(self, factory):
        repo = factory.repo()
        factory.document(repo, "README.md", "# Shop\nOld.\n## Install\nnpm i\n")
        return repo.id

    def test_diff_and_preview(self, client, repo_id):
        request = {"repository_id": repo_id, "document_path": "README.md",
                   "proposed_content": "# Shop\nNew.\n## Install\nnpm i\n"}
        diff = client.post("/api/diffs", json=request).json()
        assert diff["summary"]["modifications"] == 1

        section_id = diff["sections"][0]["section_id"]
        preview = client.post("/api/diffs/preview", json={
            **request, "decisions": [{"section_id": section_id, "decision": "rejected"}],
        }).json()
        assert preview["content"] == "# Shop\nOld.\n## Install\nnpm i\n"
        assert preview["rejected"] == 1

    def test_unknown_document(self, client, repo_id):
        response = client.post("/api/diffs", json={"repository_id": repo_id, "document_path": "nope.md",
                                                   "proposed_content": "x"})
        assert response.status_code == 404


class TestHealth:
    def test_root_and_health(self, client):
        assert client.get("/").json()["status"] == "running"
        health = client.get("/health").json()
        assert health["status"] == "healthy"
        assert health["llm"] == "configured"

    def test_request_id_echoed(self, client):
        response = client.get("/api/jobs", headers={"X-Request-ID": "req-1"})
        assert response.headers["X-Request-ID"] == "req-1"
