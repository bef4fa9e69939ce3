"""Tests for self-healing scheduling and regeneration runs."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from docsynth.exceptions import BusinessRuleError
from docsynth.integrations.llm_client import LLMClient
from docsynth.queue import JobQueue, names
from docsynth.repositories import DocumentRepository, DriftPredictionRepository, GenerationJobRepository
from docsynth.schemas.documents import RegeneratedDocument
from docsynth.schemas.drift import HealingAction, HealingRunRequest
from docsynth.schemas.messages import SelfHealingMessage
from docsynth.services.doc_generator import DocGenerator
from docsynth.services.job_service import JobService
from docsynth.services.qa_session_service import QASessionService
from docsynth.services.self_healing import SelfHealingService, resolve_config

STALE = "# Shop\nSell things.\n## Install\nnpm install shop\n## Billing\nTotals are plain numbers.\n"
FRESH = "# Shop\nSell things online.\n## Install\nnpm install shop\n## Billing\nUse formatInvoice.\n"


@pytest.fixture()
def queue(session_factory):
    return JobQueue(session_factory)


@pytest.fixture()
def generator():
    generator = DocGenerator(LLMClient(model=""))
    generator.regenerate_document = AsyncMock(
        return_value=RegeneratedDocument(content=FRESH, confidence=0.9, provider="stub"),
    )
    return generator


@pytest.fixture()
def healer(session_factory, generator, queue, source_control):
    return SelfHealingService(session_factory, generator, queue, source_control)


@pytest.fixture()
def repo(db, factory):
    repo = factory.repo()
    doc = factory.document(repo, "README.md", STALE)
    doc.updated_at = datetime.now(timezone.utc) - timedelta(days=90)
    db.commit()
    factory.analysis(repo)
    return repo


def _message(repo, action=HealingAction.REGENERATE, **overrides):
    overrides.setdefault("drift_threshold", 10.0)
    return SelfHealingMessage(repository_id=repo.id, action=action, **overrides)


class TestProducers:
    def test_disabled_repository_rejects_runs(self, db, factory, healer):
        repo = factory.repo(healing_enabled=False)
        with pytest.raises(BusinessRuleError):
            healer.request_run(repo.id, HealingRunRequest())

    def test_request_run_enqueues(self, repo, healer, queue):
        handle = healer.request_run(repo.id, HealingRunRequest(action="create-pr", drift_threshold=25))
        assert handle.queue_name == names.SELF_HEALING
        status = queue.get_status(names.SELF_HEALING, handle.job_id)
        assert status.state == "waiting"

    def test_daily_schedule_runs_once_per_day(self, db, factory, healer, queue):
        enabled = factory.repo("acme/shop")
        factory.repo("acme/legacy", healing_enabled=False)
        day = date(2026, 3, 1)
        assert healer.schedule_daily(day) == 1
        assert healer.schedule_daily(day) == 0
        assert queue.get_status(names.SELF_HEALING, f"assess-{enabled.id}-20260301") is not None


class TestConfig:
    def test_message_overrides_repository_defaults(self, factory):
        repo = factory.repo(drift_threshold=60.0, max_sections_per_run=4)
        config = resolve_config(repo, SelfHealingMessage(repository_id=repo.id, action="regenerate",
                                                         drift_threshold=20.0))
        assert config.drift_threshold == 20.0
        assert config.max_sections_per_run == 4
        assert config.confidence_minimum == 0.7


class TestRun:
    @pytest.mark.asyncio
    async def test_assess_only_scans(self, repo, healer, generator):
        result = await healer.run(_message(repo, HealingAction.ASSESS_DRIFT))
        assert result.scan.predictions_created == 1
        assert result.outcomes == []
        generator.regenerate_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_regenerates_and_queues_review(self, db, repo, healer, queue):
        result = await healer.run(_message(repo))
        [outcome] = result.outcomes
        assert outcome.status == "regenerated"
        assert outcome.sections_applied == 2

        db.expire_all()
        doc = DocumentRepository(db).get_by_path(repo.id, "README.md")
        assert "formatInvoice" in doc.content
        job = GenerationJobRepository(db).get_by_id(outcome.generation_job_id)
        assert job.status == "REVIEWING"
        assert queue.get_status(names.DOC_REVIEW, f"review-{job.id}") is not None
        [prediction] = DriftPredictionRepository(db).list_predictions(repository_id=repo.id)
        assert prediction.status == "resolved"

    @pytest.mark.asyncio
    async def test_section_budget_limits_changes(self, db, repo, healer):
        result = await healer.run(_message(repo, max_sections_per_run=1))
        assert result.outcomes[0].sections_applied == 1
        db.expire_all()
        doc = DocumentRepository(db).get_by_path(repo.id, "README.md")
        assert "Sell things online." in doc.content
        assert "Totals are plain numbers." in doc.content

    @pytest.mark.asyncio
    async def test_low_confidence_is_skipped(self, db, repo, healer, generator):
        generator.regenerate_document.return_value = RegeneratedDocument(
            content=FRESH, confidence=0.7, provider="stub",
        )
        result = await healer.run(_message(repo))
        assert result.outcomes[0].status == "skipped"
        db.expire_all()
        [prediction] = DriftPredictionRepository(db).list_predictions(repository_id=repo.id)
        assert prediction.status == "open"
        assert "does not exceed" in prediction.last_error

    @pytest.mark.asyncio
    async def test_open_review_blocks_regeneration(self, db, factory, repo, healer, generator):
        job = JobService(db).create_for_analysis(factory.analysis(repo, pr_number=9).id, repo.id, 9)
        QASessionService(db).create_session(repo.id, job.id, 9, ["README.md"])
        result = await healer.run(_message(repo))
        assert result.outcomes[0].reason == "document has work in flight"
        generator.regenerate_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_generator_failure_recorded(self, db, repo, healer, generator):
        generator.regenerate_document.side_effect = RuntimeError("provider exploded")
        result = await healer.run(_message(repo))
        assert result.outcomes[0].status == "failed"
        db.expire_all()
        [prediction] = DriftPredictionRepository(db).list_predictions(repository_id=repo.id)
        assert "provider exploded" in prediction.last_error

    @pytest.mark.asyncio
    async def test_create_pr_opens_pull_request(self, repo, healer, source_control):
        result = await healer.run(_message(repo, HealingAction.CREATE_PR))
        assert result.pull_request_url == "https://github.com/acme/shop/pull/7"
        source_control.create_branch.assert_awaited_once()
        assert source_control.put_file.await_args.args[2] == "README.md"

    @pytest.mark.asyncio
    async def test_disabled_repository_run_is_a_no_op(self, db, repo, healer, generator):
        repo.healing_enabled = False
        db.commit()
        result = await healer.run(_message(repo))
        assert result.scan is None
        generator.regenerate_document.assert_not_called()
