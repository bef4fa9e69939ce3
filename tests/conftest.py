"""Shared test fixtures for the DocSynth test suite.

Every test gets its own SQLite file under ``tmp_path`` so queue rows,
sessions and documents never leak between tests. The LLM and the GitHub
client are replaced by mocks; nothing leaves the process.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from docsynth.container import build_container
from docsynth.core.config import Settings
from docsynth.database import build_engine, create_tables, make_session_factory
from docsynth.integrations.circuit_breaker import CircuitBreaker, reset_all
from docsynth.integrations.llm_client import LLMClient, LLMResult
from docsynth.main import create_app
from docsynth.models import PREvent
from docsynth.repositories import ChangeAnalysisRepository, DocumentRepository, RepoRepository
from docsynth.schemas.documents import DocType, GeneratedDocument
from docsynth.services.change_analyzer import ChangeAnalyzer
from docsynth.services.qa_gate import QA_SYSTEM_PROMPT

ADDED_FUNCTION_PATCH = (
    "@@ -0,0 +1,3 @@\n"
    "+export function formatInvoice(total: number): string {\n"
    "+  return `$${total.toFixed(2)}`;\n"
    "+}\n"
)

INTENT_JSON = json.dumps({
    "businessPurpose": "Let customers see invoice totals formatted as currency.",
    "technicalApproach": "Adds an exported formatting helper.",
    "alternativesConsidered": ["Formatting on the client"],
    "targetAudience": "Frontend developers",
    "keyConcepts": ["invoices", "currency formatting"],
})

APPROVING_QA_JSON = json.dumps({
    "questions": [],
    "confidenceScore": 95,
    "canAutoApprove": True,
    "suggestedImprovements": [],
})


async def default_llm_reply(prompt, max_tokens=None, system=None):
    """Route a mocked completion by the stage that asked for it."""
    if system == QA_SYSTEM_PROMPT:
        return LLMResult(content=APPROVING_QA_JSON, provider="stub", model="stub/test-model")
    if "infer the developer's intent" in prompt:
        return LLMResult(content=INTENT_JSON, provider="stub", model="stub/test-model")
    return LLMResult(content="## Generated\n\nDocumentation body.", provider="stub", model="stub/test-model")


@pytest.fixture(autouse=True)
def _clean_breakers():
    """Reset the global breaker registry between tests."""
    reset_all()
    yield
    reset_all()


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path}/test.db",
        github_webhook_secret="",
        llm_model="",
        llm_stage_max_jobs=1000,
        rate_limit_per_minute=1000,
        trigger_limit_per_minute=1000,
        queue_backoff_ms=0,
        log_format="text",
    )


@pytest.fixture()
def engine(settings):
    engine = build_engine(settings.database_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    """Per-test database session."""
    session = session_factory()
    yield session
    session.close()


class Factory:
    """Creates committed rows for service-level tests."""

    def __init__(self, db):
        self.db = db

    def repo(self, full_name="acme/shop", **fields):
        repo = RepoRepository(self.db).upsert(full_name, installation_id="inst-1")
        for name, value in fields.items():
            setattr(repo, name, value)
        self.db.commit()
        return repo

    def pr_event(self, repo, pr_number=42, title="Add invoice formatting", body="Fixes #3"):
        event = PREvent(repository_id=repo.id, pr_number=pr_number, action="opened",
                        title=title, body=body, author="dev")
        self.db.add(event)
        self.db.commit()
        return event

    def analysis(self, repo, pr_number=42, changes=None):
        event = self.pr_event(repo, pr_number)
        result = ChangeAnalyzer().analyze(changes or [{
            "path": "src/invoice.ts",
            "change_type": "added",
            "additions": 60,
            "semantic_changes": [{"type": "new-function", "name": "formatInvoice"}],
        }])
        analysis = ChangeAnalysisRepository(self.db).create(event, result)
        self.db.commit()
        return analysis

    def document(self, repo, path="README.md", content="# Shop\n\nIntro.\n", source_paths=("src/invoice.ts",),
                 doc_type=DocType.README):
        doc = DocumentRepository(self.db).upsert_generated(
            repo.id,
            GeneratedDocument(path=path, doc_type=doc_type, title=path, content=content,
                              source_paths=list(source_paths)),
            {"trigger": "test"},
        )
        self.db.commit()
        return doc


@pytest.fixture()
def factory(db):
    return Factory(db)


@pytest.fixture()
def default_reply():
    """The stage routing behind ``llm``; tests wrap it to change a single stage."""
    return default_llm_reply


@pytest.fixture()
def llm():
    """A configured client whose completions come from ``default_llm_reply``."""
    client = LLMClient(model="stub/test-model", breaker=CircuitBreaker("stub/test-model"))
    client.generate = AsyncMock(side_effect=default_llm_reply)
    return client


@pytest.fixture()
def fallback_llm():
    """No model configured: every stage takes its deterministic path."""
    return LLMClient(model="")


@pytest.fixture()
def source_control():
    """GitHub stand-in with one added TypeScript file on every PR."""
    client = MagicMock()
    client.get_pull_request_files = AsyncMock(return_value=[{
        "filename": "src/invoice.ts",
        "status": "added",
        "additions": 60,
        "deletions": 0,
        "patch": ADDED_FUNCTION_PATCH,
    }])
    client.get_pull_request = AsyncMock(return_value={"number": 42, "title": "Add invoice formatting"})
    client.create_pr_comment = AsyncMock(return_value={"id": 1})
    client.get_file_content = AsyncMock(return_value=None)
    client.get_issue = AsyncMock(return_value=None)
    client.get_branch_sha = AsyncMock(return_value="abc123")
    client.create_branch = AsyncMock(return_value=None)
    client.put_file = AsyncMock(return_value={})
    client.create_pull_request = AsyncMock(return_value={
        "number": 7, "html_url": "https://github.com/acme/shop/pull/7",
    })
    client.close = AsyncMock()
    return client


@pytest.fixture()
def container(settings, engine, llm, source_control):
    return build_container(
        settings,
        engine=engine,
        llm=llm,
        source_control=source_control,
        context_providers=[],
    )


@pytest.fixture()
def fallback_container(settings, engine, fallback_llm, source_control):
    return build_container(
        settings,
        engine=engine,
        llm=fallback_llm,
        source_control=source_control,
        context_providers=[],
    )


@pytest.fixture()
def client(container):
    """FastAPI TestClient over an app bound to the test container."""
    with TestClient(create_app(container)) as c:
        yield c
