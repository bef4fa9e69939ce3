"""Tests for intent inference and its deterministic fallback."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docsynth.exceptions import LLMProviderError
from docsynth.integrations.llm_client import LLMClient, LLMResult
from docsynth.schemas.changes import FileChange, SemanticChange
from docsynth.schemas.intent import ContextSource, ContextSourceType, PullRequestContext
from docsynth.services.intent_inference import (
    MAX_PROMPT_CHARS,
    IntentInferenceEngine,
    build_prompt,
    summarize_changes,
)


def _pr(**overrides):
    values = {"owner": "acme", "repo": "shop", "number": 42, "title": "Add invoice formatting",
              "body": "Fixes #3"}
    values.update(overrides)
    return PullRequestContext(**values)


def _changes(markers=1):
    return [FileChange(
        path="src/invoice.ts",
        change_type="added",
        additions=10,
        semantic_changes=[
            SemanticChange(type="new-function", name=f"fn{i}", description=f"New function: fn{i}")
            for i in range(markers)
        ],
    )]


def _llm(content=None, error=None):
    llm = LLMClient(model="stub/m")
    if error is not None:
        llm.generate = AsyncMock(side_effect=error)
    else:
        llm.generate = AsyncMock(return_value=LLMResult(content=content, provider="stub"))
    return llm


class TestSummaries:
    def test_groups_by_change_type(self):
        changes = [
            FileChange(path="a.ts", change_type="added"),
            FileChange(path="b.ts", change_type="modified"),
            FileChange(path="c.ts", change_type="modified"),
        ]
        summary = summarize_changes(changes)
        assert "Added 1 files: a.ts" in summary
        assert "Modified 2 files: b.ts, c.ts" in summary

    def test_caps_semantic_bullets(self):
        summary = summarize_changes(_changes(markers=13))
        assert summary.count("- New function") == 10
        assert "... and 3 more" in summary

    def test_prompt_bounded(self):
        sources = [ContextSource(type=ContextSourceType.JIRA, identifier=f"PAY-{i}", content="x" * 500)
                   for i in range(100)]
        prompt = build_prompt(_pr(), summarize_changes(_changes()), sources)
        assert len(prompt) <= MAX_PROMPT_CHARS
        assert prompt.rstrip().endswith("}")


class TestInfer:
    @pytest.mark.asyncio
    async def test_parses_model_json(self):
        llm = _llm('{"businessPurpose": "Readable invoices", "technicalApproach": "Helper",'
                   ' "alternativesConsidered": "Not specified", "keyConcepts": ["invoice"]}')
        intent = await IntentInferenceEngine(llm).infer(_pr(), _changes())
        assert intent.business_purpose == "Readable invoices"
        assert intent.alternatives_considered == []
        assert intent.target_audience == "Developers"
        assert intent.key_concepts == ["invoice"]
        assert intent.degraded is False
        assert intent.sources[0].type == ContextSourceType.PR

    @pytest.mark.asyncio
    async def test_provider_error_degrades(self):
        llm = _llm(error=LLMProviderError("down", model="stub/m"))
        intent = await IntentInferenceEngine(llm).infer(_pr(), _changes(markers=2))
        assert intent.degraded is True
        assert intent.business_purpose == "Add invoice formatting: Inferred from code changes"
        assert intent.key_concepts == ["fn0", "fn1"]

    @pytest.mark.asyncio
    async def test_non_json_degrades(self):
        intent = await IntentInferenceEngine(_llm("I think it adds formatting.")).infer(_pr(), _changes())
        assert intent.degraded is True

    @pytest.mark.asyncio
    async def test_unconfigured_llm_degrades(self):
        intent = await IntentInferenceEngine(LLMClient(model="")).infer(_pr(body=None), [])
        assert intent.degraded is True
        assert intent.sources == []

    @pytest.mark.asyncio
    async def test_failing_provider_is_skipped(self):
        broken = MagicMock()
        broken.name = "jira"
        broken.get_context_for_pr = AsyncMock(side_effect=RuntimeError("timeout"))
        working = MagicMock()
        working.name = "github-issues"
        working.get_context_for_pr = AsyncMock(return_value=[
            ContextSource(type=ContextSourceType.GITHUB_ISSUE, identifier="acme/shop#3", content="Totals"),
        ])
        engine = IntentInferenceEngine(_llm('{"businessPurpose": "p"}'), [broken, working])
        sources = await engine.gather_sources(_pr())
        assert [s.type for s in sources] == [ContextSourceType.PR, ContextSourceType.GITHUB_ISSUE]
