"""Tests for document generation and regeneration."""

from unittest.mock import AsyncMock

import pytest

from docsynth.integrations.llm_client import FALLBACK_PROVIDER, LLMClient, LLMResult
from docsynth.schemas.intent import IntentResult, PullRequestContext
from docsynth.services.change_analyzer import ChangeAnalyzer
from docsynth.services.doc_generator import DocGenerator, insert_changelog_entry


def _pr():
    return PullRequestContext(owner="acme", repo="shop", number=42, title="Add invoice formatting")


def _intent():
    return IntentResult(business_purpose="Readable invoices", technical_approach="Helper")


def _analysis(semantic=None, path="src/invoice.ts", additions=20):
    return ChangeAnalyzer().analyze([{
        "path": path, "change_type": "added", "additions": additions,
        "semantic_changes": semantic or [],
    }])


class TestDocumentSelection:
    @pytest.mark.asyncio
    async def test_new_export_generates_readme_changelog_and_api(self):
        analysis = _analysis([{"type": "new-function", "name": "formatInvoice"}])
        result = await DocGenerator(LLMClient(model="")).generate(_pr(), analysis, _intent())
        assert [d.path for d in result.documents] == ["README.md", "CHANGELOG.md", "docs/api-reference.md"]
        assert result.provider == FALLBACK_PROVIDER
        assert "formatInvoice" in result.documents[2].content

    @pytest.mark.asyncio
    async def test_plain_change_only_gets_changelog(self):
        analysis = _analysis(additions=600)
        result = await DocGenerator(LLMClient(model="")).generate(_pr(), analysis, _intent())
        assert [d.path for d in result.documents] == ["CHANGELOG.md"]
        assert result.documents[0].content.startswith("# Changelog")

    @pytest.mark.asyncio
    async def test_existing_document_is_an_update(self):
        analysis = _analysis(additions=600)
        existing = {"CHANGELOG.md": "# Changelog\n\n## Older entry\n"}
        result = await DocGenerator(LLMClient(model="")).generate(_pr(), analysis, _intent(), existing)
        changelog = next(d for d in result.documents if d.path == "CHANGELOG.md")
        assert changelog.action == "update"
        assert changelog.content.index("Older entry") > changelog.content.index("#42")

    @pytest.mark.asyncio
    async def test_llm_output_used_when_available(self):
        llm = LLMClient(model="stub/m")
        llm.generate = AsyncMock(return_value=LLMResult(content="## 1.2.0\n- Invoices", provider="stub"))
        result = await DocGenerator(llm).generate(_pr(), _analysis(additions=600), _intent())
        assert result.provider == "stub"
        assert "## 1.2.0" in result.documents[0].content


class TestChangelogInsertion:
    def test_creates_title_when_empty(self):
        assert insert_changelog_entry(None, "## New") == "# Changelog\n\n## New\n"

    def test_entry_goes_below_title(self):
        assert insert_changelog_entry("# Changes\n\n## Old\n", "## New") == "# Changes\n\n## New\n\n## Old\n"

    def test_untitled_existing_content(self):
        assert insert_changelog_entry("## Old", "## New") == "## New\n\n## Old\n"


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_fallback_keeps_content_with_zero_confidence(self):
        result = await DocGenerator(LLMClient(model="")).regenerate_document("README.md", "Shop", "old", "stale")
        assert result.content == "old"
        assert result.confidence == 0.0
        assert result.provider == FALLBACK_PROVIDER

    @pytest.mark.asyncio
    async def test_parses_content_and_clamps_confidence(self):
        llm = LLMClient(model="stub/m")
        llm.generate = AsyncMock(return_value=LLMResult(
            content='{"content": "# Shop\\nFresh", "confidence": 1.7}', provider="stub",
        ))
        result = await DocGenerator(llm).regenerate_document("README.md", "Shop", "old", "stale")
        assert result.content == "# Shop\nFresh"
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_unstructured_reply_keeps_content(self):
        llm = LLMClient(model="stub/m")
        llm.generate = AsyncMock(return_value=LLMResult(content="Sure, here it is", provider="stub"))
        result = await DocGenerator(llm).regenerate_document("README.md", "Shop", "old", "stale")
        assert result.content == "old"
        assert result.confidence == 0.0
