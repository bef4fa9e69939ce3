"""Tests for issue references and the ticket/chat context providers."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from docsynth.integrations.context_providers import (
    GitHubIssueProvider,
    JiraContextProvider,
    LinearContextProvider,
    LinkedIssueExtractor,
    SlackContextProvider,
    build_context_providers,
    extract_ticket_keys,
)
from docsynth.schemas.intent import ContextSourceType


class TestLinkedIssueExtractor:
    def test_keywords_before_bare_references(self):
        body = "Related to #7.\nSee #3 for background\n\nFixes #12, closes #4"
        assert LinkedIssueExtractor().extract(body) == [12, 4, 3]

    def test_deduplicates(self):
        assert LinkedIssueExtractor().extract("fixes #5 and #5 again, resolves #5") == [5]

    def test_ignores_non_references(self):
        assert LinkedIssueExtractor().extract("color #fff and issue#9 and #0") == []

    def test_empty_body(self):
        assert LinkedIssueExtractor().extract(None) == []


class TestTicketKeys:
    def test_extracts_in_order(self):
        assert extract_ticket_keys("PAY-12: fix PAY-12 and OPS-3") == ["PAY-12", "OPS-3"]

    def test_lowercase_not_a_key(self):
        assert extract_ticket_keys("pay-12") == []


class TestGitHubIssueProvider:
    @pytest.mark.asyncio
    async def test_fetches_linked_issues(self):
        client = MagicMock()
        client.get_issue = AsyncMock(side_effect=[
            {"title": "Invoices show raw numbers", "body": "Format them", "html_url": "https://gh/acme/shop/1"},
            None,
        ])
        sources = await GitHubIssueProvider(client).get_context_for_pr("t", "Fixes #1, see #2", "acme/shop")
        assert len(sources) == 1
        assert sources[0].type == ContextSourceType.GITHUB_ISSUE
        assert sources[0].identifier == "acme/shop#1"
        assert sources[0].relevance_score == 0.8
        client.get_issue.assert_any_call("acme", "shop", 2)


class TestJiraProvider:
    @pytest.mark.asyncio
    async def test_fetches_referenced_keys(self):
        def handler(request):
            assert request.url.path == "/rest/api/2/issue/PAY-7"
            return httpx.Response(200, json={
                "key": "PAY-7",
                "fields": {
                    "summary": "Currency formatting",
                    "description": "Show totals as money",
                    "comment": {"comments": [{"body": "USD only for now"}]},
                },
            })

        provider = JiraContextProvider("https://acme.atlassian.net/", "a@b.c", "tok",
                                       transport=httpx.MockTransport(handler))
        sources = await provider.get_context_for_pr("PAY-7 format totals", None, "acme/shop")
        await provider.close()
        assert sources[0].identifier == "PAY-7"
        assert "USD only for now" in sources[0].content
        assert sources[0].url == "https://acme.atlassian.net/browse/PAY-7"

    @pytest.mark.asyncio
    async def test_searches_title_without_keys(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"issues": []})

        provider = JiraContextProvider("https://acme.atlassian.net", "a@b.c", "tok",
                                       transport=httpx.MockTransport(handler))
        assert await provider.get_context_for_pr("Format invoice totals", None, "acme/shop") == []
        await provider.close()
        assert seen["path"] == "/rest/api/2/search"
        assert "Format invoice totals" in seen["body"]["jql"]


class TestLinearProvider:
    @pytest.mark.asyncio
    async def test_graphql_errors_skip_identifier(self):
        calls = []

        def handler(request):
            body = json.loads(request.content)
            calls.append(body["variables"])
            if "id" in body["variables"]:
                return httpx.Response(200, json={"errors": [{"message": "not found"}]})
            return httpx.Response(200, json={"data": {"issues": {"nodes": [
                {"identifier": "ENG-1", "title": "Totals", "url": "https://linear.app/ENG-1"},
            ]}}})

        provider = LinearContextProvider("key", transport=httpx.MockTransport(handler))
        sources = await provider.get_context_for_pr("ENG-9 invoice totals", None, "acme/shop")
        await provider.close()
        assert calls[0] == {"id": "ENG-9"}
        assert [s.identifier for s in sources] == ["ENG-1"]


class TestSlackProvider:
    @pytest.mark.asyncio
    async def test_not_ok_raises(self):
        provider = SlackContextProvider(
            "xoxb", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"ok": False, "error": "x"})),
        )
        with pytest.raises(httpx.HTTPError):
            await provider.get_context_for_pr("Format invoice totals", None, "acme/shop")
        await provider.close()

    @pytest.mark.asyncio
    async def test_matches_become_sources(self):
        def handler(request):
            assert request.url.params["query"].startswith("shop")
            return httpx.Response(200, json={"ok": True, "messages": {"matches": [
                {"ts": "1.2", "channel": {"name": "billing"}, "text": "let's format totals", "permalink": "p"},
            ]}})

        provider = SlackContextProvider("xoxb", transport=httpx.MockTransport(handler))
        sources = await provider.get_context_for_pr("Format invoice totals", None, "acme/shop")
        await provider.close()
        assert sources[0].title == "#billing discussion"
        assert sources[0].type == ContextSourceType.SLACK


class TestBuildProviders:
    def test_only_configured_providers(self):
        providers = build_context_providers(MagicMock(), linear_api_key="k")
        assert [p.name for p in providers] == ["github-issues", "linear"]
