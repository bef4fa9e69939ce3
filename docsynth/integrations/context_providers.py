"""Context sources gathered around a pull request for intent inference.

Each provider returns ``ContextSource`` records for a PR title/body. Providers
raise on transport errors; the inference engine logs and skips a failing
provider so one outage never fails the stage.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..schemas.intent import ContextSource, ContextSourceType
from .github_client import MAX_RETRIES, RETRY_BASE_DELAY, SourceControlClient

logger = logging.getLogger(__name__)

GITHUB_ISSUE_RELEVANCE = 0.8
JIRA_RELEVANCE = 0.9
LINEAR_RELEVANCE = 0.9
SLACK_RELEVANCE = 0.7
SLACK_MAX_MESSAGES = 5


class ContextProvider(Protocol):
    name: str

    async def get_context_for_pr(self, title: str, body: Optional[str], repository: str) -> List[ContextSource]:
        ...


class IssueReferenceExtractor(Protocol):
    def extract(self, text: str) -> List[int]:
        ...


class LinkedIssueExtractor:
    """Finds issue numbers referenced from a PR description.

    Keyword references (``fixes #12``, ``closes #3``) come first, then bare
    ``#123`` tokens. Numbers are de-duplicated in first-seen order.
    """

    PATTERNS = [
        re.compile(r"(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\s*#(\d+)", re.IGNORECASE),
        re.compile(r"(?:^|\s)#(\d+)(?=\s|$)", re.MULTILINE),
    ]

    def extract(self, text: str) -> List[int]:
        issues: List[int] = []
        for pattern in self.PATTERNS:
            for match in pattern.finditer(text or ""):
                number = int(match.group(1))
                if number > 0 and number not in issues:
                    issues.append(number)
        return issues


_TICKET_KEY = re.compile(r"\b([A-Z][A-Z0-9]+-\d+)\b")


def extract_ticket_keys(text: str) -> List[str]:
    """Jira/Linear style keys (``PROJ-123``), de-duplicated in order."""
    keys: List[str] = []
    for key in _TICKET_KEY.findall(text or ""):
        if key not in keys:
            keys.append(key)
    return keys


def _with_comments(description: Optional[str], comments: List[str]) -> str:
    content = description or ""
    if comments:
        content += "\n\nComments:\n" + "\n".join(comments)
    return content


class GitHubIssueProvider:
    """Linked GitHub issues of the PR's own repository."""

    name = "github-issues"

    def __init__(self, client: SourceControlClient, extractor: Optional[IssueReferenceExtractor] = None) -> None:
        self.client = client
        self.extractor = extractor or LinkedIssueExtractor()

    async def get_context_for_pr(self, title: str, body: Optional[str], repository: str) -> List[ContextSource]:
        owner, repo = repository.split("/", 1)
        sources = []
        for number in self.extractor.extract(body or ""):
            issue = await self.client.get_issue(owner, repo, number)
            if issue is None:
                logger.info(f"Linked issue #{number} not found in {repository}")
                continue
            sources.append(ContextSource(
                type=ContextSourceType.GITHUB_ISSUE,
                identifier=f"{repository}#{number}",
                title=issue.get("title") or f"Issue #{number}",
                content=issue.get("body") or "",
                url=issue.get("html_url") or f"https://github.com/{repository}/issues/{number}",
                relevance_score=GITHUB_ISSUE_RELEVANCE,
            ))
        return sources


class _HTTPProvider:
    """Shared httpx plumbing for third-party providers."""

    def __init__(self, base_url: str, headers: Dict[str, str], timeout: float = 15.0,
                 auth: Optional[httpx.Auth] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, auth=auth, transport=transport,
        )

    async def _request_with_retry(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        last_exc: Optional[Exception] = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = await self._client.request(method, path, **kwargs)
                if resp.status_code < 500:
                    resp.raise_for_status()
                    return resp
                last_exc = httpx.HTTPStatusError(
                    f"Server error {resp.status_code}", request=resp.request, response=resp,
                )
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_exc = exc

            if attempt < MAX_RETRIES - 1:
                await asyncio.sleep(RETRY_BASE_DELAY * (2 ** attempt))
        raise last_exc  # type: ignore[misc]

    async def close(self) -> None:
        await self._client.aclose()


class JiraContextProvider(_HTTPProvider):
    """Jira issues referenced by key, else a text search on the PR title."""

    name = "jira"

    def __init__(self, base_url: str, email: str, api_token: str, **kwargs: Any) -> None:
        super().__init__(
            base_url.rstrip("/"),
            headers={"Accept": "application/json"},
            auth=httpx.BasicAuth(email, api_token),
            **kwargs,
        )
        self.base_url = base_url.rstrip("/")

    async def get_context_for_pr(self, title: str, body: Optional[str], repository: str) -> List[ContextSource]:
        issues = []
        for key in extract_ticket_keys(f"{title} {body or ''}"):
            try:
                resp = await self._request_with_retry(
                    "GET", f"/rest/api/2/issue/{key}", params={"fields": "summary,description,comment"},
                )
            except httpx.HTTPStatusError as e:
                logger.warning(f"Failed to fetch Jira issue {key}: {e}")
                continue
            issues.append(resp.json())

        if not issues and title.strip():
            terms = " ".join(title.split()[:5]).replace('"', "")
            resp = await self._request_with_retry(
                "POST", "/rest/api/2/search",
                json={"jql": f'text ~ "{terms}" ORDER BY updated DESC', "maxResults": 3,
                      "fields": ["summary", "description", "comment"]},
            )
            issues = resp.json().get("issues", [])[:3]

        sources = []
        for issue in issues:
            fields = issue.get("fields", {})
            comments = [c.get("body", "") for c in (fields.get("comment") or {}).get("comments", [])]
            sources.append(ContextSource(
                type=ContextSourceType.JIRA,
                identifier=issue["key"],
                title=fields.get("summary") or issue["key"],
                content=_with_comments(fields.get("description"), comments),
                url=f"{self.base_url}/browse/{issue['key']}",
                relevance_score=JIRA_RELEVANCE,
            ))
        return sources


_LINEAR_ISSUE_QUERY = """
query Issue($id: String!) {
  issue(id: $id) { identifier title description url comments { nodes { body } } }
}
"""

_LINEAR_SEARCH_QUERY = """
query SearchIssues($term: String!, $first: Int) {
  issues(filter: { title: { containsIgnoreCase: $term } }, first: $first) {
    nodes { identifier title description url comments { nodes { body } } }
  }
}
"""


class LinearContextProvider(_HTTPProvider):
    """Linear issues referenced by identifier, else a title search."""

    name = "linear"

    def __init__(self, api_key: str, **kwargs: Any) -> None:
        super().__init__(
            "https://api.linear.app",
            headers={"Authorization": api_key, "Content-Type": "application/json"},
            **kwargs,
        )

    async def _graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request_with_retry("POST", "/graphql", json={"query": query, "variables": variables})
        payload = resp.json()
        if payload.get("errors"):
            raise httpx.HTTPError(f"Linear GraphQL error: {payload['errors'][0].get('message')}")
        return payload.get("data") or {}

    async def get_context_for_pr(self, title: str, body: Optional[str], repository: str) -> List[ContextSource]:
        issues = []
        for identifier in extract_ticket_keys(f"{title} {body or ''}"):
            try:
                data = await self._graphql(_LINEAR_ISSUE_QUERY, {"id": identifier})
            except httpx.HTTPError as e:
                logger.warning(f"Failed to fetch Linear issue {identifier}: {e}")
                continue
            if data.get("issue"):
                issues.append(data["issue"])

        if not issues and title.strip():
            terms = " ".join(title.split()[:3])
            data = await self._graphql(_LINEAR_SEARCH_QUERY, {"term": terms, "first": 3})
            issues = (data.get("issues") or {}).get("nodes", [])[:3]

        return [
            ContextSource(
                type=ContextSourceType.LINEAR,
                identifier=issue["identifier"],
                title=issue.get("title") or issue["identifier"],
                content=_with_comments(
                    issue.get("description"),
                    [c.get("body", "") for c in (issue.get("comments") or {}).get("nodes", [])],
                ),
                url=issue.get("url"),
                relevance_score=LINEAR_RELEVANCE,
            )
            for issue in issues
        ]


class SlackContextProvider(_HTTPProvider):
    """Slack discussions mentioning the repository or the PR's key words."""

    name = "slack"

    def __init__(self, bot_token: str, **kwargs: Any) -> None:
        super().__init__(
            "https://slack.com/api",
            headers={"Authorization": f"Bearer {bot_token}"},
            **kwargs,
        )

    async def get_context_for_pr(self, title: str, body: Optional[str], repository: str) -> List[ContextSource]:
        repo_name = repository.split("/")[-1]
        terms = [repo_name] + [w for w in title.split() if len(w) > 3][:3]
        resp = await self._request_with_retry(
            "GET", "/search.messages",
            params={"query": " ".join(terms), "count": SLACK_MAX_MESSAGES, "sort": "timestamp"},
        )
        payload = resp.json()
        if not payload.get("ok", False):
            raise httpx.HTTPError(f"Slack search failed: {payload.get('error', 'unknown error')}")

        matches = (payload.get("messages") or {}).get("matches", [])[:SLACK_MAX_MESSAGES]
        return [
            ContextSource(
                type=ContextSourceType.SLACK,
                identifier=msg.get("ts", ""),
                title=f"#{(msg.get('channel') or {}).get('name', 'unknown')} discussion",
                content=msg.get("text", ""),
                url=msg.get("permalink"),
                relevance_score=SLACK_RELEVANCE,
            )
            for msg in matches
        ]


def build_context_providers(
    source_control: SourceControlClient,
    jira_base_url: str = "",
    jira_email: str = "",
    jira_api_token: str = "",
    linear_api_key: str = "",
    slack_bot_token: str = "",
) -> List[ContextProvider]:
    """GitHub issues always; Jira, Linear and Slack when their credentials are set."""
    providers: List[ContextProvider] = [GitHubIssueProvider(source_control)]
    if jira_base_url and jira_email and jira_api_token:
        providers.append(JiraContextProvider(jira_base_url, jira_email, jira_api_token))
    if linear_api_key:
        providers.append(LinearContextProvider(linear_api_key))
    if slack_bot_token:
        providers.append(SlackContextProvider(slack_bot_token))
    return providers
