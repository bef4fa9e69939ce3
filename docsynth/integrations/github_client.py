"""Async client for the GitHub REST API."""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import SourceControlError

logger = logging.getLogger(__name__)

# Retry configuration for transient failures (connection errors, 5xx).
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds; exponential: 1s, 2s, 4s

_PER_PAGE = 100
_MAX_FILE_PAGES = 30  # GitHub stops listing PR files at 3000


class SourceControlClient:
    """The slice of GitHub the pipeline needs: PRs, comments, issues, contents."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_base_delay: float = RETRY_BASE_DELAY,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retry_base_delay = retry_base_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _request_with_retry(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Execute a request, retrying connection errors, timeouts and 5xx.

        Client errors (4xx) are not retried and raise ``SourceControlError``
        carrying the status code.
        """
        client = await self._get_client()
        last_error = ""
        last_status: Optional[int] = None

        for attempt in range(MAX_RETRIES):
            try:
                resp = await client.request(method, path, **kwargs)
                if resp.status_code < 400:
                    return resp
                if resp.status_code < 500:
                    raise SourceControlError(
                        f"GitHub {method} {path} returned {resp.status_code}: {resp.text[:200]}",
                        status=resp.status_code,
                    )
                last_status = resp.status_code
                last_error = f"server error {resp.status_code}"
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_status = None
                last_error = str(exc) or exc.__class__.__name__

            if attempt < MAX_RETRIES - 1:
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    "GitHub %s %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    method, path, attempt + 1, MAX_RETRIES, delay, last_error,
                )
                await asyncio.sleep(delay)

        raise SourceControlError(
            f"GitHub {method} {path} failed after {MAX_RETRIES} attempts: {last_error}",
            status=last_status,
        )

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    async def get_pull_request(self, owner: str, repo: str, number: int) -> Dict[str, Any]:
        resp = await self._request_with_retry("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        return resp.json()

    async def get_pull_request_files(self, owner: str, repo: str, number: int) -> List[Dict[str, Any]]:
        files: List[Dict[str, Any]] = []
        for page in range(1, _MAX_FILE_PAGES + 1):
            resp = await self._request_with_retry(
                "GET",
                f"/repos/{owner}/{repo}/pulls/{number}/files",
                params={"per_page": _PER_PAGE, "page": page},
            )
            batch = resp.json()
            files.extend(batch)
            if len(batch) < _PER_PAGE:
                break
        return files

    async def create_pr_comment(self, owner: str, repo: str, number: int, body: str) -> Dict[str, Any]:
        resp = await self._request_with_retry(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": body},
        )
        return resp.json()

    async def create_pull_request(
        self, owner: str, repo: str, title: str, head: str, base: str, body: str = "",
    ) -> Dict[str, Any]:
        resp = await self._request_with_retry(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "head": head, "base": base, "body": body},
        )
        return resp.json()

    # ------------------------------------------------------------------
    # Issues and contents
    # ------------------------------------------------------------------

    async def get_issue(self, owner: str, repo: str, number: int) -> Optional[Dict[str, Any]]:
        """Fetch an issue; None when it does not exist."""
        try:
            resp = await self._request_with_retry("GET", f"/repos/{owner}/{repo}/issues/{number}")
        except SourceControlError as e:
            if e.status == 404:
                return None
            raise
        return resp.json()

    async def get_file_content(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None,
    ) -> Optional[str]:
        """Decoded text of a file; None when it does not exist."""
        params = {"ref": ref} if ref else None
        try:
            resp = await self._request_with_retry(
                "GET", f"/repos/{owner}/{repo}/contents/{path}", params=params,
            )
        except SourceControlError as e:
            if e.status == 404:
                return None
            raise
        data = resp.json()
        if data.get("encoding") == "base64":
            return base64.b64decode(data.get("content", "")).decode("utf-8", errors="replace")
        return data.get("content")

    async def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        resp = await self._request_with_retry("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}")
        return resp.json()["object"]["sha"]

    async def create_branch(self, owner: str, repo: str, branch: str, from_sha: str) -> None:
        await self._request_with_retry(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": from_sha},
        )

    async def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        branch: str,
    ) -> Dict[str, Any]:
        """Create or update a file on *branch*."""
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        try:
            existing = await self._request_with_retry(
                "GET", f"/repos/{owner}/{repo}/contents/{path}", params={"ref": branch},
            )
            payload["sha"] = existing.json().get("sha")
        except SourceControlError as e:
            if e.status != 404:
                raise
        resp = await self._request_with_retry("PUT", f"/repos/{owner}/{repo}/contents/{path}", json=payload)
        return resp.json()

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
