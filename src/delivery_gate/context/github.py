"""GitHub API client for the label pipeline and webhook-driven releases.

This module talks to GitHub's REST API for everything the gate needs from
the pull request side:
- Adding labels to a pull request (the label sink)
- Listing files changed by a pull request (for path labels)
- Reading a manifest at a given commit (local version without a checkout)

Design notes:
- Uses httpx for async HTTP requests, one client per call
- Label sink failures surface as ActionError, manifest reads as FetchError
- Uses Protocols so the pipelines don't depend on the concrete client
  (tests use the Mock implementations below)

GitHub API docs: https://docs.github.com/en/rest
"""

from __future__ import annotations

import json
import os
from typing import Protocol

import httpx

from delivery_gate.context.versions import record_from_document
from delivery_gate.errors import ActionError, FetchError
from delivery_gate.schemas import CategoryLabel, VersionRecord

# ---------------------------------------------------------------------------
# Protocol (Interface)
# ---------------------------------------------------------------------------


class LabelSinkProtocol(Protocol):
    """Where labels for one pull request end up."""

    async def add_label(self, label: CategoryLabel) -> None:
        """Attach a category label.

        Raises:
            ActionError: If the label store rejected the request
        """
        ...

    async def add_named_label(self, name: str) -> None:
        """Attach a label by its literal name (used for path labels)."""
        ...


# ---------------------------------------------------------------------------
# Concrete Implementation
# ---------------------------------------------------------------------------


class GitHubClient:
    """Real GitHub API client using httpx.

    Usage:
        client = GitHubClient(token="ghp_...")
        await client.add_labels("oxc-project/oxc", 123, ["C-bug"])
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            token: GitHub personal access token. Falls back to
                   GITHUB_TOKEN environment variable if not provided.
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._token = token or os.environ.get("GITHUB_TOKEN", "")
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            self._headers["Authorization"] = f"Bearer {self._token}"
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=self._headers,
            timeout=30.0,
            transport=self._transport,
        )

    async def add_labels(self, repo: str, number: int, labels: list[str]) -> None:
        """Add labels to an issue or pull request.

        GitHub treats re-adding an existing label as a no-op.

        Raises:
            ActionError: If the API call fails
        """
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"/repos/{repo}/issues/{number}/labels",
                    json={"labels": labels},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ActionError(
                f"Adding labels {labels} to {repo}#{number} failed: {exc}"
            ) from exc

    async def get_pr_files(self, repo: str, number: int) -> list[str]:
        """List the paths of all files changed by a pull request.

        Raises:
            FetchError: If any GitHub API call fails
        """
        try:
            async with self._client() as client:
                files_data = await self._handle_pagination(
                    client, f"/repos/{repo}/pulls/{number}/files"
                )
        except httpx.HTTPError as exc:
            raise FetchError(f"Listing files of {repo}#{number} failed: {exc}") from exc
        return [f["filename"] for f in files_data]

    async def get_file_json(
        self,
        repo: str,
        path: str,
        ref: str,
        field: str = "version",
    ) -> VersionRecord:
        """Read a JSON manifest at a commit and extract its version.

        Raises:
            FetchError: If the file can't be read or has no valid version
        """
        origin = f"{repo}@{ref}:{path}"
        try:
            async with self._client() as client:
                resp = await client.get(
                    f"/repos/{repo}/contents/{path}",
                    params={"ref": ref},
                    headers={"Accept": "application/vnd.github.raw+json"},
                )
                resp.raise_for_status()
                document = json.loads(resp.text)
        except httpx.HTTPError as exc:
            raise FetchError(f"{origin}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise FetchError(f"{origin}: not valid JSON ({exc.msg})") from exc

        return record_from_document(document, field, origin=origin)

    async def _handle_pagination(
        self,
        client: httpx.AsyncClient,
        url: str,
    ) -> list[dict]:
        """Follow GitHub's Link header until every page has been read."""
        all_items: list[dict] = []
        next_url: str | None = url
        params: dict | None = {"per_page": 100}

        while next_url:
            resp = await client.get(next_url, params=params)
            resp.raise_for_status()
            all_items.extend(resp.json())
            next_url = self._parse_next_link(resp.headers.get("link", ""))
            # The next link already carries the query string.
            params = None

        return all_items

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the 'next' URL from a GitHub Link header."""
        if not link_header:
            return None
        for part in link_header.split(","):
            if 'rel="next"' in part:
                return part.split(";")[0].strip().strip("<>")
        return None


class GitHubLabelSink:
    """Label sink bound to one pull request.

    Category labels are rendered as ``prefix + category`` (e.g. "C-bug").
    """

    def __init__(
        self,
        client: GitHubClient,
        repo: str,
        number: int,
        prefix: str = "C-",
    ) -> None:
        self._client = client
        self.repo = repo
        self.number = number
        self.prefix = prefix

    async def add_label(self, label: CategoryLabel) -> None:
        await self._client.add_labels(
            self.repo, self.number, [f"{self.prefix}{label.value}"]
        )

    async def add_named_label(self, name: str) -> None:
        await self._client.add_labels(self.repo, self.number, [name])


# ---------------------------------------------------------------------------
# Mock Implementation (for testing)
# ---------------------------------------------------------------------------


class MockLabelSink:
    """Label sink that records labels instead of applying them.

    Usage:
        sink = MockLabelSink()
        await apply(CategoryLabel.BUG, sink)
        assert sink.labels == ["bug"]
    """

    def __init__(self, error: Exception | None = None) -> None:
        self._error = error
        self.labels: list[str] = []

    async def add_label(self, label: CategoryLabel) -> None:
        await self.add_named_label(label.value)

    async def add_named_label(self, name: str) -> None:
        if self._error is not None:
            raise self._error
        self.labels.append(name)
