"""Version sources for the release gate.

The gate compares two versions:
- local: what the project declares (a manifest such as package.json)
- remote: what was last published (the same manifest served by a CDN or
  registry, e.g. https://unpkg.com/@oxc-project/types/package.json)

Design notes:
- The remote side sits behind a Protocol so the gate is a pure function of
  its two inputs and tests never touch the network
- Every way a source can fail (network, HTTP status, bad JSON, missing or
  invalid version field) is reported as FetchError
- No retries: the surrounding automation retries whole invocations
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from delivery_gate.errors import FetchError
from delivery_gate.schemas import VersionRecord

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class VersionSourceProtocol(Protocol):
    """Protocol for anything that can report a published version."""

    async def fetch_version(self) -> VersionRecord:
        """Fetch the version of record.

        Returns:
            The remote VersionRecord

        Raises:
            FetchError: If the source is unreachable or malformed
        """
        ...


def record_from_document(
    document: Any,
    field: str = "version",
    origin: str = "document",
) -> VersionRecord:
    """Extract a VersionRecord from a decoded JSON manifest.

    Args:
        document: Decoded JSON (must be an object)
        field: Name of the field holding the version
        origin: Where the document came from, for error messages

    Raises:
        FetchError: If the document has no valid version field
    """
    if not isinstance(document, dict):
        raise FetchError(f"{origin}: expected a JSON object")
    if field not in document:
        raise FetchError(f"{origin}: missing '{field}' field")
    try:
        return VersionRecord(
            name=str(document.get("name", "")),
            semver=str(document[field]),
        )
    except ValidationError as exc:
        raise FetchError(f"{origin}: invalid '{field}': {document[field]!r}") from exc


# ---------------------------------------------------------------------------
# HTTP Implementation
# ---------------------------------------------------------------------------


class HttpVersionSource:
    """Reads the published version from a JSON document over HTTP.

    Usage:
        source = HttpVersionSource("https://unpkg.com/@oxc-project/types/package.json")
        remote = await source.fetch_version()
    """

    def __init__(
        self,
        url: str,
        field: str = "version",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            url: URL of the published manifest
            field: JSON field holding the version
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.url = url
        self.field = field
        self._timeout = timeout
        self._transport = transport

    async def fetch_version(self) -> VersionRecord:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(self.url)
                resp.raise_for_status()
                document = resp.json()
        except httpx.HTTPError as exc:
            raise FetchError(f"{self.url}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise FetchError(f"{self.url}: response is not JSON") from exc

        return record_from_document(document, self.field, origin=self.url)


# ---------------------------------------------------------------------------
# Local Manifest
# ---------------------------------------------------------------------------


def read_local_version(path: str | Path, field: str = "version") -> VersionRecord:
    """Read the version declared by a local JSON manifest.

    Args:
        path: Path to the manifest (e.g., "npm/oxc-types/package.json")
        field: JSON field holding the version

    Raises:
        FetchError: If the file is missing, not JSON, or has no valid version
    """
    manifest = Path(path)
    try:
        document = json.loads(manifest.read_text())
    except OSError as exc:
        raise FetchError(f"{manifest}: {exc.strerror or exc}") from exc
    except json.JSONDecodeError as exc:
        raise FetchError(f"{manifest}: not valid JSON ({exc.msg})") from exc

    return record_from_document(document, field, origin=str(manifest))


# ---------------------------------------------------------------------------
# Mock Implementation
# ---------------------------------------------------------------------------


class MockVersionSource:
    """Version source returning a fixed version, or failing on demand.

    Usage:
        source = MockVersionSource("0.41.0")
        failing = MockVersionSource(error=FetchError("offline"))
    """

    def __init__(
        self,
        version: str = "0.0.0",
        name: str = "",
        error: Exception | None = None,
    ) -> None:
        self._version = version
        self._name = name
        self._error = error
        self.calls = 0

    async def fetch_version(self) -> VersionRecord:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return VersionRecord(name=self._name, semver=self._version)
