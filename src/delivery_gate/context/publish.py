"""Publish actions invoked by the release trigger.

The publish step itself (pnpm, npm, twine, ...) is an external command; this
module only knows how to run it and report what happened. Success is the
exit code, the diagnostic is whatever the command printed.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from typing import Protocol

from delivery_gate.errors import ActionError
from delivery_gate.logging_config import get_logger
from delivery_gate.schemas import PublishOutcome

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class PublisherProtocol(Protocol):
    """Protocol for publish actions."""

    async def publish(self) -> PublishOutcome:
        """Run the publish action once.

        Returns:
            Whether it succeeded, plus diagnostic text

        Raises:
            ActionError: If the action could not be started at all
        """
        ...


# ---------------------------------------------------------------------------
# Command Implementation
# ---------------------------------------------------------------------------


class CommandPublisher:
    """Runs a publish command as a subprocess.

    Usage:
        publisher = CommandPublisher(
            ["pnpm", "publish", "--access", "public"],
            cwd="npm/oxc-types",
        )
        outcome = await publisher.publish()
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the publisher.

        Args:
            command: argv of the publish command
            cwd: Directory to run it in
            env: Extra environment (e.g. NODE_AUTH_TOKEN), merged over os.environ
        """
        if not command:
            raise ValueError("Publish command must not be empty")
        self.command = list(command)
        self.cwd = cwd
        self._env = dict(env or {})

    async def publish(self) -> PublishOutcome:
        logger.info("publish_started", command=self.command, cwd=self.cwd)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                env={**os.environ, **self._env},
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise ActionError(
                f"Could not start publish command {self.command[0]!r}: {exc}"
            ) from exc

        output, _ = await proc.communicate()
        detail = output.decode(errors="replace").strip()
        ok = proc.returncode == 0
        logger.info("publish_finished", ok=ok, returncode=proc.returncode)
        return PublishOutcome(ok=ok, detail=detail)


# ---------------------------------------------------------------------------
# Mock Implementation
# ---------------------------------------------------------------------------


class MockPublisher:
    """Publisher that records calls instead of publishing.

    Args:
        outcome: What to report (defaults to success)
        error: If set, raised on every call
        delay: Seconds to sleep inside publish, to simulate a slow registry
    """

    def __init__(
        self,
        outcome: PublishOutcome | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._outcome = outcome or PublishOutcome(ok=True, detail="published")
        self._error = error
        self._delay = delay
        self.calls = 0

    async def publish(self) -> PublishOutcome:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._outcome
