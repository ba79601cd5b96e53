"""Keyed run registry: a newer run supersedes older ones with the same key.

This mirrors the CI setting ``concurrency: cancel-in-progress`` for the
release pipeline, but with an explicit safe point:

    start ──> fetch/decide ──> checkpoint() ──> commit() ──> publish
              (cancellable)                      (runs to completion)

- Starting a run marks every pending run with the same key as superseded
  and cancels those that have not committed yet.
- checkpoint() waits until all superseded predecessors have settled, so
  two runs for one key never publish concurrently. It reports whether any
  predecessor committed, in which case the caller must re-check what it
  decided earlier (the predecessor may have published it already).
- commit() marks the point of no return. Committed runs are never
  cancelled by the registry.

All bookkeeping happens on one event loop without awaits in between, so no
lock is needed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from delivery_gate.errors import RunSuperseded
from delivery_gate.logging_config import get_logger
from delivery_gate.schemas import ConcurrencyKey

logger = get_logger(__name__)

T = TypeVar("T")


class RunToken:
    """Handle a run uses to cooperate with the registry."""

    def __init__(self, key: ConcurrencyKey, predecessors: list[_Run]) -> None:
        self.key = key
        self.committed = False
        self.superseded = False
        self._predecessors = predecessors

    async def checkpoint(self) -> bool:
        """Wait for superseded predecessors to settle.

        Returns:
            True if any predecessor committed (and so may have published)
        """
        if not self._predecessors:
            return False
        predecessors, self._predecessors = self._predecessors, []
        await asyncio.wait([p.task for p in predecessors])
        return any(p.token.committed for p in predecessors)

    def commit(self) -> None:
        """Mark this run past the cancellation-safe point."""
        self.committed = True


def _log_detached_outcome(key: ConcurrencyKey, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "detached_run_failed",
            key=str(key),
            error=str(exc),
            error_type=type(exc).__name__,
        )
    else:
        logger.info("detached_run_finished", key=str(key))


class _Run:
    def __init__(self, task: asyncio.Task, token: RunToken) -> None:
        self.task = task
        self.token = token

    def supersede(self) -> None:
        self.token.superseded = True
        if self.token.committed:
            logger.info("run_superseded_after_commit", key=str(self.token.key))
            return
        self.task.cancel()
        logger.info("run_superseded", key=str(self.token.key))


class RunRegistry:
    """Single-flights work per ConcurrencyKey.

    Usage:
        registry = RunRegistry()

        async def work(token: RunToken) -> RunResult:
            verdict = await gate.check(local, source)
            await token.checkpoint()
            token.commit()
            return await release.run(verdict, publisher)

        result = await registry.run(ConcurrencyKey("release-main"), work)
    """

    def __init__(self) -> None:
        self._runs: dict[ConcurrencyKey, list[_Run]] = {}

    def pending(self, key: ConcurrencyKey) -> int:
        """Number of runs for a key that have not finished yet."""
        return sum(1 for r in self._runs.get(key, []) if not r.task.done())

    async def run(
        self,
        key: ConcurrencyKey,
        work: Callable[[RunToken], Awaitable[T]],
    ) -> T:
        """Run ``work`` as the newest run for ``key``.

        Raises:
            RunSuperseded: If a newer run for the same key cancelled this one
        """
        pending = [r for r in self._runs.get(key, []) if not r.task.done()]
        for previous in pending:
            previous.supersede()

        token = RunToken(key, pending)
        task = asyncio.create_task(self._execute(work, token))
        current = _Run(task, token)
        self._runs[key] = [*pending, current]
        task.add_done_callback(lambda _: self._forget(key, current))

        try:
            # Shielded so a caller going away cannot cancel a committed run.
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and token.superseded:
                raise RunSuperseded(str(key)) from None
            if token.committed:
                # Nobody awaits the run any more; its outcome only reaches the log.
                task.add_done_callback(lambda t: _log_detached_outcome(key, t))
            else:
                task.cancel()
            raise

    async def _execute(self, work: Callable[[RunToken], Awaitable[T]], token: RunToken) -> T:
        with structlog.contextvars.bound_contextvars(run_key=str(token.key)):
            return await work(token)

    def _forget(self, key: ConcurrencyKey, run: _Run) -> None:
        runs = self._runs.get(key)
        if runs is None:
            return
        if run in runs:
            runs.remove(run)
        if not runs:
            del self._runs[key]
