"""Tests for the keyed run registry and single-flighted release runs.

These tests drive overlapping runs on one event loop and use asyncio.Event
to pin down exactly where each run is suspended when the next one starts.

Run with: pytest tests/test_concurrency.py -v
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from delivery_gate.concurrency import RunRegistry, RunToken
from delivery_gate.context.publish import MockPublisher
from delivery_gate.errors import RunSuperseded
from delivery_gate.pipelines import ReleasePipeline
from delivery_gate.schemas import (
    ConcurrencyKey,
    PublishOutcome,
    RunStatus,
    VersionRecord,
)

KEY = ConcurrencyKey.for_ref("release", "refs/heads/main")


class BlockingSource:
    """Remote source whose fetch blocks until the test lets it through."""

    def __init__(self, version: str) -> None:
        self.version = version
        self.fetch_started = asyncio.Event()
        self.proceed = asyncio.Event()
        self.calls = 0

    async def fetch_version(self) -> VersionRecord:
        self.calls += 1
        self.fetch_started.set()
        await self.proceed.wait()
        return VersionRecord(semver=self.version)


class FakeRegistry:
    """Acts as both the remote source and the publisher of one package.

    Publishing is slow and only becomes visible to fetches once it is done,
    like a real registry.
    """

    def __init__(self, published: str, local: str) -> None:
        self.published = published
        self.local = local
        self.publish_started = asyncio.Event()
        self.finish_publish = asyncio.Event()
        self.publishes = 0

    async def fetch_version(self) -> VersionRecord:
        return VersionRecord(semver=self.published)

    async def publish(self) -> PublishOutcome:
        self.publishes += 1
        self.publish_started.set()
        await self.finish_publish.wait()
        self.published = self.local
        return PublishOutcome(ok=True, detail=f"+ pkg@{self.local}")


# ---------------------------------------------------------------------------
# RunRegistry
# ---------------------------------------------------------------------------


class TestRunRegistry:
    @pytest.mark.asyncio
    async def test_single_run_returns_result(self) -> None:
        registry = RunRegistry()

        async def work(token: RunToken) -> str:
            assert await token.checkpoint() is False
            token.commit()
            return "done"

        assert await registry.run(KEY, work) == "done"
        assert registry.pending(KEY) == 0

    @pytest.mark.asyncio
    async def test_newer_run_cancels_uncommitted_older_run(self) -> None:
        registry = RunRegistry()
        started = asyncio.Event()
        reached_end: list[str] = []

        async def slow(token: RunToken) -> str:
            started.set()
            await asyncio.sleep(10)
            reached_end.append("slow")
            return "slow"

        async def fast(token: RunToken) -> str:
            await token.checkpoint()
            return "fast"

        first = asyncio.create_task(registry.run(KEY, slow))
        await started.wait()
        assert await registry.run(KEY, fast) == "fast"

        with pytest.raises(RunSuperseded):
            await first
        assert reached_end == []

    @pytest.mark.asyncio
    async def test_committed_run_is_not_cancelled(self) -> None:
        registry = RunRegistry()
        committed = asyncio.Event()
        release = asyncio.Event()

        async def committing(token: RunToken) -> str:
            token.commit()
            committed.set()
            await release.wait()
            return "finished"

        async def follower(token: RunToken) -> bool:
            release.set()
            return await token.checkpoint()

        first = asyncio.create_task(registry.run(KEY, committing))
        await committed.wait()
        predecessor_committed = await registry.run(KEY, follower)

        assert predecessor_committed is True
        assert await first == "finished"

    @pytest.mark.asyncio
    async def test_failure_after_caller_left_is_logged(self) -> None:
        registry = RunRegistry()
        committed = asyncio.Event()
        release = asyncio.Event()

        async def committing(token: RunToken) -> None:
            token.commit()
            committed.set()
            await release.wait()
            raise RuntimeError("publish exploded")

        caller = asyncio.create_task(registry.run(KEY, committing))
        await committed.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        assert registry.pending(KEY) == 1

        with patch("delivery_gate.concurrency.logger") as log:
            release.set()
            while registry.pending(KEY):
                await asyncio.sleep(0)
            await asyncio.sleep(0)

        log.error.assert_called_once_with(
            "detached_run_failed",
            key=str(KEY),
            error="publish exploded",
            error_type="RuntimeError",
        )

    @pytest.mark.asyncio
    async def test_different_keys_do_not_interfere(self) -> None:
        registry = RunRegistry()
        started = asyncio.Event()
        release = asyncio.Event()

        async def waiting(token: RunToken) -> str:
            started.set()
            await release.wait()
            return "a"

        async def other(token: RunToken) -> str:
            release.set()
            return "b"

        first = asyncio.create_task(registry.run(ConcurrencyKey("a"), waiting))
        await started.wait()
        assert await registry.run(ConcurrencyKey("b"), other) == "b"
        assert await first == "a"

    @pytest.mark.asyncio
    async def test_errors_propagate_to_caller(self) -> None:
        registry = RunRegistry()

        async def failing(token: RunToken) -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await registry.run(KEY, failing)
        assert registry.pending(KEY) == 0


# ---------------------------------------------------------------------------
# ReleasePipeline under concurrency
# ---------------------------------------------------------------------------


class TestReleasePipelineConcurrency:
    @pytest.mark.asyncio
    async def test_superseded_run_never_publishes(self) -> None:
        """Second run arrives while the first is still fetching."""
        source = BlockingSource("0.42.0")
        publisher = MockPublisher()
        pipeline = ReleasePipeline(source, publisher)
        local = VersionRecord(semver="0.43.0")

        first = asyncio.create_task(pipeline.run(local, KEY))
        await source.fetch_started.wait()

        second = asyncio.create_task(pipeline.run(local, KEY))
        # Let the second run register (and supersede the first) before any
        # fetch completes.
        await asyncio.sleep(0)
        source.proceed.set()

        result = await second
        with pytest.raises(RunSuperseded):
            await first

        assert result.status == RunStatus.PUBLISHED
        assert publisher.calls == 1

    @pytest.mark.asyncio
    async def test_run_after_committed_publish_rechecks(self) -> None:
        """A run overlapping an in-flight publish of the same version skips."""
        fake = FakeRegistry(published="0.42.0", local="0.43.0")
        pipeline = ReleasePipeline(fake, fake)
        local = VersionRecord(semver="0.43.0")

        first = asyncio.create_task(pipeline.run(local, KEY))
        await fake.publish_started.wait()

        second = asyncio.create_task(pipeline.run(local, KEY))
        await asyncio.sleep(0)
        fake.finish_publish.set()

        first_result = await first
        second_result = await second

        assert first_result.status == RunStatus.PUBLISHED
        assert second_result.status == RunStatus.SKIPPED
        assert fake.publishes == 1

    @pytest.mark.asyncio
    async def test_sequential_unchanged_runs_never_publish(self) -> None:
        publisher = MockPublisher()
        fake = FakeRegistry(published="0.42.0", local="0.42.0")
        pipeline = ReleasePipeline(fake, publisher)
        local = VersionRecord(semver="0.42.0")

        for _ in range(2):
            result = await pipeline.run(local, KEY)
            assert result.status == RunStatus.SKIPPED
        assert publisher.calls == 0
