"""Tests for the pipeline orchestrators and the CLI entry point.

Run with: pytest tests/test_pipelines.py -v
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from delivery_gate.context.github import GitHubClient, MockLabelSink
from delivery_gate.context.publish import MockPublisher
from delivery_gate.context.versions import MockVersionSource
from delivery_gate.errors import FetchError, ParseError, PolicyViolation
from delivery_gate.pipelines import LabelPipeline, ReleasePipeline, main
from delivery_gate.policy import PolicyConfig
from delivery_gate.schemas import (
    CategoryLabel,
    ConcurrencyKey,
    PublishOutcome,
    RunStatus,
    VersionRecord,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> PolicyConfig:
    return PolicyConfig(path_labels={"A-parser": ["crates/oxc_parser/**"]})


@pytest.fixture
def manifest(tmp_path: Path) -> Path:
    path = tmp_path / "package.json"
    path.write_text(json.dumps({"name": "@oxc-project/types", "version": "0.43.0"}))
    return path


# ---------------------------------------------------------------------------
# LabelPipeline
# ---------------------------------------------------------------------------


class TestLabelPipeline:
    @pytest.mark.asyncio
    async def test_applies_category_and_path_labels(self, config: PolicyConfig) -> None:
        sink = MockLabelSink()
        result = await LabelPipeline(config).run(
            "fix(parser): crash on empty file",
            sink,
            files=["crates/oxc_parser/src/lib.rs"],
        )
        assert result.label == CategoryLabel.BUG
        assert result.path_labels == ["A-parser"]
        assert sink.labels == ["bug", "A-parser"]

    @pytest.mark.asyncio
    async def test_unmapped_type_applies_nothing(self) -> None:
        sink = MockLabelSink()
        result = await LabelPipeline().run("ci: cache pnpm store", sink)
        assert result.label == CategoryLabel.NONE
        assert sink.labels == []

    @pytest.mark.asyncio
    async def test_parse_error_reaches_no_sink(self, config: PolicyConfig) -> None:
        sink = MockLabelSink()
        with pytest.raises(ParseError):
            await LabelPipeline(config).run(
                "note: something", sink, files=["crates/oxc_parser/src/lib.rs"]
            )
        assert sink.labels == []

    @pytest.mark.asyncio
    async def test_policy_violation_reaches_no_sink(self) -> None:
        sink = MockLabelSink()
        with pytest.raises(PolicyViolation):
            await LabelPipeline().run("build(ci): x", sink)
        assert sink.labels == []

    def test_classify_is_side_effect_free(self, config: PolicyConfig) -> None:
        result = LabelPipeline(config).classify("docs(readme): typo")
        assert result.label == CategoryLabel.DOCS
        assert result.title.scope == "readme"


# ---------------------------------------------------------------------------
# ReleasePipeline
# ---------------------------------------------------------------------------


class TestReleasePipeline:
    @pytest.mark.asyncio
    async def test_publishes_new_version(self) -> None:
        publisher = MockPublisher()
        pipeline = ReleasePipeline(MockVersionSource("0.42.0"), publisher)
        result = await pipeline.run(VersionRecord(semver="0.43.0"), ConcurrencyKey("k"))
        assert result.status == RunStatus.PUBLISHED
        assert publisher.calls == 1

    @pytest.mark.asyncio
    async def test_skips_unchanged_version(self) -> None:
        publisher = MockPublisher()
        pipeline = ReleasePipeline(MockVersionSource("0.43.0"), publisher)
        result = await pipeline.run(VersionRecord(semver="0.43.0"), ConcurrencyKey("k"))
        assert result.status == RunStatus.SKIPPED
        assert publisher.calls == 0


# ---------------------------------------------------------------------------
# CLI Tests
# ---------------------------------------------------------------------------


class TestCLI:
    """Tests for the CLI entry point."""

    def test_classify_prints_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        main(["classify", "feat(parser): add x"])
        out = json.loads(capsys.readouterr().out)
        assert out["label"] == "enhancement"
        assert out["title"]["scope"] == "parser"

    def test_classify_invalid_title_exits_2(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as excinfo:
            main(["classify", "build(ci): x"])
        assert excinfo.value.code == 2
        assert "disallow_scope" in capsys.readouterr().err

    def test_check_version(
        self, manifest: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with patch(
            "delivery_gate.pipelines.HttpVersionSource",
            return_value=MockVersionSource("0.42.0"),
        ):
            main(["check-version", "--manifest", str(manifest), "--remote-url", "http://x"])
        out = json.loads(capsys.readouterr().out)
        assert out["changed"] is True
        assert out["change_kind"] == "minor"

    def test_check_version_needs_settings(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as excinfo:
            main(["check-version"])
        assert excinfo.value.code == 2

    def test_release_publish_failure_exits_1(
        self, manifest: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        publisher = MockPublisher(outcome=PublishOutcome(ok=False, detail="E403"))
        with patch(
            "delivery_gate.pipelines.HttpVersionSource",
            return_value=MockVersionSource("0.42.0"),
        ), patch("delivery_gate.pipelines.CommandPublisher", return_value=publisher):
            with pytest.raises(SystemExit) as excinfo:
                main(["release", "--manifest", str(manifest), "--remote-url", "http://x"])
        assert excinfo.value.code == 1
        assert json.loads(capsys.readouterr().out)["status"] == "publish_failed"

    def test_release_unchanged_skips(
        self, manifest: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        publisher = MockPublisher()
        with patch(
            "delivery_gate.pipelines.HttpVersionSource",
            return_value=MockVersionSource("0.43.0"),
        ), patch("delivery_gate.pipelines.CommandPublisher", return_value=publisher):
            main(["release", "--manifest", str(manifest), "--remote-url", "http://x"])
        assert json.loads(capsys.readouterr().out)["status"] == "skipped"
        assert publisher.calls == 0

    def test_missing_manifest_exits_3(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as excinfo:
            main([
                "check-version",
                "--manifest", str(tmp_path / "missing.json"),
                "--remote-url", "http://x",
            ])
        assert excinfo.value.code == 3

    def test_label_file_listing_failure_exits_3(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        github = AsyncMock(spec=GitHubClient)
        github.get_pr_files.side_effect = FetchError("Listing files of o/r#1 failed: 500")
        with patch("delivery_gate.pipelines.GitHubClient", return_value=github):
            with pytest.raises(SystemExit) as excinfo:
                main(["label", "--repo", "o/r", "--number", "1", "--with-paths", "fix(x): y"])
        assert excinfo.value.code == 3
        assert "o/r#1" in capsys.readouterr().err
        github.add_labels.assert_not_awaited()
