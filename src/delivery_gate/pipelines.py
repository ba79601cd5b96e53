"""Pipeline orchestrators and the command-line entry point.

This module ties the decision layer to its collaborators:
- ReleasePipeline: version gate -> release trigger, single-flighted per key
- LabelPipeline: title classifier (+ path labels) -> label applier

Both follow the same shape: observe external state, decide, then perform
at most one kind of side effect, and only after every check has passed.

CLI usage:
    delivery-gate check-version --manifest package.json --remote-url URL
    delivery-gate release --manifest package.json --remote-url URL
    delivery-gate classify "feat(parser): support decorators"
    delivery-gate label --repo oxc-project/oxc --number 123 "fix(linter): ..."
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Iterable

from delivery_gate import gate, labels, release
from delivery_gate.concurrency import RunRegistry, RunToken
from delivery_gate.context.github import GitHubClient, GitHubLabelSink, LabelSinkProtocol
from delivery_gate.context.publish import CommandPublisher, PublisherProtocol
from delivery_gate.context.versions import (
    HttpVersionSource,
    VersionSourceProtocol,
    read_local_version,
)
from delivery_gate.errors import ClassificationError, GateError
from delivery_gate.logging_config import get_logger, setup_logging
from delivery_gate.policy import DEFAULT_PUBLISH_COMMAND, PolicyConfig, load_policy_config
from delivery_gate.schemas import (
    Classification,
    ConcurrencyKey,
    RunResult,
    RunStatus,
    VersionRecord,
)
from delivery_gate.title import classify, label_for

logger = get_logger(__name__)


class ReleasePipeline:
    """Runs the version gate and, if the version changed, the publish action.

    Runs sharing a ConcurrencyKey are single-flighted: a newer run cancels
    an older one that has not started publishing yet.

    Usage:
        pipeline = ReleasePipeline(HttpVersionSource(url), CommandPublisher(cmd))
        result = await pipeline.run(local, ConcurrencyKey.for_ref("release", ref))
    """

    def __init__(
        self,
        remote_source: VersionSourceProtocol,
        publisher: PublisherProtocol,
        registry: RunRegistry | None = None,
    ) -> None:
        self.remote_source = remote_source
        self.publisher = publisher
        self.registry = registry or RunRegistry()

    async def run(self, local: VersionRecord, key: ConcurrencyKey) -> RunResult:
        """Run the release pipeline for one observed local version.

        Raises:
            FetchError: If the remote version can't be read
            RunSuperseded: If a newer run for the same key took over
            Anything the publisher raises
        """
        logger.info("release_run_started", key=str(key), local=local.semver)
        return await self.registry.run(key, lambda token: self._execute(local, token))

    async def _execute(self, local: VersionRecord, token: RunToken) -> RunResult:
        verdict = await gate.check(local, self.remote_source)
        if verdict.changed and await token.checkpoint():
            # A predecessor got past its commit point and may have shipped
            # this very version; decide again against the registry.
            logger.info("release_recheck", version=local.semver)
            verdict = await gate.check(local, self.remote_source)
        if verdict.changed:
            token.commit()
        return await release.run(verdict, self.publisher)


class LabelPipeline:
    """Classifies a pull request title and applies the resulting labels.

    Usage:
        pipeline = LabelPipeline(load_policy_config())
        result = await pipeline.run("fix(parser): crash", sink)
    """

    def __init__(self, config: PolicyConfig | None = None) -> None:
        self.config = config or PolicyConfig()

    def classify(self, title: str, files: Iterable[str] = ()) -> Classification:
        """Derive labels without applying them.

        Raises:
            ParseError: If the title is malformed or its type unknown
            PolicyViolation: If the title breaks a scope rule
        """
        parsed = classify(title, self.config.title)
        result = Classification(
            title=parsed,
            label=label_for(parsed, self.config.title),
            path_labels=labels.path_labels(files, self.config.path_labels),
        )
        logger.info(
            "title_classified",
            type=parsed.raw_type,
            scope=parsed.scope,
            label=result.label.value,
            path_labels=result.path_labels,
        )
        return result

    async def run(
        self,
        title: str,
        sink: LabelSinkProtocol,
        files: Iterable[str] = (),
    ) -> Classification:
        """Classify, then apply the category label and any path labels.

        Nothing is sent to the sink unless classification succeeds.
        """
        result = self.classify(title, files)
        await labels.apply(result.label, sink)
        await labels.apply_path_labels(result.path_labels, sink)
        return result


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="delivery-gate",
        description="Release version gate and pull request title classifier",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        help="Path to YAML config (defaults to $DELIVERY_GATE_CONFIG)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("check-version", "Compare local and published versions"),
        ("release", "Publish if the local version is newer than the published one"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--manifest", help="Local manifest (e.g. package.json)")
        cmd.add_argument("--remote-url", help="URL of the published manifest")
        cmd.add_argument("--field", help="JSON field holding the version")
        if name == "release":
            cmd.add_argument("--cwd", help="Directory to run the publish command in")
            cmd.add_argument(
                "publish_command",
                nargs=argparse.REMAINDER,
                help="Publish command (after --), defaults to pnpm publish",
            )

    cmd = sub.add_parser("classify", help="Classify a pull request title")
    cmd.add_argument("title")

    cmd = sub.add_parser("label", help="Classify a title and label the pull request")
    cmd.add_argument("--repo", required=True, help="Repository in owner/name format")
    cmd.add_argument("--number", type=int, required=True, help="Pull request number")
    cmd.add_argument(
        "--with-paths",
        action="store_true",
        help="Also apply path labels from the pull request's changed files",
    )
    cmd.add_argument("title")
    return parser


def _release_settings(args: argparse.Namespace, config: PolicyConfig) -> tuple[str, str, str]:
    rc = config.release
    manifest = args.manifest or (rc.manifest if rc else None)
    remote_url = args.remote_url or (rc.remote_url if rc else None)
    field = args.field or (rc.version_field if rc else "version")
    if not manifest or not remote_url:
        raise ValueError(
            "--manifest and --remote-url are required when the config has no release section"
        )
    return manifest, remote_url, field


async def _run_command(args: argparse.Namespace, config: PolicyConfig) -> int:
    if args.command in ("check-version", "release"):
        manifest, remote_url, field = _release_settings(args, config)
        local = read_local_version(manifest, field)
        source = HttpVersionSource(remote_url, field=field)

        if args.command == "check-version":
            verdict = await gate.check(local, source)
            print(verdict.model_dump_json(indent=2))
            return 0

        rc = config.release
        command = args.publish_command
        if command[:1] == ["--"]:
            command = command[1:]
        command = command or (
            rc.publish_command if rc else list(DEFAULT_PUBLISH_COMMAND)
        )
        cwd = args.cwd or (rc.working_directory if rc else None)
        pipeline = ReleasePipeline(source, CommandPublisher(command, cwd=cwd))
        result = await pipeline.run(local, ConcurrencyKey(f"release-{manifest}"))
        print(result.model_dump_json(indent=2))
        return 1 if result.status == RunStatus.PUBLISH_FAILED else 0

    pipeline = LabelPipeline(config)
    if args.command == "classify":
        print(pipeline.classify(args.title).model_dump_json(indent=2))
        return 0

    client = GitHubClient()
    files = await client.get_pr_files(args.repo, args.number) if args.with_paths else []
    sink = GitHubLabelSink(client, args.repo, args.number, prefix=config.label_prefix)
    result = await pipeline.run(args.title, sink, files)
    print(result.model_dump_json(indent=2))
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Exit codes: 0 success (including skips), 1 publish failed,
    2 invalid input or configuration, 3 any other gate failure.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging()

    try:
        config = load_policy_config(args.config)
        code = asyncio.run(_run_command(args, config))
    except GateError as exc:
        print(f"error: {exc}", file=sys.stderr)
        code = 2 if isinstance(exc, ClassificationError) else 3
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        code = 2

    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()
