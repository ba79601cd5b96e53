"""Release trigger: publish only when the gate says so.

Re-running against an unchanged version is always a safe no-op. When the
version did change the publisher runs exactly once, and whatever it reports
(or raises) is handed back untouched.
"""

from __future__ import annotations

from delivery_gate.context.publish import PublisherProtocol
from delivery_gate.logging_config import get_logger
from delivery_gate.schemas import RunResult, RunStatus, VersionVerdict

logger = get_logger(__name__)


async def run(verdict: VersionVerdict, publisher: PublisherProtocol) -> RunResult:
    """Run the publish action if the verdict says the version changed.

    Args:
        verdict: Output of the version gate
        publisher: The publish action

    Returns:
        SKIPPED, PUBLISHED, or PUBLISH_FAILED with the publisher's diagnostic

    Raises:
        Whatever the publisher raises, unchanged
    """
    if not verdict.changed:
        logger.info("publish_skipped", version=verdict.new_version)
        return RunResult(status=RunStatus.SKIPPED, version=verdict.new_version)

    outcome = await publisher.publish()

    status = RunStatus.PUBLISHED if outcome.ok else RunStatus.PUBLISH_FAILED
    log = logger.info if outcome.ok else logger.error
    log(
        "publish_completed" if outcome.ok else "publish_failed",
        version=verdict.new_version,
        change_kind=verdict.change_kind.value,
    )
    return RunResult(
        status=status,
        version=verdict.new_version,
        change_kind=verdict.change_kind,
        detail=outcome.detail,
    )
