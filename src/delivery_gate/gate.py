"""Version gate: is there a new version to ship?

The gate answers one question: is the locally declared version strictly
newer than the last published one? Plain inequality is not enough; a local
manifest that lags behind the registry (a revert, an out-of-order run) must
not trigger a publish.
"""

from __future__ import annotations

from delivery_gate.context.versions import VersionSourceProtocol
from delivery_gate.logging_config import get_logger
from delivery_gate.schemas import ChangeKind, VersionRecord, VersionVerdict
from delivery_gate.semver import SemVer, change_kind

logger = get_logger(__name__)


def compare(local: VersionRecord, remote: VersionRecord) -> VersionVerdict:
    """Build a verdict from two already-read versions."""
    new = SemVer.parse(local.semver)
    old = SemVer.parse(remote.semver)

    changed = new > old
    verdict = VersionVerdict(
        changed=changed,
        new_version=local.semver,
        change_kind=change_kind(new, old) if changed else ChangeKind.NONE,
        previous_version=remote.semver,
    )

    if new < old:
        logger.warning(
            "local_version_behind_remote",
            package=local.name or remote.name,
            local=local.semver,
            remote=remote.semver,
        )
    logger.info(
        "version_checked",
        package=local.name or remote.name,
        local=local.semver,
        remote=remote.semver,
        changed=verdict.changed,
        change_kind=verdict.change_kind.value,
    )
    return verdict


async def check(
    local: VersionRecord,
    remote_source: VersionSourceProtocol,
) -> VersionVerdict:
    """Fetch the published version and compare the local one against it.

    Args:
        local: Version declared by the project
        remote_source: Where the last published version is read from

    Returns:
        The verdict; changed is True only if local is strictly newer

    Raises:
        FetchError: If the remote source is unreachable or malformed
    """
    remote = await remote_source.fetch_version()
    return compare(local, remote)
