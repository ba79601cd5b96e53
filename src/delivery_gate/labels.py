"""Label application for pull requests.

Two kinds of labels end up on a pull request:
- One category label derived from the title (C-bug, C-enhancement, ...)
- Any number of path labels derived from which files changed

This module decides which calls to make; the sink performs them. Sink
failures are never retried or swallowed here.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from fnmatch import fnmatchcase

from delivery_gate.context.github import LabelSinkProtocol
from delivery_gate.logging_config import get_logger
from delivery_gate.schemas import CategoryLabel

logger = get_logger(__name__)


async def apply(label: CategoryLabel, sink: LabelSinkProtocol) -> bool:
    """Apply a category label unless it is NONE.

    Returns:
        True if the sink was called, False for the NONE no-op

    Raises:
        Whatever the sink raises, unchanged
    """
    if label == CategoryLabel.NONE:
        logger.info("label_skipped", reason="no category for type")
        return False

    await sink.add_label(label)
    logger.info("label_applied", label=label.value)
    return True


def _glob_match(path: str, pattern: str) -> bool:
    """fnmatch, except that ``**/`` may also match zero directories."""
    if fnmatchcase(path, pattern):
        return True
    start = pattern.find("**/")
    while start != -1:
        if _glob_match(path, pattern[:start] + pattern[start + 3:]):
            return True
        start = pattern.find("**/", start + 3)
    return False


def path_labels(files: Iterable[str], rules: Mapping[str, list[str]]) -> list[str]:
    """Return the labels whose glob patterns match at least one changed file.

    Args:
        files: Paths changed by the pull request, relative to the repo root
        rules: label -> glob patterns (``*`` also matches across ``/``, and
            ``**/`` matches zero or more directories)

    Returns:
        Matching label names, sorted
    """
    files = list(files)
    matched = {
        label
        for label, patterns in rules.items()
        if any(_glob_match(path, pattern) for pattern in patterns for path in files)
    }
    return sorted(matched)


async def apply_path_labels(names: Iterable[str], sink: LabelSinkProtocol) -> list[str]:
    """Apply each path label through the sink, in order.

    Returns:
        The labels that were applied
    """
    applied: list[str] = []
    for name in names:
        await sink.add_named_label(name)
        applied.append(name)
    if applied:
        logger.info("path_labels_applied", labels=applied)
    return applied
