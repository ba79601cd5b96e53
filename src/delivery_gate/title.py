"""Pull request title classifier.

Titles follow the conventional-commit shape::

    type[(scope)][!]: subject

e.g. ``feat(parser): support decorators`` or ``chore: bump deps``.

Classification is two steps, both pure:
1. classify(): parse the title and validate it against the TitlePolicy.
   Structural problems raise ParseError; scope rule problems raise
   PolicyViolation so callers can say exactly which rule failed.
2. label_for(): look the type up in the policy's label table. Types without
   an entry map to CategoryLabel.NONE, which is a normal outcome.
"""

from __future__ import annotations

import re

from delivery_gate.errors import ParseError, PolicyViolation
from delivery_gate.policy import TitlePolicy
from delivery_gate.schemas import CategoryLabel, ChangeRequestTitle

_TITLE_RE = re.compile(
    r"^(?P<type>[^\s():!]+)"
    r"(?:\((?P<scope>[^()]*)\))?"
    r"(?P<breaking>!)?"
    r":\s+(?P<subject>.*)$",
    re.DOTALL,
)

_TYPE_RE = re.compile(r"^[a-z]+$")


def classify(title: str, policy: TitlePolicy | None = None) -> ChangeRequestTitle:
    """Parse a pull request title and validate it against the policy.

    Args:
        title: The raw title
        policy: Rules to validate against. Uses the default policy if None.

    Returns:
        The parsed title

    Raises:
        ParseError: If the title is not ``type[(scope)][!]: subject`` or the
                    type is not in the allowed vocabulary
        PolicyViolation: If a scope is missing where required or present
                         where disallowed
    """
    policy = policy or TitlePolicy()

    m = _TITLE_RE.match(title.strip())
    if m is None:
        raise ParseError(
            f"Title {title!r} does not match 'type(scope): subject'"
        )

    raw_type = m.group("type")
    if not _TYPE_RE.match(raw_type) or raw_type not in policy.allowed_types:
        allowed = ", ".join(sorted(policy.allowed_types))
        raise ParseError(f"Unknown type {raw_type!r}; expected one of: {allowed}")

    scope = m.group("scope")
    if scope is not None:
        scope = scope.strip()
        if not scope:
            raise ParseError(f"Title {title!r} has an empty scope")

    subject = m.group("subject").strip()
    if not subject:
        raise ParseError(f"Title {title!r} has no subject")

    if scope is None and raw_type in policy.require_scope:
        raise PolicyViolation(
            "require_scope",
            f"Type '{raw_type}' requires a scope, e.g. '{raw_type}(parser): ...'",
        )
    if scope is not None and raw_type in policy.disallow_scope:
        raise PolicyViolation(
            "disallow_scope",
            f"Type '{raw_type}' must not have a scope (got '{scope}')",
        )

    return ChangeRequestTitle(
        raw_type=raw_type,
        scope=scope,
        subject=subject,
        breaking=m.group("breaking") is not None,
    )


def label_for(
    title: ChangeRequestTitle,
    policy: TitlePolicy | None = None,
) -> CategoryLabel:
    """Map a parsed title to its category label, or NONE if unmapped."""
    policy = policy or TitlePolicy()
    return policy.label_table.get(title.raw_type, CategoryLabel.NONE)
