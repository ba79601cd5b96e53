"""Exception hierarchy for the delivery gate.

Every failure the pipelines can surface derives from GateError so callers
(the API layer, the CLI) can map them to responses and exit codes in one
place. None of these are ever downgraded to a skip: the only successful
no-ops are an unchanged version and a title without a category label.
"""

from __future__ import annotations


class GateError(Exception):
    """Base class for all delivery gate failures."""


class FetchError(GateError):
    """A version source was unreachable or returned a malformed document."""


class ClassificationError(GateError):
    """Base class for pull request title failures."""


class ParseError(ClassificationError):
    """The title does not match ``type[(scope)][!]: subject``."""


class PolicyViolation(ClassificationError):
    """The title parses but breaks a scope rule.

    Attributes:
        rule_name: The rule that was violated ("require_scope" or
                   "disallow_scope")
        reason: Human-readable explanation
    """

    def __init__(self, rule_name: str, reason: str) -> None:
        super().__init__(f"[{rule_name}] {reason}")
        self.rule_name = rule_name
        self.reason = reason


class ActionError(GateError):
    """A side-effecting action (publish, add label) failed."""


class RunSuperseded(GateError):
    """A run was cancelled because a newer run with the same key started."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Run for '{key}' was superseded by a newer run")
        self.key = key
