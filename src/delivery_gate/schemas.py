"""Pydantic models defining the data that flows through the delivery gate.

These schemas are the single source of truth for both pipelines:
- Release pipeline: VersionRecord -> VersionVerdict -> RunResult
- Label pipeline: title string -> ChangeRequestTitle -> CategoryLabel

All of them are transient and request-scoped. Nothing here is persisted;
the version of record lives in the package registry and labels live on the
pull request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ChangeKind(str, Enum):
    """Highest-order version component that changed.

    PRERELEASE: Only the pre-release qualifiers differ (1.0.0-rc.1 -> 1.0.0-rc.2)
    NONE: Nothing to ship
    """

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    PRERELEASE = "prerelease"
    NONE = "none"


class CategoryLabel(str, Enum):
    """Category a pull request falls into, derived from its title type.

    NONE is a valid outcome, not an error: it means "apply no label".
    """

    ENHANCEMENT = "enhancement"
    BUG = "bug"
    TEST = "test"
    CLEANUP = "cleanup"
    DOCS = "docs"
    PERFORMANCE = "performance"
    NONE = "none"


class RunStatus(str, Enum):
    """Terminal state of a release run."""

    SKIPPED = "skipped"
    PUBLISHED = "published"
    PUBLISH_FAILED = "publish_failed"


# ---------------------------------------------------------------------------
# Release Pipeline
# ---------------------------------------------------------------------------


class VersionRecord(BaseModel):
    """A version as declared by one source (local manifest or remote registry).

    Attributes:
        name: Package name (e.g., "@oxc-project/types")
        semver: Semantic version string (e.g., "0.42.0")
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field("", description="Package name")
    semver: str = Field(..., description="Semantic version string")

    @field_validator("semver")
    @classmethod
    def check_semver(cls, value: str) -> str:
        # Imported here to avoid a cycle: semver.py needs ChangeKind.
        from delivery_gate.semver import is_valid

        if not is_valid(value):
            raise ValueError(f"'{value}' is not a valid semantic version")
        return value.strip()


class VersionVerdict(BaseModel):
    """Outcome of comparing the local version against the remote one.

    Attributes:
        changed: True only when the local version is strictly newer
        new_version: The locally declared version
        change_kind: Highest differing component, NONE when not changed
        previous_version: The remote (last published) version
    """

    model_config = ConfigDict(frozen=True)

    changed: bool = Field(..., description="Local version is newer than remote")
    new_version: str = Field(..., description="Locally declared version")
    change_kind: ChangeKind = Field(ChangeKind.NONE, description="Size of the change")
    previous_version: str = Field("", description="Last published version")


class PublishOutcome(BaseModel):
    """What a publish action reported back.

    Attributes:
        ok: Whether the publish succeeded
        detail: Diagnostic text from the action (e.g., command output)
    """

    ok: bool
    detail: str = ""


class RunResult(BaseModel):
    """Final result of a release run."""

    status: RunStatus = Field(..., description="Terminal state of the run")
    version: str = Field(..., description="Version that was considered")
    change_kind: ChangeKind = Field(ChangeKind.NONE)
    detail: str = Field("", description="Publish diagnostic, verbatim")


# ---------------------------------------------------------------------------
# Label Pipeline
# ---------------------------------------------------------------------------


class ChangeRequestTitle(BaseModel):
    """A pull request title parsed as ``type[(scope)][!]: subject``.

    Attributes:
        raw_type: The change type token (e.g., "feat")
        scope: The optional scope (e.g., "parser"), None when absent
        subject: Free text after the colon
        breaking: Whether the title carries the "!" breaking-change marker
    """

    model_config = ConfigDict(frozen=True)

    raw_type: str
    scope: str | None = None
    subject: str
    breaking: bool = False


class Classification(BaseModel):
    """Everything the label pipeline derived for one pull request."""

    title: ChangeRequestTitle
    label: CategoryLabel
    path_labels: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConcurrencyKey:
    """Identifies a run group. At most one run per key is allowed to publish.

    Attributes:
        scope: Opaque group identifier (e.g., "release-refs/heads/main")
    """

    scope: str

    @classmethod
    def for_ref(cls, workflow: str, ref: str) -> ConcurrencyKey:
        return cls(f"{workflow}-{ref}")

    def __str__(self) -> str:
        return self.scope
