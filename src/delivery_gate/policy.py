"""Configuration for both pipelines, loaded from YAML.

The title policy is the part that carries real rules:
- Which change types are allowed at all
- Which types must carry a scope, and which must not
- Which category label each type maps to

Everything has a default taken from the project's original CI workflow,
so a missing config file still yields a working gate. The release section
is optional: without it only the label pipeline is usable.

Example:
    title:
      allowedTypes: [feat, fix, docs]
      requireScope: [feat, fix]
      disallowScope: [docs]
      labelTable: {feat: enhancement, fix: bug, docs: docs}
    label_prefix: "C-"
    path_labels:
      A-parser: ["crates/oxc_parser/**"]
    release:
      manifest: npm/oxc-types/package.json
      remote_url: https://unpkg.com/@oxc-project/types/package.json
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from delivery_gate.schemas import CategoryLabel

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_TYPES = frozenset({
    "build", "chore", "ci", "docs", "feat", "fix", "perf",
    "refactor", "release", "revert", "style", "test",
})

DEFAULT_DISALLOW_SCOPE = frozenset({"build", "chore", "ci", "release", "revert"})

DEFAULT_LABEL_TABLE: dict[str, CategoryLabel] = {
    "feat": CategoryLabel.ENHANCEMENT,
    "fix": CategoryLabel.BUG,
    "test": CategoryLabel.TEST,
    "refactor": CategoryLabel.CLEANUP,
    "chore": CategoryLabel.CLEANUP,
    "style": CategoryLabel.CLEANUP,
    "docs": CategoryLabel.DOCS,
    "perf": CategoryLabel.PERFORMANCE,
}

DEFAULT_PUBLISH_COMMAND = [
    "pnpm", "publish", "--provenance", "--access", "public", "--no-git-checks",
]

CONFIG_ENV_VAR = "DELIVERY_GATE_CONFIG"


# ---------------------------------------------------------------------------
# Config Models
# ---------------------------------------------------------------------------


class TitlePolicy(BaseModel):
    """Rules a pull request title is validated against.

    Attributes:
        allowed_types: Type vocabulary; anything else is a parse error
        require_scope: Types that must carry a scope
        disallow_scope: Types that must not carry a scope
        label_table: Type -> category label; unmapped types get no label
    """

    model_config = ConfigDict(populate_by_name=True)

    allowed_types: frozenset[str] = Field(DEFAULT_TYPES, alias="allowedTypes")
    require_scope: frozenset[str] = Field(
        DEFAULT_TYPES - DEFAULT_DISALLOW_SCOPE, alias="requireScope"
    )
    disallow_scope: frozenset[str] = Field(
        DEFAULT_DISALLOW_SCOPE, alias="disallowScope"
    )
    label_table: dict[str, CategoryLabel] = Field(
        default_factory=lambda: dict(DEFAULT_LABEL_TABLE), alias="labelTable"
    )

    @model_validator(mode="after")
    def check_scope_sets(self) -> TitlePolicy:
        """Scope rules must refer to allowed types and must not contradict."""
        unknown = (self.require_scope | self.disallow_scope) - self.allowed_types
        if unknown:
            raise ValueError(
                f"Scope rules reference types that are not allowed: "
                f"{', '.join(sorted(unknown))}"
            )
        both = self.require_scope & self.disallow_scope
        if both:
            raise ValueError(
                f"Types cannot both require and disallow a scope: "
                f"{', '.join(sorted(both))}"
            )
        return self


class ReleaseConfig(BaseModel):
    """Where the release pipeline reads versions from and how it publishes.

    Attributes:
        manifest: Path of the local manifest, relative to the repo root
        remote_url: URL of the last published manifest
        version_field: JSON field holding the version in both documents
        publish_command: Command run when a new version should ship
        working_directory: Directory the publish command runs in
        branch: Only pushes to this branch trigger a release
    """

    manifest: str = "package.json"
    remote_url: str
    version_field: str = "version"
    publish_command: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PUBLISH_COMMAND)
    )
    working_directory: str | None = None
    branch: str = "main"


class PolicyConfig(BaseModel):
    """Top-level configuration loaded from YAML."""

    title: TitlePolicy = Field(default_factory=TitlePolicy)
    label_prefix: str = "C-"
    path_labels: dict[str, list[str]] = {}
    release: ReleaseConfig | None = None


def load_policy_config(path: str | Path | None = None) -> PolicyConfig:
    """Load and validate a YAML config file.

    Args:
        path: Path to the YAML configuration file. Falls back to the
              DELIVERY_GATE_CONFIG env var when not provided.

    Returns:
        A validated PolicyConfig. Returns defaults if the file doesn't exist.

    Raises:
        ValueError: If the YAML content is invalid or fails validation.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return PolicyConfig()

    config_path = Path(path)
    if not config_path.exists():
        return PolicyConfig()

    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    try:
        return PolicyConfig.model_validate(raw)
    except Exception as exc:
        raise ValueError(f"Invalid policy config in {path}: {exc}") from exc
