"""Semantic Versioning 2.0.0 parsing and precedence.

Only precedence matters to the gate: build metadata (``+...``) is parsed
but ignored when comparing, and a pre-release sorts below its release
(``1.0.0-rc.1 < 1.0.0``). A leading ``v`` is tolerated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

from delivery_gate.schemas import ChangeKind

_IDENT = r"(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"

_SEMVER_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    rf"(?:-({_IDENT}(?:\.{_IDENT})*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


@total_ordering
@dataclass(frozen=True, slots=True, eq=False)
class SemVer:
    """A parsed semantic version.

    Ordering follows semver 2.0.0 precedence. Build metadata is kept for
    display but never takes part in comparisons.
    """

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> SemVer:
        m = _SEMVER_RE.match(text.strip())
        if m is None:
            raise ValueError(f"Not a semantic version: {text!r}")
        pre = tuple(m.group(4).split(".")) if m.group(4) else ()
        build = tuple(m.group(5).split(".")) if m.group(5) else ()
        return cls(int(m.group(1)), int(m.group(2)), int(m.group(3)), pre, build)

    def _precedence(self) -> tuple:
        if not self.prerelease:
            # A release outranks any of its pre-releases.
            pre: tuple = (1,)
        else:
            pre = (0, *(
                (0, int(ident)) if ident.isdigit() else (1, ident)
                for ident in self.prerelease
            ))
        return (self.major, self.minor, self.patch, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._precedence() == other._precedence()

    def __lt__(self, other: SemVer) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._precedence() < other._precedence()

    def __hash__(self) -> int:
        return hash(self._precedence())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


def is_valid(text: str) -> bool:
    return _SEMVER_RE.match(text.strip()) is not None


def change_kind(new: SemVer, old: SemVer) -> ChangeKind:
    """Return the highest-order component that differs between two versions."""
    if new.major != old.major:
        return ChangeKind.MAJOR
    if new.minor != old.minor:
        return ChangeKind.MINOR
    if new.patch != old.patch:
        return ChangeKind.PATCH
    if new.prerelease != old.prerelease:
        return ChangeKind.PRERELEASE
    return ChangeKind.NONE
