"""
Semantic version parsing, ordering and constraint matching.

Parsing is lenient: tool output such as "aider 0.52.1" or "v2.0.0-beta.3+sha"
is reduced to a Version, and text without any version still yields a Version
that keeps the original string in ``raw``.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field

SEMVER_RE = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z\-.]+))?"
    r"(?:\+([0-9A-Za-z\-.]+))?$"
)
EMBEDDED_VERSION_RE = re.compile(r"(\d+(?:\.\d+)*(?:-[a-zA-Z0-9.\-]+)?)")

CONSTRAINT_RE = re.compile(r"^\s*(==|>=|<=|=|>|<|~|\^)?\s*(.+?)\s*$")
OPERATORS = ("=", "==", ">", ">=", "<", "<=", "~", "^")


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """
    Parsed semantic version.

    Attributes:
        major: Major component
        minor: Minor component (0 when absent)
        patch: Patch component (0 when absent)
        prerelease: Dot-separated prerelease identifiers, "" when absent
        build: Build metadata, "" when absent (ignored for ordering)
        raw: Original input text
    """
    major: int = 0
    minor: int = 0
    patch: int = 0
    prerelease: str = ""
    build: str = ""
    raw: str = field(default="", compare=False)

    def __str__(self) -> str:
        if self.raw:
            return self.raw
        s = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            s += f"-{self.prerelease}"
        if self.build:
            s += f"+{self.build}"
        return s

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) == 0

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) < 0

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))

    def is_zero(self) -> bool:
        """True for the empty version (nothing parsed, no raw text)."""
        return self.major == 0 and self.minor == 0 and self.patch == 0 and not self.raw

    def is_newer_than(self, other: Version) -> bool:
        return compare_versions(self, other) > 0

    def is_older_than(self, other: Version) -> bool:
        return compare_versions(self, other) < 0

    def equals(self, other: Version) -> bool:
        return compare_versions(self, other) == 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "major": self.major,
            "minor": self.minor,
            "patch": self.patch,
            "prerelease": self.prerelease,
            "build": self.build,
            "raw": self.raw,
        }


def _match(s: str) -> re.Match[str] | None:
    m = SEMVER_RE.match(s)
    if m:
        return m
    embedded = EMBEDDED_VERSION_RE.search(s)
    if embedded:
        return SEMVER_RE.match(embedded.group(1))
    return None


def _from_match(m: re.Match[str], raw: str) -> Version:
    major, minor, patch, prerelease, build = m.groups()
    return Version(
        major=int(major),
        minor=int(minor) if minor else 0,
        patch=int(patch) if patch else 0,
        prerelease=prerelease or "",
        build=build or "",
        raw=raw,
    )


def parse_version(s: str | None) -> Version:
    """
    Parse a version string.

    Handles "1.2.3", "v1.2", "1.2.3-beta.1", "1.2.3+build.5" and strings with
    an embedded version such as "tool version 1.4.0 (abc)".

    Args:
        s: Version text

    Returns:
        Parsed Version. Text without a recognisable version produces a
        Version with zero components and ``raw`` set to the trimmed input.
    """
    s = (s or "").strip()
    if not s:
        return Version()

    m = _match(s)
    if m is None:
        return Version(raw=s)
    return _from_match(m, s)


def try_parse_version(s: str | None) -> Version | None:
    """
    Parse a version string, reporting failure instead of degrading.

    Args:
        s: Version text

    Returns:
        Parsed Version, or None if the text is empty or has no version in it
    """
    s = (s or "").strip()
    if not s:
        return None
    m = _match(s)
    if m is None:
        return None
    return _from_match(m, s)


def strip_tag_prefix(tag: str) -> str:
    """Remove a single leading "v" from a release tag."""
    tag = tag.strip()
    if tag.startswith("v"):
        return tag[1:]
    return tag


def _compare_int(a: int, b: int) -> int:
    return (a > b) - (a < b)


def _compare_identifier(a: str, b: str) -> int:
    a_num = a.isdigit()
    b_num = b.isdigit()

    if a_num and b_num:
        return _compare_int(int(a), int(b))
    # Numeric identifiers sort below alphanumeric ones
    if a_num:
        return -1
    if b_num:
        return 1
    return (a > b) - (a < b)


def _compare_prerelease(a: str, b: str) -> int:
    if a == b == "":
        return 0
    if not a:
        return 1
    if not b:
        return -1

    a_parts = a.split(".")
    b_parts = b.split(".")
    for a_id, b_id in zip(a_parts, b_parts):
        cmp = _compare_identifier(a_id, b_id)
        if cmp:
            return cmp
    return _compare_int(len(a_parts), len(b_parts))


def compare_versions(v1: Version | str, v2: Version | str) -> int:
    """
    Compare two versions.

    Args:
        v1: First version (Version or text)
        v2: Second version (Version or text)

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    a = v1 if isinstance(v1, Version) else parse_version(v1)
    b = v2 if isinstance(v2, Version) else parse_version(v2)

    for x, y in ((a.major, b.major), (a.minor, b.minor), (a.patch, b.patch)):
        if x != y:
            return _compare_int(x, y)
    return _compare_prerelease(a.prerelease, b.prerelease)


@dataclass(frozen=True)
class VersionConstraint:
    """
    Version constraint such as ">=1.0.0", "~1.2.3" or "^0.4.0".

    Attributes:
        operator: One of =, ==, >, >=, <, <=, ~, ^
        version: Version the operator applies to
    """
    operator: str
    version: Version

    def matches(self, v: Version | str) -> bool:
        """Check whether a version satisfies this constraint."""
        if not isinstance(v, Version):
            v = parse_version(v)
        c = self.version
        cmp = compare_versions(v, c)

        if self.operator == ">":
            return cmp > 0
        if self.operator == ">=":
            return cmp >= 0
        if self.operator == "<":
            return cmp < 0
        if self.operator == "<=":
            return cmp <= 0
        if self.operator == "~":
            return v.major == c.major and v.minor == c.minor and v.patch >= c.patch
        if self.operator == "^":
            # Below 1.0.0 the minor component is the compatibility boundary
            if c.major == 0:
                return v.major == 0 and v.minor == c.minor and v.patch >= c.patch
            return v.major == c.major and not v.is_older_than(c)
        return cmp == 0

    def __str__(self) -> str:
        return f"{self.operator}{self.version}"


def parse_constraint(s: str) -> VersionConstraint:
    """
    Parse constraint text ("^1.2.3", ">= 2.0", "1.0.0").

    A bare version is an equality constraint.

    Raises:
        ValueError: If the text is empty
    """
    m = CONSTRAINT_RE.match(s or "")
    if not m or not m.group(2):
        raise ValueError(f"Invalid version constraint: {s!r}")
    operator = m.group(1) or "="
    return VersionConstraint(operator=operator, version=parse_version(m.group(2)))


@dataclass(frozen=True)
class VersionRange:
    """Inclusive range of versions."""
    from_version: Version
    to_version: Version

    def contains(self, v: Version | str) -> bool:
        if not isinstance(v, Version):
            v = parse_version(v)
        return not v.is_older_than(self.from_version) and not v.is_newer_than(self.to_version)
