"""Cargo-style version requirements on top of semver.Version.

Cargo requirement syntax differs from both PEP 440 and npm ranges, so the
comparator grammar is implemented here while version parsing and ordering is
delegated to the `semver` package.

Supported comparators (comma separated, all must match):
    ^1.2.3  ~1.2  =1.2.3  >1.2  >=1  <2  <=1.4  1.*  *  1.2.3 (caret)
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from semver import Version

_COMPARATOR_RE = re.compile(
    r"""
    ^\s*
    (?P<op>\^|~|=|>=|>|<=|<)?\s*
    (?P<major>\d+|[*xX])
    (?:\.(?P<minor>\d+|[*xX]))?
    (?:\.(?P<patch>\d+|[*xX]))?
    (?:-(?P<pre>[0-9A-Za-z.-]+))?
    (?:\+[0-9A-Za-z.-]+)?
    \s*$
    """,
    re.VERBOSE,
)

_WILDCARDS = {"*", "x", "X"}


@dataclass(frozen=True)
class _Bound:
    op: str  # one of ">=", ">", "<", "<=", "=="
    version: Version

    def matches(self, version: Version) -> bool:
        if self.op == ">=":
            return version >= self.version
        if self.op == ">":
            return version > self.version
        if self.op == "<":
            return version < self.version
        if self.op == "<=":
            return version <= self.version
        return version == self.version


def _num(text: str | None) -> int | None:
    if text is None or text in _WILDCARDS:
        return None
    return int(text)


def _comparator_bounds(text: str) -> tuple[list[_Bound], bool]:
    """Translate one comparator into primitive bounds.

    Returns the bounds and whether the comparator names a pre-release.
    """
    match = _COMPARATOR_RE.match(text)
    if match is None:
        raise ValueError(f"Invalid version requirement: {text!r}")

    op = match.group("op") or "^"
    major = _num(match.group("major"))
    minor = _num(match.group("minor"))
    patch = _num(match.group("patch"))
    pre = match.group("pre")

    if major is None:
        # "*" matches everything
        return [], False
    if minor is None and match.group("patch") is not None and match.group("patch") not in _WILDCARDS:
        raise ValueError(f"Invalid version requirement: {text!r}")
    if match.group("op") is None and (match.group("minor") in _WILDCARDS or match.group("patch") in _WILDCARDS):
        op = "="

    floor = Version(major, minor or 0, patch or 0, prerelease=pre)

    if op == "=":
        if minor is None:
            return [_Bound(">=", floor), _Bound("<", Version(major + 1, 0, 0))], False
        if patch is None:
            return [_Bound(">=", floor), _Bound("<", Version(major, minor + 1, 0))], False
        return [_Bound("==", floor)], pre is not None

    if op == ">":
        if minor is None:
            return [_Bound(">=", Version(major + 1, 0, 0))], False
        if patch is None:
            return [_Bound(">=", Version(major, minor + 1, 0))], False
        return [_Bound(">", floor)], pre is not None

    if op == ">=":
        return [_Bound(">=", floor)], pre is not None

    if op == "<":
        return [_Bound("<", floor)], pre is not None

    if op == "<=":
        if minor is None:
            return [_Bound("<", Version(major + 1, 0, 0))], False
        if patch is None:
            return [_Bound("<", Version(major, minor + 1, 0))], False
        return [_Bound("<=", floor)], pre is not None

    if op == "~":
        if minor is None:
            upper = Version(major + 1, 0, 0)
        else:
            upper = Version(major, minor + 1, 0)
        return [_Bound(">=", floor), _Bound("<", upper)], pre is not None

    # caret
    if major > 0 or minor is None:
        upper = Version(major + 1, 0, 0)
    elif minor > 0 or patch is None:
        upper = Version(0, minor + 1, 0)
    else:
        upper = Version(0, 0, patch + 1)
    return [_Bound(">=", floor), _Bound("<", upper)], pre is not None


@dataclass(frozen=True)
class VersionReq:
    """A parsed Cargo version requirement.

    An empty or missing requirement matches every release version.
    """

    text: str
    bounds: tuple[_Bound, ...]
    allows_prerelease: bool

    @classmethod
    def parse(cls, text: str | None) -> "VersionReq":
        if text is None or not text.strip():
            return cls(text="*", bounds=(), allows_prerelease=False)

        bounds: list[_Bound] = []
        allows_prerelease = False
        for part in text.split(","):
            part_bounds, names_prerelease = _comparator_bounds(part)
            bounds.extend(part_bounds)
            allows_prerelease = allows_prerelease or names_prerelease
        return cls(text=text.strip(), bounds=tuple(bounds), allows_prerelease=allows_prerelease)

    def matches(self, version: Version) -> bool:
        if version.prerelease is not None and not self.allows_prerelease:
            return False
        return all(bound.matches(version) for bound in self.bounds)

    def __str__(self) -> str:
        return self.text


def parse_version(text: str) -> Version | None:
    """Parse a full semantic version, returning None when it is not one."""
    try:
        return Version.parse(text.strip())
    except ValueError:
        return None


def version_floor(requirement: str) -> Version | None:
    """Lowest version a manifest requirement string admits.

    Manifest entries store requirements, not versions: `"4"` means `^4.0.0`
    and `"=4.1.2"` pins exactly. The floor is the version the entry was
    written against, which is what conflict checks compare.
    """
    first = requirement.split(",")[0].strip().lstrip("^~=>< ")
    if not first or first[0] in _WILDCARDS:
        return None
    try:
        return Version.parse(first.replace("*", "0").replace("x", "0"), optional_minor_and_patch=True)
    except ValueError:
        return None


def highest_matching(candidates: Iterable[str], requirement: VersionReq) -> Version | None:
    """Pick the highest candidate version satisfying the requirement.

    Candidates that are not valid semantic versions are ignored.
    """
    best: Version | None = None
    for candidate in candidates:
        version = parse_version(candidate)
        if version is None or not requirement.matches(version):
            continue
        if best is None or version > best:
            best = version
    return best
