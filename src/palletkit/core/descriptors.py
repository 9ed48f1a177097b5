"""Pallet source descriptors and resolved dependencies.

A PalletSourceDescriptor says where the caller wants a pallet to come from.
A ResolvedDependency is that descriptor after SourceResolver has confirmed the
source exists and pinned it to a concrete version or commit.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from palletkit.core.naming import validate_crate_name
from palletkit.core.versions import VersionReq


class SourceKind(Enum):
    """Where a pallet comes from."""

    REGISTRY = "registry"
    GIT = "git"
    PATH = "path"
    CUSTOM_REGISTRY = "custom-registry"


@dataclass(frozen=True)
class PalletSourceDescriptor:
    """Immutable request to integrate one pallet.

    Attributes:
        kind: Source kind
        identifier: Crate name (Registry), repository URL (Git), filesystem
            path (Path) or `registry/crate` (CustomRegistry)
        version_constraint: Optional Cargo version requirement
        features: Crate features to enable
        git_ref: Branch, tag or commit (Git only; None means remote HEAD)
        crate_name: Crate name when the identifier is not one
        registry: Configured registry name (CustomRegistry only)
    """

    kind: SourceKind
    identifier: str
    version_constraint: str | None = None
    features: frozenset[str] = field(default_factory=frozenset)
    git_ref: str | None = None
    crate_name: str | None = None
    registry: str | None = None

    def __post_init__(self) -> None:
        if not self.identifier.strip():
            raise ValueError("Pallet source identifier must not be empty")
        if self.git_ref is not None and self.kind is not SourceKind.GIT:
            raise ValueError("git_ref is only valid for git sources")
        if self.registry is not None and self.kind is not SourceKind.CUSTOM_REGISTRY:
            raise ValueError("registry is only valid for custom-registry sources")
        if not isinstance(self.features, frozenset):
            object.__setattr__(self, "features", frozenset(self.features))
        # Parse eagerly so a bad constraint fails at construction time
        VersionReq.parse(self.version_constraint)

        if self.kind is SourceKind.CUSTOM_REGISTRY and self.registry is None:
            registry, sep, crate = self.identifier.partition("/")
            if not sep or not registry or not crate:
                raise ValueError(
                    "custom-registry identifier must be 'registry/crate' "
                    f"or registry must be given: {self.identifier!r}"
                )
            object.__setattr__(self, "registry", registry)
            if self.crate_name is None:
                object.__setattr__(self, "crate_name", crate)

        if self.kind in (SourceKind.GIT, SourceKind.PATH) and self.crate_name is None:
            raise ValueError(f"crate_name is required for {self.kind.value} sources")

        validate_crate_name(self.name)

    @property
    def name(self) -> str:
        """Crate name this descriptor integrates."""
        if self.crate_name is not None:
            return self.crate_name
        return self.identifier

    @property
    def requirement(self) -> VersionReq:
        return VersionReq.parse(self.version_constraint)


@dataclass(frozen=True)
class AvailabilityProof:
    """Evidence that a source exists, recorded by SourceResolver.

    Attributes:
        checked: What was queried (registry URL, git remote, manifest path)
        detail: What confirmed it (version list size, ref line, package name)
    """

    checked: str
    detail: str


_RESOLVER_TOKEN = object()


@dataclass(frozen=True)
class ResolvedDependency:
    """A descriptor pinned to a concrete version or commit.

    Only SourceResolver constructs these (see `_resolved`); constructing one
    by hand raises TypeError.

    Attributes:
        descriptor: The original request
        version: Resolved semantic version, or commit hash for git sources
        proof: Availability proof
        path: Absolute source path (Path kind only)
    """

    descriptor: PalletSourceDescriptor
    version: str
    proof: AvailabilityProof
    path: Path | None = None
    _token: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._token is not _RESOLVER_TOKEN:
            raise TypeError("ResolvedDependency is produced by SourceResolver only")

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def kind(self) -> SourceKind:
        return self.descriptor.kind


def _resolved(
    descriptor: PalletSourceDescriptor,
    version: str,
    proof: AvailabilityProof,
    path: Path | None = None,
) -> ResolvedDependency:
    return ResolvedDependency(
        descriptor=descriptor,
        version=version,
        proof=proof,
        path=path,
        _token=_RESOLVER_TOKEN,
    )
