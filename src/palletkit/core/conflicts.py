"""Compare a resolved dependency with what the manifest already declares."""

from dataclasses import dataclass

from palletkit.core.descriptors import ResolvedDependency, SourceKind
from palletkit.core.manifest import ManifestEntry, ManifestModel
from palletkit.core.versions import parse_version, version_floor


@dataclass(frozen=True)
class Clean:
    """No existing entry, or the existing one already satisfies the request."""


@dataclass(frozen=True)
class Upgrade:
    old: str
    new: str


@dataclass(frozen=True)
class Downgrade:
    old: str
    new: str


@dataclass(frozen=True)
class Incompatible:
    """The existing entry comes from a different source kind or registry."""

    old_kind: SourceKind
    new_kind: SourceKind
    old_registry: str | None = None
    new_registry: str | None = None


ConflictOutcome = Clean | Upgrade | Downgrade | Incompatible


def check(current: ManifestModel, proposed: ResolvedDependency) -> ConflictOutcome:
    """Point check of one proposed dependency against the manifest.

    No transitive resolution is attempted.
    """
    existing = current.get(proposed.name)
    if existing is None:
        return Clean()

    if existing.kind is not proposed.kind:
        return Incompatible(old_kind=existing.kind, new_kind=proposed.kind)

    if proposed.kind is SourceKind.CUSTOM_REGISTRY and existing.registry != proposed.descriptor.registry:
        return Incompatible(
            old_kind=existing.kind,
            new_kind=proposed.kind,
            old_registry=existing.registry,
            new_registry=proposed.descriptor.registry,
        )

    if proposed.kind in (SourceKind.REGISTRY, SourceKind.CUSTOM_REGISTRY):
        return _check_version(existing, proposed)

    if proposed.kind is SourceKind.GIT:
        if existing.rev == proposed.version:
            return Clean()
        return Upgrade(old=existing.rev or "", new=proposed.version)

    old_path = current.resolve_path(existing)
    if old_path == proposed.path:
        return Clean()
    return Upgrade(old=str(old_path), new=str(proposed.path))


def _check_version(existing: ManifestEntry, proposed: ResolvedDependency) -> ConflictOutcome:
    old = existing.version or ""
    floor = version_floor(old)
    if floor is not None and proposed.descriptor.requirement.matches(floor):
        return Clean()

    new = parse_version(proposed.version)
    if floor is None or new is None or new >= floor:
        return Upgrade(old=old, new=proposed.version)
    return Downgrade(old=old, new=proposed.version)
