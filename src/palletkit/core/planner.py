"""Turn a conflict-checked resolution into an ordered, all-or-nothing plan.

Add plans edit the manifest before the composition, so the composition never
references a dependency that does not exist yet. Removal plans run in the
reverse order for the same reason.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from palletkit.core.composition import CompositionEntry
from palletkit.core.conflicts import Clean, ConflictOutcome, Downgrade, Incompatible
from palletkit.core.descriptors import ResolvedDependency, SourceKind
from palletkit.core.errors import Blocked
from palletkit.core.manifest import ManifestEntry

logger = logging.getLogger(__name__)


class PlanTarget(Enum):
    MANIFEST = "manifest"
    COMPOSITION = "composition"


class PlanOperation(Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class PlanStep:
    """One edit against one project file.

    The payload is the entry to upsert for ADD/UPDATE, or the pallet name
    for REMOVE.
    """

    target: PlanTarget
    operation: PlanOperation
    payload: ManifestEntry | CompositionEntry | str


@dataclass(frozen=True)
class IntegrationPlan:
    """Ordered steps for one pallet. `version` is what the manifest will hold."""

    pallet: str
    steps: tuple[PlanStep, ...]
    version: str | None = None

    @property
    def targets(self) -> list[PlanTarget]:
        """Files touched, in step order, without repeats."""
        seen: list[PlanTarget] = []
        for step in self.steps:
            if step.target not in seen:
                seen.append(step.target)
        return seen


def plan(
    resolved: ResolvedDependency,
    outcome: ConflictOutcome,
    composition_needed: bool,
    *,
    override: bool = False,
    existing: ManifestEntry | None = None,
) -> IntegrationPlan:
    """Plan the integration of one resolved pallet.

    Args:
        resolved: The pallet to integrate
        outcome: Result of the conflict check against the current manifest
        composition_needed: Whether the pallet must be added to the runtime composition
        override: Accept an Incompatible outcome by replacing the existing entry
        existing: The current manifest entry, when there is one

    Raises:
        Blocked: If the outcome is Incompatible and override is not set
    """
    if isinstance(outcome, Incompatible):
        old_source = _source_label(outcome.old_kind, outcome.old_registry)
        new_source = _source_label(outcome.new_kind, outcome.new_registry)
        if not override:
            raise Blocked(
                f"'{resolved.name}' is already a {old_source} dependency; "
                f"refusing to replace it with a {new_source} source. "
                "Pass --override to replace it."
            )
        logger.warning("Replacing %s dependency %s with a %s source", old_source, resolved.name, new_source)
    elif isinstance(outcome, Downgrade):
        logger.warning("Downgrading %s from %s to %s", resolved.name, outcome.old, outcome.new)

    keep_existing = isinstance(outcome, Clean) and existing is not None
    entry = _manifest_entry(resolved, existing, keep_version=keep_existing)
    operation = PlanOperation.ADD if existing is None else PlanOperation.UPDATE

    steps = [PlanStep(PlanTarget.MANIFEST, operation, entry)]
    if composition_needed:
        steps.append(PlanStep(PlanTarget.COMPOSITION, PlanOperation.ADD, CompositionEntry(name=resolved.name)))
    version = entry.rev if entry.kind is SourceKind.GIT else entry.version
    return IntegrationPlan(pallet=resolved.name, steps=tuple(steps), version=version)


def plan_removal(name: str, composition_needed: bool) -> IntegrationPlan:
    """Plan removing a pallet from the composition and the manifest."""
    steps: list[PlanStep] = []
    if composition_needed:
        steps.append(PlanStep(PlanTarget.COMPOSITION, PlanOperation.REMOVE, name))
    steps.append(PlanStep(PlanTarget.MANIFEST, PlanOperation.REMOVE, name))
    return IntegrationPlan(pallet=name, steps=tuple(steps))


def _manifest_entry(
    resolved: ResolvedDependency,
    existing: ManifestEntry | None,
    *,
    keep_version: bool,
) -> ManifestEntry:
    descriptor = resolved.descriptor
    features = tuple(sorted(descriptor.features))
    # new entries follow the no_std convention; existing ones keep their setting
    default_features = False if existing is None else None

    if keep_version and existing is not None:
        return ManifestEntry(
            name=resolved.name,
            kind=existing.kind,
            version=existing.version,
            path=existing.path,
            git=existing.git,
            rev=existing.rev,
            registry=existing.registry,
            features=features,
            default_features=default_features,
        )

    kind = resolved.kind
    if kind is SourceKind.GIT:
        return ManifestEntry(
            name=resolved.name,
            kind=kind,
            git=descriptor.identifier,
            rev=resolved.version,
            features=features,
            default_features=default_features,
        )
    if kind is SourceKind.PATH:
        return ManifestEntry(
            name=resolved.name,
            kind=kind,
            path=str(resolved.path),
            features=features,
            default_features=default_features,
        )
    return ManifestEntry(
        name=resolved.name,
        kind=kind,
        version=resolved.version,
        registry=descriptor.registry,
        features=features,
        default_features=default_features,
    )


def _source_label(kind: SourceKind, registry: str | None) -> str:
    if registry is None:
        return kind.value
    return f"{kind.value} '{registry}'"
