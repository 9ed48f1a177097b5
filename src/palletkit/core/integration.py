"""Top-level integrate/disintegrate operations.

Resolution is I/O bound and independent per pallet, so descriptors resolve
concurrently in a thread pool. Everything after that is serialized under the
project lock: every pallet is conflict-checked and planned before the first
write, then each plan is committed as its own atomic transaction, in request
order.
"""

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from palletkit.core.cancellation import CancellationToken
from palletkit.core.composition import CompositionModel
from palletkit.core.conflicts import check
from palletkit.core.descriptors import PalletSourceDescriptor, ResolvedDependency
from palletkit.core.errors import IntegrationCancelled, PlanningError
from palletkit.core.manifest import ManifestModel
from palletkit.core.planner import IntegrationPlan, plan, plan_removal
from palletkit.core.project import ProjectContext, project_lock
from palletkit.core.resolver import SourceResolver
from palletkit.core.time.abc import Time
from palletkit.core.transaction import (
    CommitReport,
    FileWriter,
    TransactionExecutor,
    apply_plan,
    atomic_write_bytes,
)

logger = logging.getLogger(__name__)

DEFAULT_RESOLVE_WORKERS = 4
DEFAULT_LOCK_TIMEOUT = 30.0


def resolve_all(
    resolver: SourceResolver,
    descriptors: Sequence[PalletSourceDescriptor],
    *,
    max_workers: int = DEFAULT_RESOLVE_WORKERS,
) -> list[ResolvedDependency]:
    """Resolve descriptors concurrently, returning results in request order.

    The first failure in request order is raised once all lookups finish.
    """
    if not descriptors:
        return []
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="palletkit-resolve") as pool:
        futures = [pool.submit(resolver.resolve, descriptor) for descriptor in descriptors]
        return [future.result() for future in futures]


def _check_cancelled(cancellation: CancellationToken | None, message: str) -> None:
    if cancellation is not None and cancellation.cancelled:
        raise IntegrationCancelled(message)


def integrate(
    project: ProjectContext,
    descriptors: Sequence[PalletSourceDescriptor],
    *,
    resolver: SourceResolver,
    time: Time,
    override: bool = False,
    composition_needed: bool = True,
    cancellation: CancellationToken | None = None,
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT,
    max_workers: int = DEFAULT_RESOLVE_WORKERS,
    write_file: FileWriter = atomic_write_bytes,
) -> list[CommitReport]:
    """Resolve and integrate pallets into a project.

    Args:
        project: Target project
        descriptors: Pallets to integrate, applied in this order
        resolver: Source resolver
        time: Time integration (lock polling)
        override: Replace entries whose existing source kind differs
        composition_needed: Also add each pallet to the runtime composition
        cancellation: Token checked before locking and between writes
        lock_timeout_seconds: How long to wait for the project lock
        max_workers: Concurrent resolutions
        write_file: File writer used by the transaction executor

    Returns:
        One CommitReport per descriptor, in request order

    Raises:
        SourceResolutionError: A descriptor could not be resolved (nothing written)
        IntegrationCancelled: Cancelled before the next plan started
        ProjectLockedError: Another integration holds the project
        PlanningError: A conflict blocks the integration
        TransactionError: A commit failed
    """
    _check_cancelled(cancellation, "Integration cancelled before resolution")
    resolved = resolve_all(resolver, descriptors, max_workers=max_workers)
    for dependency in resolved:
        logger.info("Resolved %s to %s (%s)", dependency.name, dependency.version, dependency.proof.checked)

    _check_cancelled(cancellation, "Integration cancelled before any change was made")

    executor = TransactionExecutor(project, cancellation=cancellation, write_file=write_file)
    reports: list[CommitReport] = []
    with project_lock(project, time, timeout_seconds=lock_timeout_seconds):
        plans = _plan_all(project, resolved, override=override, composition_needed=composition_needed)
        for integration_plan in plans:
            _check_cancelled(
                cancellation,
                f"Integration cancelled after committing {len(reports)} of {len(plans)} pallet(s)",
            )
            reports.append(executor.execute(integration_plan))
    return reports


def _plan_all(
    project: ProjectContext,
    resolved: Sequence[ResolvedDependency],
    *,
    override: bool,
    composition_needed: bool,
) -> list[IntegrationPlan]:
    """Check and plan every pallet before anything is written.

    Each plan is applied to in-memory models so later pallets in the batch
    are checked against the entries earlier ones will leave behind.
    """
    manifest = ManifestModel.load(project.manifest_path)
    composition = (
        CompositionModel.load(project.composition_path, project.base_index) if composition_needed else None
    )
    plans: list[IntegrationPlan] = []
    for dependency in resolved:
        outcome = check(manifest, dependency)
        logger.debug("Conflict check for %s: %s", dependency.name, outcome)
        integration_plan = plan(
            dependency,
            outcome,
            composition_needed,
            override=override,
            existing=manifest.get(dependency.name),
        )
        try:
            apply_plan(integration_plan, manifest, composition)
        except ValueError as e:
            raise PlanningError(f"Cannot integrate {dependency.name}: {e}") from e
        plans.append(integration_plan)
    return plans


def disintegrate(
    project: ProjectContext,
    names: Sequence[str],
    *,
    time: Time,
    composition_needed: bool = True,
    cancellation: CancellationToken | None = None,
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT,
    write_file: FileWriter = atomic_write_bytes,
) -> list[CommitReport]:
    """Remove pallets from the composition and the manifest.

    Removing a pallet that is not present is a no-op reported as unmodified.
    """
    _check_cancelled(cancellation, "Removal cancelled before any change was made")

    executor = TransactionExecutor(project, cancellation=cancellation, write_file=write_file)
    reports: list[CommitReport] = []
    with project_lock(project, time, timeout_seconds=lock_timeout_seconds):
        for name in names:
            _check_cancelled(
                cancellation,
                f"Removal cancelled after committing {len(reports)} of {len(names)} pallet(s)",
            )
            reports.append(executor.execute(plan_removal(name, composition_needed)))
    return reports
