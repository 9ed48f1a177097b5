"""Apply an integration plan to disk with all-or-nothing semantics.

The executor snapshots the bytes of every file the plan touches, applies the
steps to in-memory models, then writes each changed file through a temp file
and `os.replace`. If any write fails, or cancellation is requested between
writes, every written file is restored from its snapshot in reverse write
order. If restoring fails too, snapshot copies are left next to the originals
for manual recovery.
"""

import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from palletkit.core.cancellation import CancellationToken
from palletkit.core.composition import CompositionEntry, CompositionModel
from palletkit.core.errors import (
    SNAPSHOT_SUFFIX,
    Cancelled,
    IOFailure,
    RollbackFailed,
    RolledBack,
)
from palletkit.core.manifest import ManifestEntry, ManifestModel
from palletkit.core.planner import IntegrationPlan, PlanOperation, PlanStep, PlanTarget
from palletkit.core.project import ProjectContext

logger = logging.getLogger(__name__)

FileWriter = Callable[[Path, bytes], None]


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Replace `path` with `content` via a temp file in the same directory."""
    with tempfile.NamedTemporaryFile(
        mode="wb",
        delete=False,
        dir=str(path.parent),
        prefix=path.name + ".",
        suffix=".tmp",
    ) as handle:
        handle.write(content)
        temp_path = Path(handle.name)
    try:
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


@dataclass(frozen=True)
class Snapshot:
    """Pre-edit bytes of one project file."""

    path: Path
    content: bytes


@dataclass(frozen=True)
class FileChange:
    path: Path
    modified: bool


@dataclass(frozen=True)
class CommitReport:
    """Outcome of a committed plan.

    Attributes:
        pallet: Pallet the plan was for
        version: Version or commit the manifest now holds (None for removals)
        changes: One FileChange per file the plan touched, in write order
        assigned_index: Composition index newly given to the pallet, if any
        config_stub_line: 1-based line of the pallet's Config impl stub, when
            one was inserted
    """

    pallet: str
    changes: tuple[FileChange, ...]
    version: str | None = None
    assigned_index: int | None = None
    config_stub_line: int | None = None

    @property
    def modified(self) -> bool:
        return any(change.modified for change in self.changes)


class TransactionExecutor:
    """Commit IntegrationPlans against one project."""

    def __init__(
        self,
        project: ProjectContext,
        *,
        cancellation: CancellationToken | None = None,
        write_file: FileWriter = atomic_write_bytes,
    ) -> None:
        self._project = project
        self._cancellation = cancellation
        self._write_file = write_file

    def _path_for(self, target: PlanTarget) -> Path:
        if target is PlanTarget.MANIFEST:
            return self._project.manifest_path
        return self._project.composition_path

    def execute(self, plan: IntegrationPlan) -> CommitReport:
        """Apply a plan atomically.

        Re-executing a plan that is already applied changes nothing.

        Raises:
            IOFailure: A target file could not be read (nothing written)
            ManifestParseError: A target file could not be parsed (nothing written)
            RolledBack: A step or write failed; all files were restored
            Cancelled: Cancellation was requested mid-write; all files were restored
            RollbackFailed: Restoring failed; snapshot copies were left behind
        """
        snapshots = {target: self._snapshot(self._path_for(target)) for target in plan.targets}

        manifest: ManifestModel | None = None
        composition: CompositionModel | None = None
        if PlanTarget.MANIFEST in snapshots:
            snapshot = snapshots[PlanTarget.MANIFEST]
            manifest = ManifestModel.from_bytes(snapshot.content, snapshot.path)
        if PlanTarget.COMPOSITION in snapshots:
            snapshot = snapshots[PlanTarget.COMPOSITION]
            composition = CompositionModel.from_bytes(snapshot.content, snapshot.path, self._project.base_index)

        try:
            assigned_index, stub_line = apply_plan(plan, manifest, composition)
        except ValueError as e:
            raise RolledBack(e) from e

        rendered: dict[PlanTarget, bytes] = {}
        if manifest is not None:
            rendered[PlanTarget.MANIFEST] = manifest.serialize()
        if composition is not None:
            rendered[PlanTarget.COMPOSITION] = composition.serialize()

        changes = self._write_all(plan.targets, snapshots, rendered)
        return CommitReport(
            pallet=plan.pallet,
            changes=tuple(changes),
            version=plan.version,
            assigned_index=assigned_index,
            config_stub_line=stub_line,
        )

    def _snapshot(self, path: Path) -> Snapshot:
        try:
            return Snapshot(path=path, content=path.read_bytes())
        except OSError as e:
            raise IOFailure(f"Cannot read {path}: {e}") from e

    def _write_all(
        self,
        targets: list[PlanTarget],
        snapshots: dict[PlanTarget, Snapshot],
        rendered: dict[PlanTarget, bytes],
    ) -> list[FileChange]:
        changes: list[FileChange] = []
        written: list[Snapshot] = []

        for target in targets:
            snapshot = snapshots[target]
            if self._cancellation is not None and self._cancellation.cancelled:
                logger.info("Cancellation requested; rolling back %d written file(s)", len(written))
                self._rollback(written, "cancelled by caller")
                raise Cancelled()

            content = rendered[target]
            if content == snapshot.content:
                logger.debug("%s unchanged; not writing", snapshot.path)
                changes.append(FileChange(path=snapshot.path, modified=False))
                continue

            try:
                self._write_file(snapshot.path, content)
            except OSError as e:
                logger.error("Writing %s failed: %s", snapshot.path, e)
                # a failed os.replace leaves the original in place, but restore it anyway
                self._rollback([*written, snapshot], e)
                raise RolledBack(e) from e

            logger.debug("Wrote %s", snapshot.path)
            written.append(snapshot)
            changes.append(FileChange(path=snapshot.path, modified=True))

        return changes

    def _rollback(self, written: list[Snapshot], cause: BaseException | str) -> None:
        failed: list[Snapshot] = []
        for snapshot in reversed(written):
            try:
                self._write_file(snapshot.path, snapshot.content)
                logger.debug("Restored %s", snapshot.path)
            except OSError as e:
                logger.error("Restoring %s failed: %s", snapshot.path, e)
                failed.append(snapshot)

        if not failed:
            return

        preserved: list[Path] = []
        for snapshot in written:
            copy_path = snapshot.path.with_name(snapshot.path.name + SNAPSHOT_SUFFIX)
            try:
                copy_path.write_bytes(snapshot.content)
                preserved.append(copy_path)
            except OSError as e:
                logger.error("Could not preserve snapshot of %s at %s: %s", snapshot.path, copy_path, e)
        raise RollbackFailed(cause, preserved)


def _apply_manifest_step(manifest: ManifestModel, step: PlanStep) -> None:
    if step.operation is PlanOperation.REMOVE:
        assert isinstance(step.payload, str)
        manifest.remove(step.payload)
        return
    assert isinstance(step.payload, ManifestEntry)
    manifest.upsert(step.payload)


def _apply_composition_step(composition: CompositionModel, step: PlanStep) -> CompositionEntry | None:
    """Apply one composition step, returning the entry when it was newly added."""
    if step.operation is PlanOperation.REMOVE:
        assert isinstance(step.payload, str)
        composition.remove(step.payload)
        return None
    assert isinstance(step.payload, CompositionEntry)
    if composition.get(step.payload.name) is not None:
        composition.upsert(step.payload)
        return None
    return composition.upsert(step.payload)


def apply_plan(
    plan: IntegrationPlan,
    manifest: ManifestModel | None,
    composition: CompositionModel | None,
) -> tuple[int | None, int | None]:
    """Apply a plan's steps to in-memory models.

    Returns:
        The newly assigned composition index and Config stub line, if any

    Raises:
        ValueError: A step cannot be applied to the current models
    """
    assigned_index: int | None = None
    stub_line: int | None = None
    for step in plan.steps:
        if step.target is PlanTarget.MANIFEST:
            assert manifest is not None
            _apply_manifest_step(manifest, step)
        else:
            assert composition is not None
            assigned = _apply_composition_step(composition, step)
            if assigned is not None:
                assigned_index = assigned.index
                stub_line = composition.config_stub_line(assigned.name)
    return assigned_index, stub_line
