"""Project discovery, configuration and locking.

A project is a directory holding a runtime crate. Its layout comes from an
optional `Substrate.toml` at the project root:

    type = "chain"

    [paths]
    runtime = "runtime"

    [composition]
    base_index = 0

Everything defaults sensibly when the file or a key is missing.
"""

import logging
import os
import tomllib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from palletkit.core.errors import ConfigError, ProjectLockedError
from palletkit.core.time.abc import Time

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = "Substrate.toml"
LOCK_FILE_NAME = ".palletkit.lock"
DEFAULT_RUNTIME_PATH = "runtime"


@dataclass(frozen=True)
class ProjectContext:
    """Explicit handle on one project's mutable files.

    Every component that touches project files takes this as input; there is
    no ambient project state.

    Attributes:
        root: Project root directory
        manifest_path: Runtime dependency manifest (runtime/Cargo.toml)
        composition_path: Runtime composition source (runtime/src/lib.rs)
        base_index: Index assigned to the first pallet of an empty composition
    """

    root: Path
    manifest_path: Path
    composition_path: Path
    base_index: int = 0

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE_NAME


@dataclass(frozen=True)
class NoProjectSentinel:
    """Sentinel value indicating execution outside a runtime project."""

    message: str = "Not inside a Substrate runtime project"


def load_project(root: Path) -> ProjectContext:
    """Build a ProjectContext for `root`, reading Substrate.toml when present.

    Raises:
        ConfigError: If Substrate.toml is malformed
    """
    root = root.resolve()
    runtime_path = DEFAULT_RUNTIME_PATH
    base_index = 0

    config_path = root / PROJECT_CONFIG_NAME
    if config_path.exists():
        try:
            data = tomllib.loads(config_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

        project_type = data.get("type", "chain")
        if project_type != "chain":
            raise ConfigError(
                f"Incorrect project type in {config_path}: {project_type!r}. "
                "Pallets can only be added to \"chain\" projects."
            )
        runtime_path = str(data.get("paths", {}).get("runtime", DEFAULT_RUNTIME_PATH))
        base_index = data.get("composition", {}).get("base_index", 0)
        if not isinstance(base_index, int) or base_index < 0:
            raise ConfigError(f"'composition.base_index' must be a non-negative integer in {config_path}")

    runtime_dir = root / runtime_path
    return ProjectContext(
        root=root,
        manifest_path=runtime_dir / "Cargo.toml",
        composition_path=runtime_dir / "src" / "lib.rs",
        base_index=base_index,
    )


def discover_project_or_sentinel(cwd: Path) -> ProjectContext | NoProjectSentinel:
    """Walk up from `cwd` to find a project root.

    A directory is a project root when it holds Substrate.toml, or when it
    holds `runtime/Cargo.toml` (projects created without the config file).
    """
    if not cwd.exists():
        return NoProjectSentinel(message=f"Start path '{cwd}' does not exist")

    cur = cwd.resolve()
    for parent in [cur, *cur.parents]:
        if (parent / PROJECT_CONFIG_NAME).exists():
            return load_project(parent)
        if (parent / DEFAULT_RUNTIME_PATH / "Cargo.toml").exists():
            return load_project(parent)

    return NoProjectSentinel(message="Not inside a Substrate runtime project (no Substrate.toml found up the tree)")


@contextmanager
def project_lock(
    project: ProjectContext,
    time: Time,
    *,
    timeout_seconds: float = 30.0,
    poll_interval_seconds: float = 0.1,
) -> Iterator[None]:
    """Hold the exclusive write lock on a project's manifest/composition pair.

    The lock is a file created with O_CREAT | O_EXCL, so at most one holder
    exists across processes. It is released on every exit path.

    Raises:
        ProjectLockedError: If the lock is still held after `timeout_seconds`
    """
    lock_path = project.lock_path
    start = time.monotonic()

    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(f"pid={os.getpid()}\ncreated_at={datetime.now(UTC).isoformat()}\n")
            break
        except FileExistsError:
            if (time.monotonic() - start) >= timeout_seconds:
                raise ProjectLockedError(
                    f"Another integration is running on {project.root} "
                    f"(lock file {lock_path}). Remove it if no palletkit process is active."
                ) from None
            time.sleep(poll_interval_seconds)

    logger.debug("Acquired project lock %s", lock_path)
    try:
        yield
    finally:
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
        logger.debug("Released project lock %s", lock_path)
