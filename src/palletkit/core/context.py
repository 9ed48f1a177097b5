"""Application context with dependency injection."""

from dataclasses import dataclass
from pathlib import Path

import click

from palletkit.cli.output import user_output
from palletkit.core.git.abc import GitRemote
from palletkit.core.git.real import RealGitRemote
from palletkit.core.global_config import GlobalConfig, global_config_path, load_global_config
from palletkit.core.project import NoProjectSentinel, ProjectContext, discover_project_or_sentinel
from palletkit.core.registry.abc import Registry
from palletkit.core.registry.http import CRATES_IO_API, HttpRegistry
from palletkit.core.resolver import SourceResolver
from palletkit.core.time.abc import Time
from palletkit.core.time.real import RealTime


@dataclass(frozen=True)
class PalletKitContext:
    """Immutable context holding all dependencies for palletkit operations.

    Created at CLI entry point and threaded through the application.
    Frozen to prevent accidental modification at runtime.
    """

    registry: Registry
    custom_registries: dict[str, Registry]
    git: GitRemote
    time: Time
    cwd: Path  # Current working directory at CLI invocation
    global_config: GlobalConfig
    global_config_path: Path
    project: ProjectContext | NoProjectSentinel

    @property
    def resolver(self) -> SourceResolver:
        return SourceResolver(
            registry=self.registry,
            custom_registries=self.custom_registries,
            git=self.git,
            time=self.time,
            max_attempts=self.global_config.max_attempts,
        )

    @staticmethod
    def for_test(
        registry: Registry | None = None,
        custom_registries: dict[str, Registry] | None = None,
        git: GitRemote | None = None,
        time: Time | None = None,
        cwd: Path | None = None,
        global_config: GlobalConfig | None = None,
        global_config_path: Path | None = None,
        project: ProjectContext | NoProjectSentinel | None = None,
    ) -> "PalletKitContext":
        """Create test context with optional pre-configured integration classes.

        Args:
            registry: Optional Registry. If None, creates empty FakeRegistry.
            custom_registries: Optional custom registries by name. If None, none are configured.
            git: Optional GitRemote. If None, creates empty FakeGitRemote.
            time: Optional Time. If None, creates FakeTime.
            cwd: Optional current working directory. If None, uses the project root
                or a sentinel path.
            global_config: Optional GlobalConfig. If None, uses defaults.
            global_config_path: Optional config file location for `registry` commands.
            project: Optional ProjectContext or NoProjectSentinel. If None, uses
                NoProjectSentinel().

        Returns:
            PalletKitContext configured with provided values and test defaults

        Example:
            >>> registry = FakeRegistry(crates={"balances": ["4.0.0", "4.1.0"]})
            >>> ctx = PalletKitContext.for_test(registry=registry, project=load_project(tmp_path))
        """
        from tests.fakes.git_remote import FakeGitRemote
        from tests.fakes.registry import FakeRegistry
        from tests.fakes.time import FakeTime
        from tests.test_utils import sentinel_path

        if registry is None:
            registry = FakeRegistry()

        if custom_registries is None:
            custom_registries = {}

        if git is None:
            git = FakeGitRemote()

        if time is None:
            time = FakeTime()

        if global_config is None:
            global_config = GlobalConfig()

        if global_config_path is None:
            global_config_path = sentinel_path() / "config.toml"

        if project is None:
            project = NoProjectSentinel()

        if cwd is None:
            cwd = project.root if isinstance(project, ProjectContext) else sentinel_path()

        return PalletKitContext(
            registry=registry,
            custom_registries=custom_registries,
            git=git,
            time=time,
            cwd=cwd,
            global_config=global_config,
            global_config_path=global_config_path,
            project=project,
        )


def safe_cwd() -> tuple[Path | None, str | None]:
    """Get current working directory, detecting if it no longer exists.

    Returns:
        tuple[Path | None, str | None]: (path, error_message)
        - If successful: (Path, None)
        - If directory deleted: (None, error_message)
    """
    try:
        cwd_path = Path.cwd()
        return (cwd_path, None)
    except (FileNotFoundError, OSError):
        return (
            None,
            "Current working directory no longer exists",
        )


def create_context(*, project_root: Path | None = None) -> PalletKitContext:
    """Create production context with real implementations.

    Called at CLI entry point to create the context for the entire
    command execution.

    Args:
        project_root: Explicit project root; discovered from cwd when None
    """
    # 1. Capture cwd (no deps)
    cwd_result, error_msg = safe_cwd()
    if cwd_result is None:
        assert error_msg is not None
        user_output(click.style("Error: ", fg="red") + error_msg)
        user_output("\nThe directory you're running from has been deleted.")
        user_output("Please change to a valid directory and try again.")
        raise SystemExit(1)

    cwd = cwd_result

    # 2. Load global config (defaults when absent)
    config_path = global_config_path()
    global_config = load_global_config(config_path)

    # 3. Create integration classes
    timeout = global_config.network_timeout
    registry: Registry = HttpRegistry(api_url=CRATES_IO_API, timeout=timeout)
    custom_registries: dict[str, Registry] = {
        name: HttpRegistry(api_url=entry.api, timeout=timeout, token=entry.token)
        for name, entry in global_config.registries.items()
    }
    git: GitRemote = RealGitRemote(timeout=timeout)

    # 4. Discover project
    project = discover_project_or_sentinel(project_root if project_root is not None else cwd)

    return PalletKitContext(
        registry=registry,
        custom_registries=custom_registries,
        git=git,
        time=RealTime(),
        cwd=cwd,
        global_config=global_config,
        global_config_path=config_path,
        project=project,
    )
