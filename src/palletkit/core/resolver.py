"""Turn pallet source descriptors into resolved dependencies.

SourceResolver performs only read-only queries: registry lookups over HTTP,
`git ls-remote`, and reading a path dependency's Cargo.toml. Transient
network failures are retried with bounded exponential backoff through the
Time integration; every other failure surfaces immediately.
"""

import logging
import re
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TypeVar

from palletkit.core.descriptors import (
    AvailabilityProof,
    PalletSourceDescriptor,
    ResolvedDependency,
    SourceKind,
    _resolved,
)
from palletkit.core.errors import NoSatisfyingVersion, NotFound, SourceResolutionError
from palletkit.core.git.abc import GitRemote, RemoteRef
from palletkit.core.naming import module_name
from palletkit.core.registry.abc import Registry
from palletkit.core.time.abc import Time
from palletkit.core.versions import highest_matching, parse_version

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 4
BASE_RETRY_DELAY = 0.5

_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$")
_ABBREV_SHA_RE = re.compile(r"^[0-9a-f]{4,39}$")


def read_package(path: Path) -> tuple[str, str]:
    """Read (name, version) from the `[package]` table of `path/Cargo.toml`.

    A version inherited from a workspace reads as `0.0.0`.

    Raises:
        NotFound: If the directory, its Cargo.toml, or the [package] table is missing
    """
    if not path.is_dir():
        raise NotFound(f"Pallet path does not exist: {path}")
    cargo_toml = path / "Cargo.toml"
    if not cargo_toml.is_file():
        raise NotFound(f"No Cargo.toml in {path}")
    try:
        data = tomllib.loads(cargo_toml.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise NotFound(f"Unreadable Cargo.toml in {path}: {e}") from e

    package = data.get("package")
    if not isinstance(package, dict) or "name" not in package:
        raise NotFound(f"{cargo_toml} has no [package] table; it is not a buildable crate")
    version = package.get("version")
    return str(package["name"]), version if isinstance(version, str) else "0.0.0"


class SourceResolver:
    """Resolve descriptors against registries, git remotes and local paths."""

    def __init__(
        self,
        *,
        registry: Registry,
        custom_registries: Mapping[str, Registry],
        git: GitRemote,
        time: Time,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._registry = registry
        self._custom_registries = custom_registries
        self._git = git
        self._time = time
        self._max_attempts = max_attempts

    def resolve(self, descriptor: PalletSourceDescriptor) -> ResolvedDependency:
        """Confirm a pallet source exists and pin it.

        Raises:
            NotFound: Crate, registry, ref or path does not exist
            NoSatisfyingVersion: Nothing matches the version constraint
            NetworkFailure: Still failing after all retry attempts
            AuthFailure: Credentials rejected
        """
        logger.debug("Resolving %s source %s", descriptor.kind.value, descriptor.identifier)
        if descriptor.kind is SourceKind.REGISTRY:
            return self._resolve_registry(descriptor, self._registry)
        if descriptor.kind is SourceKind.CUSTOM_REGISTRY:
            registry = self._custom_registries.get(descriptor.registry or "")
            if registry is None:
                raise NotFound(
                    f"Registry '{descriptor.registry}' is not configured. "
                    f"Add it with: palletkit registry add {descriptor.registry} <api-url>"
                )
            return self._resolve_registry(descriptor, registry)
        if descriptor.kind is SourceKind.GIT:
            return self._resolve_git(descriptor)
        return self._resolve_path(descriptor)

    def _with_retries(self, operation: Callable[[], T], what: str) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except SourceResolutionError as e:
                if not e.retryable or attempt >= self._max_attempts:
                    raise
                delay = BASE_RETRY_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    what,
                    attempt,
                    self._max_attempts,
                    e,
                    delay,
                )
                self._time.sleep(delay)
                attempt += 1

    def _resolve_registry(self, descriptor: PalletSourceDescriptor, registry: Registry) -> ResolvedDependency:
        name = descriptor.name
        info = self._with_retries(lambda: registry.fetch_crate(name), f"Fetching crate '{name}'")

        available = info.available_versions()
        best = highest_matching(available, descriptor.requirement)
        if best is None:
            if not available:
                raise NoSatisfyingVersion(f"Crate '{name}' has no published versions in {registry.location}")
            raise NoSatisfyingVersion(
                f"No version of '{name}' matches '{descriptor.requirement}' "
                f"(available: {', '.join(available[:10])})"
            )

        return _resolved(
            descriptor,
            str(best),
            AvailabilityProof(
                checked=f"{registry.location}/api/v1/crates/{name}",
                detail=f"{len(available)} published versions",
            ),
        )

    def _resolve_git(self, descriptor: PalletSourceDescriptor) -> ResolvedDependency:
        url = descriptor.identifier
        ref = descriptor.git_ref

        if ref is not None and _FULL_SHA_RE.match(ref):
            self._with_retries(lambda: self._git.ls_remote(url, None), f"Querying {url}")
            return _resolved(descriptor, ref, AvailabilityProof(checked=url, detail="remote reachable; commit given"))

        refs = self._with_retries(lambda: self._git.ls_remote(url, ref), f"Querying {url}")
        chosen = _pick_ref(refs, ref)

        if chosen is None and ref is not None and _ABBREV_SHA_RE.match(ref):
            head = self._with_retries(lambda: self._git.ls_remote(url, None), f"Querying {url}")
            chosen = next((r for r in head if r.sha.startswith(ref)), None)

        if chosen is None:
            target = ref if ref is not None else "HEAD"
            raise NotFound(f"Ref '{target}' not found in {url}")

        return _resolved(descriptor, chosen.sha, AvailabilityProof(checked=url, detail=f"{chosen.sha} {chosen.name}"))

    def _resolve_path(self, descriptor: PalletSourceDescriptor) -> ResolvedDependency:
        path = Path(descriptor.identifier).expanduser().resolve()
        package_name, version = read_package(path)

        if module_name(package_name) != module_name(descriptor.name):
            raise NotFound(f"Crate at {path} is '{package_name}', not '{descriptor.name}'")

        if descriptor.version_constraint is not None:
            parsed = parse_version(version)
            if parsed is None or not descriptor.requirement.matches(parsed):
                raise NoSatisfyingVersion(
                    f"'{package_name}' at {path} is version {version}, "
                    f"which does not match '{descriptor.requirement}'"
                )

        return _resolved(
            descriptor,
            version,
            AvailabilityProof(checked=str(path / "Cargo.toml"), detail=f"package {package_name} {version}"),
            path=path,
        )


def _pick_ref(refs: list[RemoteRef], ref: str | None) -> RemoteRef | None:
    """Choose the commit a ref names: branch, then peeled tag, then tag."""
    by_name = {r.name: r for r in refs}
    if ref is None:
        return by_name.get("HEAD")
    for candidate in (
        f"refs/heads/{ref}",
        f"refs/tags/{ref}^{{}}",
        f"refs/tags/{ref}",
        ref,
    ):
        if candidate in by_name:
            return by_name[candidate]
    return None
