"""Global configuration data structures and loading.

Provides immutable global config data loaded from ~/.palletkit/config.toml:

    network_timeout = 30
    max_attempts = 4

    [registries.my-registry]
    api = "https://registry.example.com"
    token = "secret"
"""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomlkit

from palletkit.core.errors import ConfigError

DEFAULT_NETWORK_TIMEOUT = 30.0
DEFAULT_MAX_ATTEMPTS = 4


@dataclass(frozen=True)
class RegistryConfig:
    """Endpoint and credentials for one custom registry."""

    name: str
    api: str
    token: str | None = None


@dataclass(frozen=True)
class GlobalConfig:
    """Immutable global configuration data.

    Loaded once at CLI entry point and stored in PalletKitContext.
    All fields are read-only after construction.
    """

    network_timeout: float = DEFAULT_NETWORK_TIMEOUT
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    registries: dict[str, RegistryConfig] = field(default_factory=dict)


def global_config_path() -> Path:
    """Get the path to the global config file."""
    return Path.home() / ".palletkit" / "config.toml"


def load_global_config(path: Path | None = None) -> GlobalConfig:
    """Load global config, returning defaults when the file does not exist.

    Args:
        path: Config file path (defaults to ~/.palletkit/config.toml)

    Raises:
        ConfigError: If the file is malformed or has invalid values
    """
    config_path = path if path is not None else global_config_path()

    if not config_path.exists():
        return GlobalConfig()

    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    timeout = data.get("network_timeout", DEFAULT_NETWORK_TIMEOUT)
    if not isinstance(timeout, int | float) or timeout <= 0:
        raise ConfigError(f"'network_timeout' must be a positive number in {config_path}")

    attempts = data.get("max_attempts", DEFAULT_MAX_ATTEMPTS)
    if not isinstance(attempts, int) or attempts < 1:
        raise ConfigError(f"'max_attempts' must be a positive integer in {config_path}")

    registries: dict[str, RegistryConfig] = {}
    for name, entry in data.get("registries", {}).items():
        api = entry.get("api") if isinstance(entry, dict) else None
        if not api:
            raise ConfigError(f"Missing 'api' for registry '{name}' in {config_path}")
        token = entry.get("token")
        registries[name] = RegistryConfig(
            name=name, api=str(api), token=str(token) if token is not None else None
        )

    return GlobalConfig(
        network_timeout=float(timeout),
        max_attempts=attempts,
        registries=registries,
    )


def save_registry(registry: RegistryConfig, path: Path | None = None) -> None:
    """Add or replace one registry in the global config, preserving formatting.

    Uses tomlkit so comments and unrelated settings in the file survive.
    """
    config_path = path if path is not None else global_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    if config_path.exists():
        doc = tomlkit.parse(config_path.read_text(encoding="utf-8"))
    else:
        doc = tomlkit.document()

    if "registries" not in doc:
        registries = tomlkit.table(is_super_table=True)
        doc["registries"] = registries
    registries = doc["registries"]

    entry = tomlkit.table()
    entry["api"] = registry.api
    if registry.token is not None:
        entry["token"] = registry.token
    registries[registry.name] = entry  # type: ignore[index]

    config_path.write_text(tomlkit.dumps(doc), encoding="utf-8")


def remove_registry(name: str, path: Path | None = None) -> bool:
    """Remove a registry from the global config.

    Returns:
        True if the registry existed and was removed
    """
    config_path = path if path is not None else global_config_path()
    if not config_path.exists():
        return False

    doc = tomlkit.parse(config_path.read_text(encoding="utf-8"))
    registries = doc.get("registries")
    if registries is None or name not in registries:
        return False

    del registries[name]
    config_path.write_text(tomlkit.dumps(doc), encoding="utf-8")
    return True
