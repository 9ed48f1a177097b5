"""Tests for ~/.palletkit/config.toml loading and registry edits."""

from pathlib import Path

import pytest

from palletkit.core.errors import ConfigError
from palletkit.core.global_config import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_NETWORK_TIMEOUT,
    GlobalConfig,
    RegistryConfig,
    load_global_config,
    remove_registry,
    save_registry,
)


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_global_config(tmp_path / "config.toml")

    assert config == GlobalConfig()
    assert config.network_timeout == DEFAULT_NETWORK_TIMEOUT
    assert config.max_attempts == DEFAULT_MAX_ATTEMPTS


def test_loads_settings_and_registries(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "network_timeout = 5\n"
        "max_attempts = 2\n\n"
        "[registries.internal]\n"
        'api = "https://registry.example.com"\n'
        'token = "secret"\n',
        encoding="utf-8",
    )

    config = load_global_config(path)

    assert config.network_timeout == 5.0
    assert config.max_attempts == 2
    assert config.registries == {
        "internal": RegistryConfig(name="internal", api="https://registry.example.com", token="secret")
    }


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("network_timeout = 0\n", "network_timeout"),
        ('max_attempts = "many"\n', "max_attempts"),
        ("[registries.internal]\ntoken = \"x\"\n", "Missing 'api'"),
        ("network_timeout = \n", "Invalid TOML"),
    ],
)
def test_invalid_config_raises(tmp_path: Path, content: str, message: str) -> None:
    path = tmp_path / "config.toml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        load_global_config(path)


def test_save_registry_creates_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.toml"

    save_registry(RegistryConfig(name="internal", api="https://registry.example.com"), path)

    assert load_global_config(path).registries["internal"].api == "https://registry.example.com"


def test_save_registry_preserves_comments(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("# my settings\nnetwork_timeout = 10 # seconds\n", encoding="utf-8")

    save_registry(RegistryConfig(name="internal", api="https://registry.example.com", token="t"), path)

    text = path.read_text(encoding="utf-8")
    assert text.startswith("# my settings\nnetwork_timeout = 10 # seconds\n")
    config = load_global_config(path)
    assert config.network_timeout == 10.0
    assert config.registries["internal"].token == "t"


def test_remove_registry(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    save_registry(RegistryConfig(name="a", api="https://a.example.com"), path)
    save_registry(RegistryConfig(name="b", api="https://b.example.com"), path)

    assert remove_registry("a", path)
    assert not remove_registry("a", path)
    assert list(load_global_config(path).registries) == ["b"]


def test_remove_registry_without_file(tmp_path: Path) -> None:
    assert not remove_registry("a", tmp_path / "config.toml")
