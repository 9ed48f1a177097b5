"""Tests for the trivia-preserving manifest model."""

import difflib
import tomllib
from pathlib import Path

import pytest

from palletkit.core.descriptors import SourceKind
from palletkit.core.errors import ManifestParseError
from palletkit.core.manifest import ManifestEntry, ManifestModel
from tests.test_utils.projects import PLAIN_MANIFEST, RUNTIME_MANIFEST

MANIFEST_PATH = Path("/project/runtime/Cargo.toml")


def _load(text: str) -> ManifestModel:
    return ManifestModel.loads(text, MANIFEST_PATH)


def _only_insertions(before: str, after: str) -> list[str]:
    """Return inserted lines, failing if any original line changed."""
    matcher = difflib.SequenceMatcher(a=before.splitlines(), b=after.splitlines(), autojunk=False)
    inserted: list[str] = []
    for tag, _i1, _i2, j1, j2 in matcher.get_opcodes():
        assert tag in ("equal", "insert"), f"unexpected {tag} in diff"
        if tag == "insert":
            inserted.extend(after.splitlines()[j1:j2])
    return inserted


@pytest.mark.parametrize("text", [RUNTIME_MANIFEST, PLAIN_MANIFEST, "", "# only a comment\n"])
def test_round_trip_is_byte_identical(text: str) -> None:
    assert _load(text).serialize() == text.encode()


def test_get_reads_every_entry_shape() -> None:
    model = _load(RUNTIME_MANIFEST)

    serde = model.get("serde")
    assert serde is not None
    assert serde.kind is SourceKind.REGISTRY
    assert serde.version == "1.0"

    codec = model.get("codec")
    assert codec is not None
    assert codec.version == "3.6.1"
    assert codec.features == ("derive",)
    assert codec.default_features is False
    assert codec.extra == {"package": "parity-scale-codec"}

    aura = model.get("pallet-aura")
    assert aura is not None
    assert aura.version == "4.0.0-dev"

    support = model.get("frame-support")
    assert support is not None
    assert "keep in sync" in support.trivia

    assert model.get("missing") is None


def test_upsert_new_entry_only_inserts_its_own_lines() -> None:
    model = _load(PLAIN_MANIFEST)

    model.upsert(
        ManifestEntry(
            name="balances",
            kind=SourceKind.REGISTRY,
            version="4.1.0",
            features=("std",),
            default_features=False,
        )
    )
    after = model.serialize().decode()

    inserted = [line for line in _only_insertions(PLAIN_MANIFEST, after) if line.strip()]
    assert inserted
    assert all("balances" in line for line in inserted)
    parsed = tomllib.loads(after)
    assert parsed["dependencies"]["balances"] == {
        "version": "4.1.0",
        "default-features": False,
        "features": ["std"],
    }
    assert "balances" not in parsed["build-dependencies"]


def test_upsert_merges_into_existing_entry() -> None:
    model = _load(RUNTIME_MANIFEST)

    model.upsert(
        ManifestEntry(
            name="codec",
            kind=SourceKind.REGISTRY,
            version="3.6.9",
            features=("max-encoded-len", "derive"),
        )
    )
    parsed = tomllib.loads(model.serialize().decode())

    codec = parsed["dependencies"]["codec"]
    assert codec["version"] == "3.6.9"
    assert codec["features"] == ["derive", "max-encoded-len"]
    assert codec["package"] == "parity-scale-codec"
    assert codec["default-features"] is False
    assert model.serialize().decode().count("codec =") == 1
    assert "# SCALE codec, renamed" in model.serialize().decode()


def test_upsert_same_entry_twice_changes_nothing() -> None:
    model = _load(RUNTIME_MANIFEST)
    entry = ManifestEntry(name="balances", kind=SourceKind.REGISTRY, version="4.1.0", default_features=False)
    model.upsert(entry)
    once = model.serialize()

    model.upsert(entry)

    assert model.serialize() == once


def test_upsert_keeps_comment_on_merged_entry() -> None:
    model = _load(RUNTIME_MANIFEST)

    model.upsert(ManifestEntry(name="frame-support", kind=SourceKind.REGISTRY, version="5.0.0"))

    assert "# keep in sync with frame-system" in model.serialize().decode()


def test_upsert_shorthand_stays_shorthand_for_version_only_change() -> None:
    model = _load(RUNTIME_MANIFEST)

    model.upsert(ManifestEntry(name="serde", kind=SourceKind.REGISTRY, version="1.0.190"))

    assert 'serde = "1.0.190"' in model.serialize().decode()


def test_upsert_wires_std_feature_once() -> None:
    model = _load(RUNTIME_MANIFEST)
    entry = ManifestEntry(name="balances", kind=SourceKind.REGISTRY, version="4.1.0", default_features=False)

    model.upsert(entry)
    model.upsert(entry)

    std = model.std_features()
    assert std is not None
    assert std.count("balances/std") == 1
    assert tomllib.loads(model.serialize().decode())["features"]["std"][-1] == "balances/std"


def test_upsert_git_entry_drops_branch() -> None:
    text = '[dependencies]\npallet-x = { git = "https://example.com/x.git", branch = "main" }\n'
    model = _load(text)

    model.upsert(
        ManifestEntry(
            name="pallet-x",
            kind=SourceKind.GIT,
            git="https://example.com/x.git",
            rev="a" * 40,
        )
    )

    entry = tomllib.loads(model.serialize().decode())["dependencies"]["pallet-x"]
    assert entry == {"git": "https://example.com/x.git", "rev": "a" * 40}


def test_upsert_kind_change_replaces_source_keys() -> None:
    model = _load(RUNTIME_MANIFEST)

    model.upsert(ManifestEntry(name="serde", kind=SourceKind.PATH, path="/project/vendor/serde"))

    entry = tomllib.loads(model.serialize().decode())["dependencies"]["serde"]
    assert entry == {"path": "../vendor/serde"}


def test_path_entries_are_written_relative_to_manifest() -> None:
    model = _load(PLAIN_MANIFEST)
    entry = ManifestEntry(name="my-pallet", kind=SourceKind.PATH, path="/project/pallets/my-pallet")

    model.upsert(entry)

    stored = model.get("my-pallet")
    assert stored is not None
    assert stored.path == "../pallets/my-pallet"
    assert model.resolve_path(stored) == Path("/project/pallets/my-pallet")


def test_upsert_creates_dependencies_table() -> None:
    model = _load('[package]\nname = "runtime"\n')

    model.upsert(ManifestEntry(name="balances", kind=SourceKind.REGISTRY, version="4.1.0", default_features=False))

    parsed = tomllib.loads(model.serialize().decode())
    assert parsed["dependencies"]["balances"]["version"] == "4.1.0"
    assert parsed["package"]["name"] == "runtime"


def test_remove_deletes_entry_and_std_feature() -> None:
    model = _load(RUNTIME_MANIFEST)

    model.remove("frame-system")

    parsed = tomllib.loads(model.serialize().decode())
    assert "frame-system" not in parsed["dependencies"]
    assert "frame-system/std" not in parsed["features"]["std"]
    assert "frame-support" in parsed["dependencies"]


def test_remove_missing_name_is_noop() -> None:
    model = _load(RUNTIME_MANIFEST)

    model.remove("not-there")

    assert model.serialize() == RUNTIME_MANIFEST.encode()


def test_malformed_toml_reports_location() -> None:
    with pytest.raises(ManifestParseError) as exc_info:
        _load('[dependencies]\nbalances = = "4.0.0"\n')

    error = exc_info.value
    assert error.path == MANIFEST_PATH
    assert error.line == 2
    assert str(error).startswith(f"{MANIFEST_PATH}:2:")


def test_load_missing_file_raises_io_failure(tmp_path: Path) -> None:
    from palletkit.core.errors import IOFailure

    with pytest.raises(IOFailure):
        ManifestModel.load(tmp_path / "Cargo.toml")


def test_new_inline_table_matches_padded_braces() -> None:
    model = _load(PLAIN_MANIFEST)

    model.upsert(ManifestEntry(name="balances", kind=SourceKind.REGISTRY, version="4.1.0", default_features=False))

    inserted = [line for line in _only_insertions(PLAIN_MANIFEST, model.serialize().decode()) if line.strip()]
    assert inserted == ['balances = { version = "4.1.0", default-features = false }']


def test_new_inline_table_matches_tight_braces() -> None:
    text = '[dependencies]\nframe-system = {version = "4.0.0-dev", default-features = false}\n'
    model = _load(text)

    model.upsert(ManifestEntry(name="balances", kind=SourceKind.REGISTRY, version="4.1.0", default_features=False))

    inserted = [line for line in _only_insertions(text, model.serialize().decode()) if line.strip()]
    assert inserted == ['balances = {version = "4.1.0", default-features = false}']


def test_shorthand_expanded_to_inline_table_uses_padded_braces() -> None:
    model = _load(RUNTIME_MANIFEST)

    model.upsert(ManifestEntry(name="serde", kind=SourceKind.REGISTRY, version="1.0", default_features=False))

    assert 'serde = { version = "1.0", default-features = false }\n' in model.serialize().decode()


def test_invalid_utf8_reports_location(tmp_path: Path) -> None:
    manifest = tmp_path / "Cargo.toml"
    manifest.write_bytes(b'[package]\nname = "\xff"\n')

    with pytest.raises(ManifestParseError, match="not valid UTF-8") as exc_info:
        ManifestModel.load(manifest)

    assert exc_info.value.path == manifest
    assert exc_info.value.line == 2
    assert exc_info.value.col == 9
