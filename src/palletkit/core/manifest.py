"""Trivia-preserving model of a runtime's Cargo.toml.

The manifest is parsed once with tomlkit and edited in place. tomlkit keeps
every comment, blank line and key ordering it does not touch, so

    ManifestModel.loads(text).serialize() == text.encode()

and an upsert only rewrites the lines describing that dependency. Values are
assigned only when they differ from what is already in the document, which
keeps repeated upserts from reformatting anything.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import ParseError
from tomlkit.items import InlineTable, Table
from tomlkit.toml_document import TOMLDocument

from palletkit.core.descriptors import SourceKind
from palletkit.core.errors import IOFailure, ManifestParseError

logger = logging.getLogger(__name__)

DEPENDENCIES = "dependencies"

# Keys that say where a dependency comes from. Everything else on an entry is
# a custom field the model never drops.
_SOURCE_KEYS = ("version", "path", "git", "rev", "branch", "tag", "registry")
_KIND_KEYS: dict[SourceKind, tuple[str, ...]] = {
    SourceKind.REGISTRY: ("version",),
    SourceKind.CUSTOM_REGISTRY: ("version", "registry"),
    SourceKind.GIT: ("git", "rev"),
    SourceKind.PATH: ("path",),
}
_MANAGED_KEYS = (*_SOURCE_KEYS, "features", "default-features")


@dataclass(frozen=True)
class ManifestEntry:
    """One dependency in the manifest's [dependencies] table.

    Attributes:
        name: Dependency key (crate name)
        kind: Source kind derived from the entry's keys
        version: Version requirement (registry kinds)
        path: Local path, as written in the manifest or absolute on upsert
        git: Repository URL
        rev: Pinned commit
        registry: Custom registry name
        features: Enabled features in document order
        default_features: Value of `default-features`, None when absent
        extra: Custom keys on the entry, preserved across merges
        trivia: Inline comment attached to the entry
    """

    name: str
    kind: SourceKind
    version: str | None = None
    path: str | None = None
    git: str | None = None
    rev: str | None = None
    registry: str | None = None
    features: tuple[str, ...] = ()
    default_features: bool | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)
    trivia: str = ""

    def source_fields(self) -> dict[str, str]:
        """Source keys this entry writes for its kind."""
        values = {
            "version": self.version,
            "registry": self.registry,
            "git": self.git,
            "rev": self.rev,
            "path": self.path,
        }
        return {
            key: value
            for key in _KIND_KEYS[self.kind]
            if (value := values[key]) is not None
        }


def _kind_of(fields: Mapping[str, Any]) -> SourceKind:
    if "path" in fields:
        return SourceKind.PATH
    if "git" in fields:
        return SourceKind.GIT
    if "registry" in fields:
        return SourceKind.CUSTOM_REGISTRY
    return SourceKind.REGISTRY


def _unwrap(value: Any) -> Any:
    if hasattr(value, "unwrap"):
        return value.unwrap()
    return value


class ManifestModel:
    """In-place editable view of a Cargo.toml document."""

    def __init__(self, path: Path, doc: TOMLDocument) -> None:
        self.path = path
        self._doc = doc

    @classmethod
    def load(cls, path: Path) -> "ManifestModel":
        """Load and parse a manifest from disk.

        Raises:
            IOFailure: If the file cannot be read
            ManifestParseError: If the file is not valid TOML
        """
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise IOFailure(f"Cannot read manifest {path}: {e}") from e
        return cls.from_bytes(raw, path)

    @classmethod
    def from_bytes(cls, raw: bytes, path: Path) -> "ManifestModel":
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ManifestParseError.from_decode_error(path, raw, e) from e
        return cls.loads(text, path)

    @classmethod
    def loads(cls, text: str, path: Path) -> "ManifestModel":
        try:
            doc = tomlkit.parse(text)
        except ParseError as e:
            raise ManifestParseError(path, "could not parse input as TOML", e.line, e.col) from e
        return cls(path, doc)

    def serialize(self) -> bytes:
        return self._doc.as_string().encode("utf-8")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _dependencies(self) -> Table | InlineTable | None:
        deps = self._doc.get(DEPENDENCIES)
        if deps is None:
            return None
        if not isinstance(deps, Table | InlineTable):
            raise ManifestParseError(self.path, f"[{DEPENDENCIES}] is not a table")
        return deps

    def names(self) -> list[str]:
        deps = self._dependencies()
        if deps is None:
            return []
        return [str(key) for key in deps]

    def get(self, name: str) -> ManifestEntry | None:
        deps = self._dependencies()
        if deps is None or name not in deps:
            return None

        item = deps[name]
        if isinstance(item, str):
            return ManifestEntry(
                name=name,
                kind=SourceKind.REGISTRY,
                version=str(item),
                trivia=_comment_of(item),
            )

        if not isinstance(item, Table | InlineTable):
            raise ManifestParseError(self.path, f"dependency '{name}' has an unsupported value type")

        fields = {str(k): _unwrap(v) for k, v in item.items()}
        default_features = fields.get("default-features", fields.get("default_features"))
        return ManifestEntry(
            name=name,
            kind=_kind_of(fields),
            version=fields.get("version"),
            path=fields.get("path"),
            git=fields.get("git"),
            rev=fields.get("rev"),
            registry=fields.get("registry"),
            features=tuple(fields.get("features", ())),
            default_features=default_features,
            extra={k: v for k, v in fields.items() if k not in _MANAGED_KEYS and k != "default_features"},
            trivia=_comment_of(item),
        )

    def resolve_path(self, entry: ManifestEntry) -> Path | None:
        """Absolute location of a path dependency."""
        if entry.path is None:
            return None
        candidate = Path(entry.path)
        if not candidate.is_absolute():
            candidate = self.path.parent / candidate
        return Path(os.path.normpath(candidate))

    def std_features(self) -> list[str] | None:
        """The `[features] std` list, or None when the manifest has none."""
        features = self._doc.get("features")
        if features is None or "std" not in features:
            return None
        return [str(f) for f in features["std"]]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, entry: ManifestEntry) -> None:
        """Insert a dependency or merge it into the existing entry.

        Merging updates source fields, unions features and keeps custom keys
        and the entry's comment. The entry's `<name>/std` feature is wired
        into `[features] std` when that list exists.
        """
        deps = self._dependencies()
        if deps is None:
            deps = tomlkit.table()
            self._doc[DEPENDENCIES] = deps
            deps = self._doc[DEPENDENCIES]

        entry = self._relative_paths(entry)
        if entry.name in deps:
            self._merge(deps, entry)
        else:
            logger.debug("Adding dependency %s to %s", entry.name, self.path)
            deps[entry.name] = _new_item(entry, padded=_pads_inline_tables(deps))

        self._add_std_feature(entry.name)

    def remove(self, name: str) -> None:
        """Delete a dependency and its std feature. Unknown names are ignored."""
        deps = self._dependencies()
        if deps is not None and name in deps:
            logger.debug("Removing dependency %s from %s", name, self.path)
            del deps[name]

        features = self._doc.get("features")
        if features is not None and "std" in features:
            std = features["std"]
            feature = f"{name}/std"
            for i, value in enumerate(std):
                if str(value) == feature:
                    del std[i]
                    break

    def _relative_paths(self, entry: ManifestEntry) -> ManifestEntry:
        if entry.path is None or not Path(entry.path).is_absolute():
            return entry
        relative = Path(os.path.relpath(entry.path, self.path.parent)).as_posix()
        return replace(entry, path=relative)

    def _merge(self, deps: Table | InlineTable, entry: ManifestEntry) -> None:
        item = deps[entry.name]
        padded = _pads_inline_tables(deps)
        converted = isinstance(item, str)
        if isinstance(item, str):
            existing_kind = SourceKind.REGISTRY
        else:
            existing_kind = _kind_of(item)

        if isinstance(item, str):
            if _fits_shorthand(entry):
                if str(item) != entry.version:
                    deps[entry.name] = entry.version
                return
            table = tomlkit.inline_table()
            table["version"] = str(item)
            deps[entry.name] = table
            item = deps[entry.name]

        if existing_kind is not entry.kind:
            for key in _SOURCE_KEYS:
                if key in item and key not in _KIND_KEYS[entry.kind]:
                    del item[key]
        if entry.kind is SourceKind.GIT:
            for key in ("branch", "tag"):
                if key in item:
                    del item[key]

        for key, value in entry.source_fields().items():
            _set_if_changed(item, key, value)

        if entry.default_features is not None:
            _set_if_changed(item, "default-features", entry.default_features)

        for key, value in entry.extra.items():
            _set_if_changed(item, key, value)

        if entry.features:
            if "features" in item:
                current = item["features"]
                present = {str(f) for f in current}
                for feature in entry.features:
                    if feature not in present:
                        current.append(feature)
                        present.add(feature)
            else:
                item["features"] = list(entry.features)

        if converted and padded:
            deps[entry.name] = _padded(item)

    def _add_std_feature(self, name: str) -> None:
        features = self._doc.get("features")
        if features is None or "std" not in features:
            return
        std = features["std"]
        feature = f"{name}/std"
        if feature not in [str(f) for f in std]:
            std.append(feature)


def _comment_of(item: Any) -> str:
    trivia = getattr(item, "trivia", None)
    if trivia is None:
        return ""
    return trivia.comment


def _fits_shorthand(entry: ManifestEntry) -> bool:
    return (
        entry.kind is SourceKind.REGISTRY
        and entry.version is not None
        and not entry.features
        and entry.default_features is None
        and not entry.extra
    )


def _new_item(entry: ManifestEntry, *, padded: bool = True) -> InlineTable:
    table = tomlkit.inline_table()
    for key, value in entry.source_fields().items():
        table[key] = value
    if entry.default_features is not None:
        table["default-features"] = entry.default_features
    if entry.features:
        table["features"] = list(entry.features)
    for key, value in entry.extra.items():
        table[key] = value
    return _padded(table) if padded else table


def _pads_inline_tables(deps: Table | InlineTable) -> bool:
    """Whether existing inline-table dependencies are written `{ key = ... }`."""
    for name in deps:
        value = deps[name]
        if isinstance(value, InlineTable):
            return value.as_string().startswith("{ ")
    return True


def _padded(table: InlineTable) -> InlineTable:
    """Re-render an inline table with a space inside each brace."""
    inner = table.as_string().strip()[1:-1].strip()
    return tomlkit.parse(f"_ = {{ {inner} }}\n")["_"]


def _set_if_changed(item: Table | InlineTable, key: str, value: Any) -> None:
    if key in item and _unwrap(item[key]) == value:
        return
    item[key] = value

