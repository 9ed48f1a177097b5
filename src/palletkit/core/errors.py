"""Exception taxonomy for pallet integration.

Every error raised on purpose by palletkit derives from PalletKitError, so the
CLI error boundary can render it without a stack trace. The hierarchy mirrors
the stages of an integration run:

- SourceResolutionError: resolving a descriptor (nothing written yet)
- ManifestParseError: loading the manifest or composition source
- PlanningError: turning a conflict outcome into a plan
- TransactionError: writing the plan to disk
"""

from pathlib import Path


class PalletKitError(Exception):
    """Base class for all expected palletkit failures."""


class ConfigError(PalletKitError):
    """Invalid or unreadable palletkit configuration."""


# ============================================================================
# Source resolution
# ============================================================================


class SourceResolutionError(PalletKitError):
    """A pallet source descriptor could not be resolved."""

    retryable = False


class NotFound(SourceResolutionError):
    """Crate, git ref, path or registry does not exist."""


class NoSatisfyingVersion(SourceResolutionError):
    """The crate exists but no version satisfies the requested constraint."""


class NetworkFailure(SourceResolutionError):
    """Transient network problem talking to a registry or git remote."""

    retryable = True


class AuthFailure(SourceResolutionError):
    """Registry or git remote rejected the supplied credentials."""


# ============================================================================
# Parsing
# ============================================================================


class ManifestParseError(PalletKitError):
    """An existing project document could not be parsed.

    Carries the file path and 1-based line/column of the problem when known.
    """

    def __init__(self, path: Path, message: str, line: int | None = None, col: int | None = None):
        self.path = path
        self.message = message
        self.line = line
        self.col = col
        super().__init__(str(self))

    @classmethod
    def from_decode_error(cls, path: Path, raw: bytes, error: UnicodeDecodeError) -> "ManifestParseError":
        """Locate an invalid UTF-8 byte sequence by line and byte column."""
        line = raw.count(b"\n", 0, error.start) + 1
        col = error.start - (raw.rfind(b"\n", 0, error.start) + 1) + 1
        return cls(path, "file is not valid UTF-8", line, col)

    def __str__(self) -> str:
        location = str(self.path)
        if self.line is not None:
            location += f":{self.line}"
            if self.col is not None:
                location += f":{self.col}"
        return f"{location}: {self.message}"


class CompositionParseError(ManifestParseError):
    """The runtime composition source could not be parsed."""


# ============================================================================
# Planning
# ============================================================================


class PlanningError(PalletKitError):
    """An integration plan could not be produced."""


class Blocked(PlanningError):
    """The requested change conflicts with an existing entry's source kind."""


# ============================================================================
# Transactions
# ============================================================================


class TransactionError(PalletKitError):
    """Writing a plan to disk failed."""


class IOFailure(TransactionError):
    """A file could not be read or written before any change was made."""


class RolledBack(TransactionError):
    """A write failed and every touched file was restored.

    The project is byte-identical to its state before the transaction.
    """

    def __init__(self, cause: BaseException | str):
        self.cause = cause
        super().__init__(f"Changes rolled back: {cause}")


class Cancelled(RolledBack):
    """The transaction was cancelled mid-write and rolled back."""

    def __init__(self) -> None:
        super().__init__("cancelled by caller")


class RollbackFailed(TransactionError):
    """Restoring snapshots failed. The project needs manual recovery.

    Snapshot copies are left next to the original files.
    """

    def __init__(self, cause: BaseException | str, snapshot_files: list[Path]):
        self.cause = cause
        self.snapshot_files = snapshot_files
        super().__init__(str(self))

    def __str__(self) -> str:
        lines = [
            f"Rollback failed after error: {self.cause}",
            "Project files may be partially modified. Restore them manually from:",
        ]
        for snapshot in self.snapshot_files:
            original = snapshot.with_name(snapshot.name.removesuffix(SNAPSHOT_SUFFIX))
            lines.append(f"  cp {snapshot} {original}")
        return "\n".join(lines)


SNAPSHOT_SUFFIX = ".palletkit-snapshot"


# ============================================================================
# Orchestration
# ============================================================================


class ProjectLockedError(PalletKitError):
    """Another integration holds the project lock."""


class IntegrationCancelled(PalletKitError):
    """The caller cancelled before anything was written."""
