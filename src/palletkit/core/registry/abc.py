"""Read-only package registry queries."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CrateVersion:
    """One published version of a crate."""

    num: str
    yanked: bool = False


@dataclass(frozen=True)
class CrateInfo:
    """Registry metadata for one crate."""

    name: str
    versions: tuple[CrateVersion, ...]

    def available_versions(self) -> list[str]:
        """Version strings that have not been yanked."""
        return [v.num for v in self.versions if not v.yanked]


class Registry(ABC):
    """Abstract interface for a crate registry endpoint.

    All implementations (real and fake) must implement this interface.
    """

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable endpoint identifier, used in availability proofs."""
        ...

    @abstractmethod
    def fetch_crate(self, name: str) -> CrateInfo:
        """Fetch a crate's published versions.

        Raises:
            NotFound: Crate does not exist in this registry
            AuthFailure: Registry rejected the credentials
            NetworkFailure: Registry unreachable, timed out or overloaded
        """
        ...
