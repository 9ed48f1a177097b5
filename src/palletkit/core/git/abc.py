"""Read-only git remote queries.

Architecture:
- GitRemote: Abstract base class defining the interface
- RealGitRemote: Production implementation shelling out to `git ls-remote`
- FakeGitRemote (tests/fakes): In-memory refs per URL
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RemoteRef:
    """One line of `git ls-remote` output."""

    sha: str
    name: str  # e.g. "refs/heads/main", "refs/tags/v1.0.0^{}", "HEAD"


class GitRemote(ABC):
    """Abstract interface for querying git remotes.

    Implementations never write to or push to a remote.
    """

    @abstractmethod
    def ls_remote(self, url: str, ref: str | None) -> list[RemoteRef]:
        """List remote refs matching `ref` (all of HEAD when ref is None).

        Args:
            url: Repository URL
            ref: Branch or tag name to look up, or None for HEAD

        Returns:
            Matching refs; empty when the remote is reachable but nothing matched

        Raises:
            NotFound: Repository does not exist
            AuthFailure: Remote rejected credentials
            NetworkFailure: Remote unreachable or timed out
        """
        ...
