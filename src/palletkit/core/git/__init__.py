from palletkit.core.git.abc import GitRemote, RemoteRef
from palletkit.core.git.real import RealGitRemote

__all__ = [
    "GitRemote",
    "RealGitRemote",
    "RemoteRef",
]
