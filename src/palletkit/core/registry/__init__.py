from palletkit.core.registry.abc import CrateInfo, CrateVersion, Registry
from palletkit.core.registry.http import CRATES_IO_API, HttpRegistry

__all__ = [
    "CRATES_IO_API",
    "CrateInfo",
    "CrateVersion",
    "HttpRegistry",
    "Registry",
]
