from palletkit.core.time.abc import Time
from palletkit.core.time.real import RealTime

__all__ = [
    "RealTime",
    "Time",
]
