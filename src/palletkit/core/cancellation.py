"""Cooperative cancellation shared between a caller and a running integration."""

import threading


class CancellationToken:
    """Thread-safe flag checked at safe points.

    Integration checks it before taking the project lock (nothing written
    yet) and between file writes (deferred until the current write finishes,
    then rolled back).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
