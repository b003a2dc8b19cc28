"""Synchronous in-process observer list."""

from __future__ import annotations

from typing import Any, Callable, List

Observer = Callable[..., None]


class Observers:
    """Ordered list of callbacks notified synchronously.

    Notes
    -----
    Dispatch iterates over a copy so an observer may unregister itself (or
    another observer) while being notified. Exceptions raised by an observer
    propagate to the caller of ``notify``.
    """

    def __init__(self) -> None:
        self._callbacks: List[Observer] = []

    def register(self, callback: Observer) -> Observer:
        assert callable(callback), "observer must be callable"
        assert callback not in self._callbacks, "observer already registered"
        self._callbacks.append(callback)
        return callback

    def unregister(self, callback: Observer) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            return

    def notify(self, *args: Any) -> None:
        for callback in list(self._callbacks):
            callback(*args)

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)
