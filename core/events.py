"""
ForgeSR - Change Notification
==============================
Minimal signal object used by the job queue and history cache to notify
the presentation layer. Mirrors the connect/emit shape of Qt signals.
"""

from typing import Callable, List

from loguru import logger


class Signal:
    """A list of callbacks invoked synchronously on emit()."""

    def __init__(self, name: str):
        self.name = name
        self._slots: List[Callable] = []

    def connect(self, slot: Callable) -> Callable:
        """Register a callback. Returns it so this can be used as a decorator."""
        if slot not in self._slots:
            self._slots.append(slot)
        return slot

    def disconnect(self, slot: Callable) -> None:
        try:
            self._slots.remove(slot)
        except ValueError:
            pass

    def emit(self, *args) -> None:
        # Listener errors are logged, never raised into the emitter.
        for slot in list(self._slots):
            try:
                slot(*args)
            except Exception:
                logger.exception(f"[Signal] Listener for '{self.name}' raised")

    def __len__(self) -> int:
        return len(self._slots)
