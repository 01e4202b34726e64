"""
Cooperative cancellation for a single chat run.

A token is created per run and handed to the backend client. While the
client waits for response headers it listens on the token and abandons
the request when it fires. Once streaming, it registers a callback that
shuts down the response socket, which wakes a read blocked in ``recv()``.
Readers also poll the token between chunks, so a suspended generator
unwinds at its next resumption.
"""

import logging
import threading
from typing import Callable

from ..exceptions import GenerationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot, thread-safe cancellation signal."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """
        Fire the token.

        Returns:
            True if this call fired it, False if it was already cancelled.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            self._run_callback(callback)
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run *callback* on cancellation, immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        self._run_callback(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("Generation cancelled by user")

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    @staticmethod
    def _run_callback(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.debug("Cancellation callback failed: %s", e)
