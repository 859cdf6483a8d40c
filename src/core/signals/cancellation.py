"""
Cooperative cancellation for signal collection.

A CancellationToken wraps a threading.Event. Child tokens are linked to
their parent: cancelling the parent cancels every child, while cancelling
a child (e.g. when a per-collector deadline expires) leaves the parent
untouched.
"""

import logging
import threading
from typing import Callable, List, Optional

from .errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe, linkable cancellation signal."""

    def __init__(self, parent: Optional['CancellationToken'] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._children: List['CancellationToken'] = []
        self._parent = parent
        self.reason: Optional[str] = None

        if parent is not None:
            parent._add_child(self)

    def _add_child(self, child: 'CancellationToken') -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
            reason = self.reason
        child.cancel(reason)

    def _remove_child(self, child: 'CancellationToken') -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = "cancelled") -> None:
        """Request cancellation. Idempotent; propagates to children."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            children = list(self._children)
            self._callbacks.clear()
            self._children.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Cancellation callback failed: {e}")

        for child in children:
            child.cancel(reason)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds. Returns True if cancelled."""
        return self._event.wait(timeout)

    def sleep(self, seconds: float) -> None:
        """Interruptible sleep; raises OperationCancelled if the token fires."""
        if self._event.wait(seconds):
            raise OperationCancelled(self.reason or "cancelled")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    def register(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def child(self) -> 'CancellationToken':
        """Create a token that is cancelled whenever this one is."""
        return CancellationToken(parent=self)

    def detach(self) -> None:
        """Unlink from the parent so finished children can be collected."""
        if self._parent is not None:
            self._parent._remove_child(self)
            self._parent = None
