"""Cancellable units of work.

A ``Context`` is created per scrape (and once for the process lifetime).
Cancelling a context cancels every context derived from it with ``child()``,
but never its parent or siblings.
"""
from __future__ import annotations

import threading
from typing import List, Optional

from .types import ContextCancelledError


class Context:
    def __init__(self, parent: Optional["Context"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["Context"] = []
        self._parent = parent
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "Context") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
        child.cancel()

    def _release(self, child: "Context") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def child(self) -> "Context":
        return Context(parent=self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel()
        if self._parent is not None:
            self._parent._release(self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ContextCancelledError("context cancelled")

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
