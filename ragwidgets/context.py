"""Shared search context: one registry plus connection settings per mount."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, NamedTuple, Optional

from .registry import Command, Registry, reduce

logger = logging.getLogger(__name__)


class Snapshot(NamedTuple):
    """Immutable view of the context at one point in time."""

    registry: Registry
    url: str
    headers: Dict[str, str]
    table: Optional[str]


Listener = Callable[[Snapshot], None]


class SearchContext:
    """Single source of truth shared by every widget mounted under it.

    Build one per mounted root and pass it to the widgets explicitly; call
    ``close()`` (or use it as a context manager) when the root goes away.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        table: Optional[str] = None,
    ) -> None:
        if not url:
            raise ValueError("Search context requires a base URL")
        self.url = url.rstrip("/")
        self.headers: Dict[str, str] = dict(headers or {})
        self.table = table or None
        self._registry = Registry()
        self._listeners: List[Listener] = []
        self._teardown_hooks: List[Callable[[], None]] = []
        self._lock = threading.RLock()
        self._last_submission = 0
        self._closed = False

    def __enter__(self) -> "SearchContext":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def get_snapshot(self) -> Snapshot:
        """Return the current registry together with the connection settings."""
        with self._lock:
            return Snapshot(self._registry, self.url, dict(self.headers), self.table)

    def dispatch(self, command: Command) -> Snapshot:
        """Apply ``command`` and notify every listener before returning.

        Listeners run outside the context lock, so a listener may dispatch
        again or block on a streaming session without holding up other
        threads that only want to read or write the registry.
        """
        with self._lock:
            if self._closed:
                logger.debug("Ignoring %r dispatched after close", command)
                return Snapshot(self._registry, self.url, dict(self.headers), self.table)
            previous = self._registry
            self._registry = reduce(previous, command)
            snapshot = Snapshot(self._registry, self.url, dict(self.headers), self.table)
            if self._registry is previous:
                return snapshot
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Search context listener failed")
        return snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for every committed transition.

        Returns a callable that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def on_teardown(self, hook: Callable[[], None]) -> None:
        """Run ``hook`` when the context is closed."""
        with self._lock:
            self._teardown_hooks.append(hook)

    def next_submission(self) -> int:
        """Strictly increasing stamp marking a new submission."""
        with self._lock:
            stamp = max(time.monotonic_ns(), self._last_submission + 1)
            self._last_submission = stamp
            return stamp

    def close(self) -> None:
        """Tear down: run teardown hooks, drop listeners and empty the registry."""
        with self._lock:
            if self._closed:
                return
            hooks = list(self._teardown_hooks)
            self._teardown_hooks.clear()
        for hook in hooks:
            try:
                hook()
            except Exception:
                logger.exception("Search context teardown hook failed")
        with self._lock:
            self._closed = True
            self._listeners.clear()
            self._registry = Registry()
