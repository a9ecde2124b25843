from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Dict, Generic, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class Writable(Generic[T]):
    """Value holder that pushes every change to its subscribers synchronously."""

    def __init__(self, value: T):
        self._value = value
        self._subscribers: Dict[int, Subscriber] = {}
        self._counter = itertools.count()
        self._lock = threading.RLock()

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._notify()

    def update(self, fn: Callable[[T], T]) -> None:
        with self._lock:
            self._value = fn(self._value)
            self._notify()

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """Register ``callback``; it is invoked immediately with the current value."""
        with self._lock:
            token = next(self._counter)
            self._subscribers[token] = callback
            callback(self._value)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _notify(self) -> None:
        value = self._value
        for token in list(self._subscribers):
            # Skip subscribers removed by an earlier callback in this pass.
            callback = self._subscribers.get(token)
            if callback is None:
                continue
            # Errors are logged; later subscribers and the writer carry on.
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber %r failed", callback)


class Derived(Generic[T]):
    """Read-only view computed from one or more sources, recomputed on every change."""

    def __init__(self, sources: Sequence[Any], fn: Callable[..., T]):
        if not sources:
            raise ValueError("Derived needs at least one source.")
        self._sources = list(sources)
        self._fn = fn
        self._ready = False
        self._store: Writable[Any] = Writable(None)
        self._unsubscribers = [source.subscribe(self._recompute) for source in self._sources]
        self._ready = True
        self._recompute(None)

    def _recompute(self, _value: Any) -> None:
        # Sources call back immediately on subscribe; wait until all are wired.
        if not self._ready:
            return
        self._store.set(self._fn(*(source.get() for source in self._sources)))

    def get(self) -> T:
        return self._store.get()

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        return self._store.subscribe(callback)

    def dispose(self) -> None:
        """Detach from the sources; the last computed value stays readable."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
