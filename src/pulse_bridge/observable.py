"""Latest-value observable cell shared by the link manager and the session controller."""

from __future__ import annotations

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    """Single-producer cell with latest-value semantics.

    New subscribers are called immediately with the current value. Setting a
    value equal to the current one does not notify.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        """Current value."""
        return self._value

    def set(self, value: T) -> None:
        """Replace the value and notify subscribers."""
        if value == self._value:
            return
        self._value = value

        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                logger.exception(f"Observable subscriber {callback!r} failed")

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        self._subscribers.append(callback)
        callback(self._value)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
