"""Published observables for the presentation layer."""
from __future__ import annotations

from typing import Callable, Generic, Optional, TypeVar

from .logging_utils import _extractor_event

T = TypeVar("T")
Listener = Callable[[T], None]


class Broadcast(Generic[T]):
    """Fan a value out to every subscriber.

    When created with ``initial`` the broadcast remembers the last value and
    replays it to new subscribers.
    """

    _UNSET = object()

    def __init__(self, name: str, initial: object = _UNSET) -> None:
        self.name = name
        self._listeners: list[Listener] = []
        self._value = initial

    @property
    def value(self) -> Optional[T]:
        return None if self._value is self._UNSET else self._value  # type: ignore[return-value]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        if self._value is not self._UNSET:
            listener(self._value)  # type: ignore[arg-type]

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, value: T) -> None:
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as exc:  # noqa: BLE001
                _extractor_event("error", phase="broadcast", channel=self.name, error=repr(exc))


__all__ = ["Broadcast"]
