"""Actuator seam: on/off state with a state-changed notification."""

import logging
import threading
from typing import Callable, Protocol

L = logging.getLogger("pump_runtime.actuator")

StateCallback = Callable[[bool, bool], None]


class Actuator(Protocol):
    def set_state(self, on: bool) -> None: ...
    def get_state(self) -> bool: ...
    def subscribe(self, cb: StateCallback) -> Callable[[], None]: ...


class SimulatedRelay:
    """In-process relay; real GPIO drivers plug in behind the same methods."""

    def __init__(self, initial: bool = True, name: str = "relay"):
        self.name = name
        self._state = bool(initial)
        self._lock = threading.Lock()
        self._subscribers: list[StateCallback] = []

    def get_state(self) -> bool:
        with self._lock:
            return self._state

    def set_state(self, on: bool):
        on = bool(on)
        with self._lock:
            old = self._state
            self._state = on
            subscribers = list(self._subscribers)
        if old == on:
            return
        L.info("%s %s -> %s", self.name, _label(old), _label(on))
        for cb in subscribers:
            try:
                cb(old, on)
            except Exception:
                L.exception("%s state callback failed", self.name)

    def subscribe(self, cb: StateCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(cb)

        def _unsubscribe():
            with self._lock:
                if cb in self._subscribers:
                    self._subscribers.remove(cb)

        return _unsubscribe


def _label(on: bool) -> str:
    return "ON" if on else "OFF"


__all__ = ["Actuator", "SimulatedRelay", "StateCallback"]
