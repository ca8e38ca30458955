"""ConfigurationHub: the single current ConfigSnapshot plus change subscribers."""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Any, Callable, Mapping

from .decode import decode_document
from .schema import ConfigSnapshot
from .validate import sanitize_snapshot

L = logging.getLogger("pump_runtime.config")

ChangeCallback = Callable[[ConfigSnapshot, ConfigSnapshot], None]

_SECRET_FIELDS = {"api_key"}


class ConfigurationHub:
    """Lock-guarded holder of the current snapshot.

    Readers get the whole immutable snapshot in one reference read, so a reader never
    sees a mix of old and new fields. Writers sanitize first, then swap, then notify
    subscribers outside the read lock. Replacing with a snapshot equal to the current
    one is a no-op and does not notify.
    """

    def __init__(self, initial: ConfigSnapshot | None = None):
        self._lock = threading.Lock()
        # Serializes writers so subscribers observe swaps in order.
        self._write_lock = threading.RLock()
        self._snapshot = sanitize_snapshot(initial or ConfigSnapshot())
        self._subscribers: list[ChangeCallback] = []
        self._version = 0

    def current(self) -> ConfigSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def replace(self, snapshot: ConfigSnapshot) -> bool:
        """Install ``snapshot`` after per-field validation; True if it changed anything."""
        clean = sanitize_snapshot(snapshot)
        with self._write_lock:
            with self._lock:
                old = self._snapshot
                if clean == old:
                    return False
                self._snapshot = clean
                self._version += 1
                version = self._version
                subscribers = list(self._subscribers)
            changes = diff_snapshots(old, clean)
            L.info(
                "Configuration updated (v%d): %s",
                version,
                "; ".join(changes) if changes else "no field changes",
            )
            for cb in subscribers:
                try:
                    cb(old, clean)
                except Exception:
                    L.exception("Configuration subscriber failed: %r", cb)
        return True

    def apply_document(self, document: Mapping[str, Any] | None) -> bool:
        """Decode a nested or legacy flat document over the current snapshot and install it."""
        with self._write_lock:
            return self.replace(decode_document(document, self.current()))

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe


def diff_snapshots(old: Any, new: Any, prefix: str = "") -> list[str]:
    out: list[str] = []
    for f in dataclasses.fields(old):
        a = getattr(old, f.name)
        b = getattr(new, f.name)
        name = f"{prefix}{f.name}"
        if a == b:
            continue
        if dataclasses.is_dataclass(a):
            out.extend(diff_snapshots(a, b, prefix=f"{name}."))
        elif f.name in _SECRET_FIELDS:
            out.append(f"{name}: <changed>")
        else:
            out.append(f"{name}: {a!r} -> {b!r}")
    return out


__all__ = ["ConfigurationHub", "ChangeCallback", "diff_snapshots"]
