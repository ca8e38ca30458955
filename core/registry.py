from __future__ import annotations

import importlib
from collections.abc import Mapping, MutableMapping
from typing import TypeVar

T = TypeVar("T")


def register_named(registry: MutableMapping[str, T], name: str, *aliases: str):
    """Decorator to register an object under a string key (plus optional aliases)."""

    def decorator(obj: T) -> T:
        for key in (name, *aliases):
            registry[key.lower()] = obj
        return obj

    return decorator


def resolve_registered(
    registry: MutableMapping[str, T],
    name: str,
    *,
    package: str,
    unknown_label: str,
    module_aliases: Mapping[str, str] | None = None,
) -> T:
    """Resolve a registry entry, lazily importing `<package>.<module>` if needed."""
    key = str(name or "").strip().lower()
    import_err: Exception | None = None
    if key not in registry:
        module = (module_aliases or {}).get(key, key)
        try:
            importlib.import_module(f"{package}.{module}")
        except ImportError as e:
            import_err = e
    if key not in registry:
        hint = f" (import failed: {import_err})" if import_err else ""
        raise ValueError(
            f"Unknown {unknown_label} '{name}'. "
            f"Available: {', '.join(sorted(registry.keys())) or 'none'}{hint}"
        )
    return registry[key]


__all__ = ["register_named", "resolve_registered"]
