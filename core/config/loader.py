"""YAML loader and section builders for runtime configuration."""

from __future__ import annotations

import glob
import os
from typing import Any

import yaml

from .decode import decode_document
from .schema import ConfigError, LoadedConfig, RemoteConfig, RuntimeConfig
from .validate import sanitize_snapshot

_LOCAL_ONLY_SECTIONS = ("runtime", "remote")


def load_config(config_dir: str = "config") -> LoadedConfig:
    main_path = _find_main_config(config_dir)
    main_data = read_document(main_path)

    runtime = _build_dataclass(
        RuntimeConfig, main_data.get("runtime"), main_path, section="runtime"
    )
    remote = _build_dataclass(
        RemoteConfig, main_data.get("remote"), main_path, section="remote"
    )
    remote_path = str(remote.source_path or "").strip()
    if remote_path and not os.path.isabs(remote_path):
        remote.source_path = os.path.join(config_dir, remote_path)

    snapshot_doc = {
        k: v for k, v in main_data.items() if k not in _LOCAL_ONLY_SECTIONS
    }
    snapshot = sanitize_snapshot(
        decode_document(snapshot_doc, strict=True, origin=main_path)
    )
    return LoadedConfig(
        runtime=runtime,
        remote=remote,
        snapshot=snapshot,
        paths={
            "main": main_path,
            "remote": remote.source_path,
        },
    )


def _find_main_config(config_dir: str) -> str:
    patterns = [
        os.path.join(config_dir, "main_*.yaml"),
        os.path.join(config_dir, "main_*.yml"),
    ]
    candidates: list[str] = []
    for pattern in patterns:
        candidates.extend(glob.glob(pattern))
    if len(candidates) == 0:
        raise ConfigError(f"No main_*.yaml found under {config_dir}")
    if len(candidates) > 1:
        raise ConfigError(
            f"Expected exactly one main_*.yaml, found: {', '.join(sorted(candidates))}"
        )
    return candidates[0]


def read_document(path: str) -> dict[str, Any]:
    """Read a YAML (or JSON, which YAML parses) mapping from ``path``."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping: {path}")
    return data


def _build_dataclass(cls, data: dict[str, Any] | None, main_path: str, section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping in {main_path}")
    obj = cls()
    fields = cls.__dataclass_fields__
    for k, v in data.items():
        if k in fields:
            setattr(obj, k, v)
        else:
            raise ConfigError(f"Unknown field {section}.{k} in {main_path}")
    return obj


__all__ = ["load_config", "read_document"]
