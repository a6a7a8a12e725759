"""Bundled resources: prompt templates, sampling presets, offline fixtures.

Each resource is addressed by a path relative to the package, e.g.
``prompts/analyze_intent.txt``.  Operators can replace any single file by
placing one at the same relative path under ``CONTENT_GATES_RESOURCE_DIR``;
files missing there fall back to the bundled copy.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml

_BUNDLED = Path(__file__).resolve().parent


def override_dir() -> Optional[Path]:
    raw = os.environ.get("CONTENT_GATES_RESOURCE_DIR")
    if not raw:
        return None
    p = Path(raw).expanduser().resolve()
    return p if p.is_dir() else None


def resource_path(rel_path: str) -> Path:
    """Locate *rel_path*, preferring the override directory."""
    base = override_dir()
    if base is not None and (base / rel_path).is_file():
        return base / rel_path
    bundled = _BUNDLED / rel_path
    if not bundled.is_file():
        raise FileNotFoundError(f"Resource not found: {rel_path}")
    return bundled


@lru_cache(maxsize=64)
def _cached_text(path: Path, mtime_ns: int) -> str:
    return path.read_text(encoding="utf-8")


def read_text(rel_path: str) -> str:
    # keyed on mtime so an edited override is picked up without a restart
    path = resource_path(rel_path)
    return _cached_text(path, path.stat().st_mtime_ns)


def read_yaml(rel_path: str) -> Any:
    return yaml.safe_load(read_text(rel_path))


def read_json(rel_path: str) -> Any:
    return json.loads(read_text(rel_path))
