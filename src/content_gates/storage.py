"""Filesystem storage for published result bundles."""

from __future__ import annotations

import json
import logging
import re
import secrets
from pathlib import Path
from typing import Any, List, Optional, Protocol

from pydantic import ValidationError

from content_gates.models import ResultBundle, ResultSummary

logger = logging.getLogger(__name__)

_UNSAFE_ID_RE = re.compile(r"[^a-z0-9-]")


def slugify(topic: str, max_len: int = 60) -> str:
    """Create a filesystem-safe slug from a unicode topic string.

    - Lowercases
    - Keeps alphanumeric and unicode letters
    - Replaces whitespace / separators with '-'
    - Collapses consecutive dashes
    - Trims to *max_len* characters
    """
    text = topic.lower()
    # Replace any whitespace / common separators with a single dash
    text = re.sub(r"[\s_/\\:;.,!?]+", "-", text)
    # Keep only word-characters (unicode-aware) and dashes
    text = re.sub(r"[^\w-]", "", text, flags=re.UNICODE)
    # Collapse multiple dashes
    text = re.sub(r"-{2,}", "-", text)
    text = text.strip("-")
    return text[:max_len]


def sanitize_id(result_id: str) -> str:
    """Drop every character outside ``[a-z0-9-]``."""
    return _UNSAFE_ID_RE.sub("", result_id)


def make_result_id(slug: str) -> str:
    """``<slug>-<6 hex chars>``; collisions are unlikely, not checked."""
    base = sanitize_id(slugify(slug)) or "result"
    return f"{base}-{secrets.token_hex(3)}"


def write_json(path: Path, data: Any) -> None:
    """Write *data* as pretty-printed JSON."""
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def read_json(path: Path) -> Any:
    """Read and parse a JSON file."""
    return json.loads(path.read_text(encoding="utf-8"))


class ResultStore(Protocol):
    def save(self, bundle: ResultBundle) -> None: ...

    def get(self, result_id: str) -> Optional[ResultBundle]: ...

    def list(self) -> List[ResultSummary]: ...


class FileResultStore:
    """One ``<id>.json`` file per bundle under *base_dir*.

    Records are re-validated on every read; anything unreadable is treated as
    absent.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def _path(self, result_id: str) -> Optional[Path]:
        safe = sanitize_id(result_id)
        if not safe:
            return None
        return self.base_dir / f"{safe}.json"

    def save(self, bundle: ResultBundle) -> None:
        path = self._path(bundle.id)
        if path is None:
            raise ValueError(f"Invalid result ID: {bundle.id!r}")
        self.base_dir.mkdir(parents=True, exist_ok=True)
        write_json(path, bundle.model_dump(mode="json"))

    def get(self, result_id: str) -> Optional[ResultBundle]:
        path = self._path(result_id)
        if path is None or not path.is_file():
            return None
        try:
            return ResultBundle.model_validate(read_json(path))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("unreadable result record %s: %s", path.name, exc)
            return None

    def list(self) -> List[ResultSummary]:
        """Return summaries sorted newest-first, skipping invalid records."""
        if not self.base_dir.is_dir():
            return []
        summaries = []
        for path in self.base_dir.glob("*.json"):
            bundle = self.get(path.stem)
            if bundle is None:
                continue
            summaries.append(
                ResultSummary(id=bundle.id, keyword=bundle.keyword, published_at=bundle.published_at)
            )
        return sorted(summaries, key=lambda s: s.published_at, reverse=True)
