"""
Local persistence for past analyses.

``LocalStore`` is a small key-value store that keeps one JSON document per key
under the data directory. ``HistoryStore`` keeps the most recent analyses,
newest first, and writes a full snapshot on every mutation before adopting it.
A corrupt or unreadable snapshot is treated as an empty history rather than a
startup error.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from .config import get_store_config
from .types import HistoryItem, StylePassport
from .urls import is_local_reference

logger = logging.getLogger(__name__)

HISTORY_KEY = "analysis_history"
DEFAULT_CAPACITY = 20
MAX_COMPARE = 5
MIN_COMPARE = 2

_HISTORY_ADAPTER = TypeAdapter(List[HistoryItem])


class LocalStore:
    """JSON documents on disk, addressed by key."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else get_store_config().data_dir

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.data_dir / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        """Write atomically so a crash never leaves a half-written snapshot."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def decode_history(raw: Optional[str]) -> List[HistoryItem]:
    """Return the stored history, or an empty list when it is absent or malformed."""
    if raw is None or not raw.strip():
        return []
    try:
        return _HISTORY_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        logger.warning("Discarding unreadable analysis history (%d errors).", exc.error_count())
        return []


def encode_history(items: Sequence[HistoryItem]) -> str:
    return _HISTORY_ADAPTER.dump_json(list(items)).decode("utf-8")


class HistoryStore:
    """Most-recent-first, capacity-bounded list of past analyses."""

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        key: str = HISTORY_KEY,
        capacity: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._store = store or LocalStore()
        self._key = key
        self.capacity = capacity or get_store_config().history_capacity or DEFAULT_CAPACITY
        self._clock = clock
        self._id_factory = id_factory
        self._lock = threading.Lock()
        self._items: List[HistoryItem] = self._load()[: self.capacity]

    def _load(self) -> List[HistoryItem]:
        try:
            raw = self._store.get(self._key)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read analysis history, starting empty: %s", exc)
            return []
        return decode_history(raw)

    @property
    def items(self) -> Tuple[HistoryItem, ...]:
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def _commit(self, items: List[HistoryItem]) -> None:
        """Write the snapshot, then adopt it. A failed write leaves memory untouched."""
        self._store.set(self._key, encode_history(items))
        self._items = items

    def add(
        self,
        passport: StylePassport,
        video_url: Optional[str],
        platform: str,
        thumbnail: Optional[str] = None,
    ) -> HistoryItem:
        """Prepend a new analysis and evict the oldest beyond capacity."""
        item = HistoryItem(
            id=self._id_factory(),
            timestamp=int(self._clock() * 1000),
            passport=passport,
            video_url=None if is_local_reference(video_url) else video_url,
            platform=platform,
            thumbnail=thumbnail,
        )
        with self._lock:
            self._commit([item, *self._items][: self.capacity])
        logger.debug("History now holds %d items", len(self._items))
        return item

    def delete(self, item_id: str) -> bool:
        with self._lock:
            remaining = [item for item in self._items if item.id != item_id]
            if len(remaining) == len(self._items):
                return False
            self._commit(remaining)
        return True

    def get(self, item_id: str) -> Optional[HistoryItem]:
        with self._lock:
            return next((item for item in self._items if item.id == item_id), None)

    def latest(self) -> Optional[HistoryItem]:
        with self._lock:
            return self._items[0] if self._items else None

    def select(self, item_ids: Sequence[str]) -> List[HistoryItem]:
        """Items whose ids are given, in history order."""
        wanted = set(item_ids)
        with self._lock:
            return [item for item in self._items if item.id in wanted]

    def clear(self) -> None:
        with self._lock:
            self._commit([])


class ComparisonSelection:
    """Which history items the user ticked for comparison (at most five)."""

    def __init__(self, selected: Sequence[str] = ()):
        self._selected: List[str] = list(dict.fromkeys(selected))[:MAX_COMPARE]

    @property
    def selected(self) -> Tuple[str, ...]:
        return tuple(self._selected)

    @property
    def can_compare(self) -> bool:
        return len(self._selected) >= MIN_COMPARE

    def toggle(self, item_id: str) -> bool:
        """Flip selection of an item. Returns whether it is selected afterwards."""
        if item_id in self._selected:
            self._selected.remove(item_id)
            return False
        if len(self._selected) >= MAX_COMPARE:
            return False
        self._selected.append(item_id)
        return True

    def prune(self, history: HistoryStore) -> None:
        """Forget ids that were deleted from history."""
        known = {item.id for item in history.items}
        self._selected = [item_id for item_id in self._selected if item_id in known]


__all__ = [
    "HISTORY_KEY",
    "MAX_COMPARE",
    "MIN_COMPARE",
    "LocalStore",
    "decode_history",
    "encode_history",
    "HistoryStore",
    "ComparisonSelection",
]
