"""Extraction cache: a single serialized JSON blob keyed by content hash, 7-day TTL, 50 entries."""
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 7 * 24 * 60 * 60
MAX_ENTRIES = 50
EVICT_BATCH = 10


def content_hash(content: str) -> str:
    """32-bit rolling string hash rendered as hex. Not cryptographic; collisions are tolerated."""
    h = 0
    for ch in content:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(h, "x") if h >= 0 else "-" + format(-h, "x")


def url_cache_key(url: str) -> str:
    return f"url_{content_hash(url)}"


def file_cache_key(name: str, size: int) -> str:
    return f"file_{content_hash(f'{name}_{size}')}"


class ContentCache:
    """Time-boxed, size-bounded cache of extraction results.

    The whole cache lives in one serialized blob that is read, modified and
    written back on every call, either a JSON file or an in-memory string.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_entries: int = MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path) if path else None
        self._blob: str | None = None
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock

    def _read(self) -> dict[str, dict[str, Any]]:
        try:
            if self._path is not None:
                raw = self._path.read_text(encoding="utf-8") if self._path.exists() else None
            else:
                raw = self._blob
            return json.loads(raw) if raw else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Cache read error: %s", e)
            return {}

    def _write(self, cache: dict[str, dict[str, Any]]) -> None:
        raw = json.dumps(cache)
        try:
            if self._path is not None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.write_text(raw, encoding="utf-8")
            else:
                self._blob = raw
        except OSError as e:
            logger.warning("Cache write error: %s", e)

    def get(self, key: str) -> Any | None:
        cache = self._read()
        entry = cache.get(key)
        if not entry:
            return None
        if self._clock() - entry.get("timestamp", 0) > self.ttl_seconds:
            del cache[key]
            self._write(cache)
            return None
        return entry.get("data")

    def set(self, key: str, data: Any, hash_: str | None = None) -> None:
        cache = self._read()
        if len(cache) >= self.max_entries:
            oldest = sorted(cache, key=lambda k: cache[k].get("timestamp", 0))
            for k in oldest[:EVICT_BATCH]:
                del cache[k]
        cache[key] = {"data": data, "timestamp": self._clock(), "hash": hash_ or key}
        self._write(cache)

    def clear(self) -> None:
        self._write({})

    def __len__(self) -> int:
        return len(self._read())
