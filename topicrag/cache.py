"""Search cache: one JSON file per rendered query, with a TTL."""

import hashlib
import json
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import log, CACHE_DIR

_UNSAFE = re.compile(r"[^a-z0-9]")


@dataclass
class CacheEntry:
    key: str
    payload: dict
    stored_at: float
    ttl: float

    def expired(self, now: float = None) -> bool:
        return (now if now is not None else time.time()) - self.stored_at > self.ttl


def cache_filename(key: str) -> str:
    """Readable, filesystem-safe file name for a query."""
    slug = _UNSAFE.sub("_", key.lower())[:120]
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
    return f"{slug}_{digest}_cache.json"


class SearchCache:
    """File-backed cache of raw search-provider responses.

    Entries older than their TTL are treated as absent by :meth:`get` and
    removed by :meth:`sweep_expired`.
    """

    def __init__(self, cache_dir: str = None, default_ttl: float = 2 * 86400, clock=time.time):
        self.dir = Path(cache_dir or CACHE_DIR)
        self.default_ttl = default_ttl
        self._clock = clock

    def _path(self, key: str) -> Path:
        return self.dir / cache_filename(key)

    @staticmethod
    def _load(path: Path) -> Optional[CacheEntry]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry(
                key=raw["key"],
                payload=raw["payload"],
                stored_at=float(raw["stored_at"]),
                ttl=float(raw["ttl"]),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.debug("unreadable cache file %s: %s", path, e)
            return None

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not path.exists():
            return None
        entry = self._load(path)
        if entry is None or entry.key != key or entry.expired(self._clock()):
            return None
        log.debug("cache hit: %s", key)
        return entry

    def put(self, key: str, payload: dict, ttl: float = None) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            payload=payload,
            stored_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        self.dir.mkdir(parents=True, exist_ok=True)
        record = {
            "key": entry.key,
            "payload": entry.payload,
            "stored_at": entry.stored_at,
            "ttl": entry.ttl,
            "meta": {
                "cache_version": "1.0",
                "organic_count": len(payload.get("organic") or []) if isinstance(payload, dict) else 0,
                "has_knowledge_graph": bool(isinstance(payload, dict) and payload.get("knowledge")),
            },
        }
        self._path(key).write_text(json.dumps(record, ensure_ascii=False, indent=2), encoding="utf-8")
        log.debug("cached search results for: %s", key)
        return entry

    def sweep_expired(self) -> int:
        """Delete expired or unreadable cache files. Returns how many were removed."""
        if not self.dir.exists():
            return 0
        now = self._clock()
        removed = 0
        for path in self.dir.glob("*_cache.json"):
            entry = self._load(path)
            if entry is None or entry.expired(now):
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    log.warning("could not remove cache file %s: %s", path, e)
        if removed:
            log.info("removed %d expired cache files", removed)
        return removed
