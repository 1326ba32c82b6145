"""
Per-video cache of detection results.

Every video's last result is kept for one day so re-opening a video does not
query the model again. The whole cache lives under a single store key and is
rewritten on every change; a sweep of expired entries runs at most once per
TTL unless forced.

Storage problems are logged and treated as an empty cache: a broken store must
never fail a detection run.
"""

import json
import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

logger = logging.getLogger(__name__)

CACHE_KEY = "videoAdGuard_detectionCache"
LAST_CLEANUP_KEY = "videoAdGuard_lastCleanupTime"
CACHE_TTL_MS = 24 * 60 * 60 * 1000
CLEANUP_INTERVAL_MS = CACHE_TTL_MS


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_ms(value: Any) -> int | None:
    """Epoch milliseconds from a stored value, None when it is not a number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return int(value)


class KeyValueStore(Protocol):
    def get(self, keys: Iterable[str]) -> dict[str, Any]: ...

    def set(self, items: dict[str, Any]) -> None: ...

    def remove(self, keys: Iterable[str]) -> None: ...


class MemoryStore:
    """In-process store; values are deep-copied through JSON like a real store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: json.loads(self._data[k]) for k in keys if k in self._data}

    def set(self, items: dict[str, Any]) -> None:
        for k, v in items.items():
            self._data[k] = json.dumps(v)

    def remove(self, keys: Iterable[str]) -> None:
        for k in keys:
            self._data.pop(k, None)


class JsonFileStore:
    """Key-value store backed by one JSON file, written atomically."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            # A corrupt file is treated as empty and overwritten on next set()
            logger.warning("store: ignoring unreadable %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        data = self._read()
        return {k: data[k] for k in keys if k in data}

    def set(self, items: dict[str, Any]) -> None:
        data = self._read()
        data.update(items)
        self._write(data)

    def remove(self, keys: Iterable[str]) -> None:
        data = self._read()
        for k in keys:
            data.pop(k, None)
        self._write(data)


@dataclass
class CacheEntry:
    exist: bool
    good_name: list[str] = field(default_factory=list)
    ad_time_ranges: list[list[float]] = field(default_factory=list)
    is_detection_confident: bool = False
    created_at: int = 0

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "CacheEntry":
        return CacheEntry(
            exist=bool(d.get("exist", False)),
            good_name=list(d.get("good_name") or []),
            ad_time_ranges=[[float(s), float(e)] for s, e in d.get("adTimeRanges") or []],
            # Entries written before confidence existed never auto-skip
            is_detection_confident=bool(d.get("isDetectionConfident", False)),
            created_at=int(d.get("createdAt", 0) or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "exist": self.exist,
            "good_name": list(self.good_name),
            "adTimeRanges": [[float(s), float(e)] for s, e in self.ad_time_ranges],
            "isDetectionConfident": self.is_detection_confident,
            "createdAt": int(self.created_at),
        }


@dataclass(frozen=True)
class CacheStats:
    total: int = 0
    expired: int = 0
    valid: int = 0
    size: int = 0
    last_cleanup: int = 0
    next_cleanup: int = 0


class DetectionCache:
    """TTL cache of detection results keyed by the raw video id."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_ms: int = CACHE_TTL_MS,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.ttl_ms = ttl_ms
        self.cleanup_interval_ms = ttl_ms
        self.now_ms = now_ms

    def _load_all(self) -> dict[str, dict[str, Any]]:
        try:
            raw = self.store.get([CACHE_KEY]).get(CACHE_KEY)
        except Exception as e:
            logger.warning("cache: failed to read: %s", e)
            return {}
        return raw if isinstance(raw, dict) else {}

    def _save_all(self, cache: dict[str, dict[str, Any]]) -> None:
        try:
            self.store.set({CACHE_KEY: cache})
        except Exception as e:
            logger.warning("cache: failed to write: %s", e)

    def _last_cleanup(self) -> int:
        try:
            value = self.store.get([LAST_CLEANUP_KEY]).get(LAST_CLEANUP_KEY)
        except Exception as e:
            logger.warning("cache: failed to read last cleanup time: %s", e)
            return 0
        return _as_ms(value) or 0

    def _set_last_cleanup(self, timestamp: int) -> None:
        try:
            self.store.set({LAST_CLEANUP_KEY: timestamp})
        except Exception as e:
            logger.warning("cache: failed to record cleanup time: %s", e)

    def _is_expired(self, item: dict[str, Any], now: int) -> bool:
        created = _as_ms(item.get("createdAt"))
        # An entry without a usable timestamp counts as expired
        return created is None or now - created > self.ttl_ms

    def get(self, key: str) -> CacheEntry | None:
        cache = self._load_all()
        item = cache.get(key)
        if not isinstance(item, dict):
            logger.debug("cache: miss for %s", key)
            return None
        if self._is_expired(item, self.now_ms()):
            logger.info("cache: entry for %s expired, evicting", key)
            del cache[key]
            self._save_all(cache)
            return None
        try:
            entry = CacheEntry.from_dict(item)
        except (TypeError, ValueError) as e:
            logger.warning("cache: unreadable entry for %s: %s", key, e)
            return None
        logger.info("cache: hit for %s", key)
        return entry

    def save(
        self,
        key: str,
        exist: bool,
        good_name: list[str],
        ad_time_ranges: list[list[float]],
        is_detection_confident: bool = False,
    ) -> CacheEntry:
        entry = CacheEntry(
            exist=exist,
            good_name=list(good_name),
            ad_time_ranges=[[float(s), float(e)] for s, e in ad_time_ranges],
            is_detection_confident=is_detection_confident,
            created_at=self.now_ms(),
        )
        cache = self._load_all()
        cache[key] = entry.to_dict()
        self._save_all(cache)
        logger.info("cache: saved result for %s", key)
        return entry

    def update_ad_time_ranges(self, key: str, ad_time_ranges: list[list[float]]) -> None:
        """Write manually adjusted ranges back onto an existing entry."""
        cache = self._load_all()
        item = cache.get(key)
        if not isinstance(item, dict):
            logger.info("cache: no entry for %s, skipping range update", key)
            return
        item["adTimeRanges"] = [[float(s), float(e)] for s, e in ad_time_ranges]
        item["exist"] = len(ad_time_ranges) > 0
        item["createdAt"] = self.now_ms()
        self._save_all(cache)
        logger.info("cache: synced adjusted ranges for %s", key)

    def delete(self, key: str) -> None:
        cache = self._load_all()
        if key in cache:
            del cache[key]
            self._save_all(cache)
            logger.info("cache: deleted %s", key)

    def clear_all(self) -> None:
        try:
            self.store.remove([CACHE_KEY])
        except Exception as e:
            logger.warning("cache: failed to clear: %s", e)

    def clean_expired(self) -> int:
        """Sweep expired entries, at most once per cleanup interval."""
        if self.now_ms() - self._last_cleanup() <= self.cleanup_interval_ms:
            logger.debug("cache: last sweep less than a day ago, skipping")
            return 0
        return self.force_clean_expired()

    def force_clean_expired(self) -> int:
        """Sweep expired entries now. Returns how many were removed."""
        now = self.now_ms()
        cache = self._load_all()
        kept = {k: v for k, v in cache.items() if isinstance(v, dict) and not self._is_expired(v, now)}
        removed = len(cache) - len(kept)
        self._save_all(kept)
        self._set_last_cleanup(now)
        logger.info("cache: sweep removed %d expired entr%s", removed, "y" if removed == 1 else "ies")
        return removed

    def stats(self) -> CacheStats:
        cache = self._load_all()
        last_cleanup = self._last_cleanup()
        now = self.now_ms()
        expired = sum(1 for v in cache.values() if not isinstance(v, dict) or self._is_expired(v, now))
        return CacheStats(
            total=len(cache),
            expired=expired,
            valid=len(cache) - expired,
            size=len(json.dumps(cache)),
            last_cleanup=last_cleanup,
            next_cleanup=last_cleanup + self.cleanup_interval_ms,
        )
