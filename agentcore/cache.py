"""
In-process response cache with single-flight.

Keys are fingerprints of the form ``<agentType>:<sha256>`` so a whole agent
type can be purged by prefix. Concurrent misses for one fingerprint share a
single loader task; waiters await it through ``asyncio.shield`` so a caller's
deadline never cancels the shared call.
"""
import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from agentcore.config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS
from agentcore.db.models import CacheEntry

logger = logging.getLogger(__name__)

_MISSING = object()


def _strip_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_strip_none(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """Deterministic JSON: sorted keys, no None-valued object members, compact separators."""
    return json.dumps(
        _strip_none(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def make_fingerprint(prefix: str, parts: Any) -> str:
    digest = hashlib.sha256(canonical_json(parts).encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


def prefix_of(fp: str) -> str:
    return fp.split(":", 1)[0]


@dataclass(frozen=True)
class CacheResult:
    value: Any
    hit: bool       # True when served from the cache or from another caller's in-flight load


def _consume_exception(task: "asyncio.Future") -> None:
    # Abandoned flights may fail with nobody awaiting them.
    if not task.cancelled():
        task.exception()


class ResponseCache:
    """Fingerprint → value map with TTL, a size bound and single-flight loads."""

    def __init__(
        self,
        ttl: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._pending: dict[str, asyncio.Future] = {}
        # Bumped by invalidate_by_prefix; flights started under an older generation don't store.
        self._generations: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(self, fp: str) -> Any:
        entry = self._entries.get(fp)
        if entry is None:
            return _MISSING
        if entry.expired(self._clock()):
            del self._entries[fp]
            return _MISSING
        return entry.value

    def get(self, fp: str) -> Optional[Any]:
        value = self._lookup(fp)
        return None if value is _MISSING else value

    def put(self, fp: str, value: Any) -> None:
        self._entries[fp] = CacheEntry(fingerprint=fp, value=value, inserted_at=self._clock(), ttl=self.ttl)
        self._entries.move_to_end(fp)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache size bound reached, evicted {evicted[:24]}")

    def invalidate_by_prefix(self, prefix: str) -> int:
        """Drop every entry and pending flight under ``prefix``. Returns entries removed."""
        self._generations[prefix] = self._generations.get(prefix, 0) + 1
        marker = f"{prefix}:"
        doomed = [fp for fp in self._entries if fp.startswith(marker)]
        for fp in doomed:
            del self._entries[fp]
        for fp in [fp for fp in self._pending if fp.startswith(marker)]:
            del self._pending[fp]
        logger.info(f"Cache invalidated for '{prefix}': {len(doomed)} entries removed")
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [fp for fp, entry in self._entries.items() if entry.expired(now)]
        for fp in expired:
            del self._entries[fp]
        return len(expired)

    def clear(self) -> None:
        for prefix in {prefix_of(fp) for fp in list(self._entries) + list(self._pending)}:
            self._generations[prefix] = self._generations.get(prefix, 0) + 1
        self._entries.clear()
        self._pending.clear()

    def count(self, prefix: Optional[str] = None) -> int:
        if prefix is None:
            return len(self._entries)
        marker = f"{prefix}:"
        return sum(1 for fp in self._entries if fp.startswith(marker))

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "pending": len(self._pending),
            "ttlSeconds": self.ttl,
            "maxEntries": self.max_entries,
        }

    # ─────────────────────────────────────────────
    # Single-flight
    # ─────────────────────────────────────────────

    async def fetch(
        self,
        fp: str,
        loader: Callable[[], Awaitable[Any]],
        skip_read: bool = False,
    ) -> CacheResult:
        """
        Return the cached value for ``fp`` or load it exactly once.

        With ``skip_read`` the cache and pending flights are bypassed, but the
        fresh value is still stored.
        """
        if not skip_read:
            value = self._lookup(fp)
            if value is not _MISSING:
                logger.debug(f"Cache hit {fp[:24]}")
                return CacheResult(value, hit=True)
            flight = self._pending.get(fp)
            if flight is not None:
                logger.debug(f"Joining in-flight load {fp[:24]}")
                return CacheResult(await asyncio.shield(flight), hit=True)

        generation = self._generations.get(prefix_of(fp), 0)
        flight = asyncio.ensure_future(self._load(fp, loader, generation))
        flight.add_done_callback(_consume_exception)
        if not skip_read:
            self._pending[fp] = flight
            flight.add_done_callback(lambda done: self._settle(fp, done))
        return CacheResult(await asyncio.shield(flight), hit=False)

    async def _load(self, fp: str, loader: Callable[[], Awaitable[Any]], generation: int) -> Any:
        value = await loader()
        if self._generations.get(prefix_of(fp), 0) == generation:
            self.put(fp, value)
        else:
            logger.debug(f"Discarding stale load for {fp[:24]}")
        return value

    def _settle(self, fp: str, flight: asyncio.Future) -> None:
        if self._pending.get(fp) is flight:
            del self._pending[fp]
