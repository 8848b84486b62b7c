"""
Single-flight, day-bucketed cache for generated readings.

One ``SingleFlightCache`` is built per producer (daily forecast, personal
forecast). It serves fresh entries without locking, lets only one coroutine
regenerate a given key at a time, refuses to call the upstream generator more
often than ``min_interval`` seconds, and snapshots its entries to a store so
they survive restarts.

Freshness is bucket based: an entry is fresh while the calendar day (in the
configured timezone) it was written on is still the current day.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Protocol
from zoneinfo import ZoneInfo

from errors import ConfigurationError, GenerationError, TimeoutWaitingForPeer
from text_utils import Envelope

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL = 60.0
DEFAULT_WAIT_TIMEOUT = 5.0
DEFAULT_RETENTION_BUCKETS = 3

Clock = Callable[[], datetime]
Generate = Callable[[], Awaitable[str]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def bucket_for(moment: datetime, tz: tzinfo) -> str:
    """Calendar day of ``moment`` in ``tz`` as ``YYYY-MM-DD``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date().isoformat()


def bucket_age(bucket: str, current: str) -> int:
    """Whole days between two buckets; unparseable buckets count as infinitely old."""
    try:
        return (date.fromisoformat(current) - date.fromisoformat(bucket)).days
    except ValueError:
        return 10 ** 6


def seconds_until_next_bucket(moment: datetime, tz: tzinfo) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(tz)
    midnight = datetime.combine(local.date() + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    return max(0, int((midnight - local).total_seconds()))


def make_cache_key(kind: str, bucket: str, *identity: str) -> str:
    """
    Compose a cache key from a producer kind, normalised identity parts and a
    time bucket, e.g. ``personal:1990-05-15:noon:en:2025-01-28``.
    """
    parts = [kind] + [str(part).strip().lower() for part in identity] + [bucket]
    return ":".join(parts)


@dataclass
class CacheEntry:
    key: str
    bucket: str
    payload: Envelope
    persisted_at: str
    authoritative: bool = True

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "bucket": self.bucket,
            "payload": self.payload.to_dict(),
            "persisted_at": self.persisted_at,
            "authoritative": self.authoritative,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            key=data["key"],
            bucket=data["bucket"],
            payload=Envelope.from_dict(data["payload"]),
            persisted_at=data["persisted_at"],
            authoritative=bool(data.get("authoritative", True)),
        )


@dataclass
class ThrottleState:
    """Monotonic time of the last upstream call made by one producer."""

    last_generation_at: Optional[float] = None

    def allows(self, now: float, min_interval: float) -> bool:
        if self.last_generation_at is None:
            return True
        return now - self.last_generation_at >= min_interval

    def record(self, now: float) -> None:
        self.last_generation_at = now


@dataclass
class CacheResult:
    envelope: Envelope
    cached: bool
    authoritative: bool = True


class CacheStore(Protocol):
    def load_all(self) -> Dict[str, CacheEntry]: ...

    def save_all(self, entries: Dict[str, CacheEntry]) -> None: ...


class MemoryCacheStore:
    """Keeps the snapshot in memory. Used by tests and for throwaway caches."""

    def __init__(self, entries: Optional[Dict[str, CacheEntry]] = None):
        self.snapshot: Dict[str, dict] = {
            key: entry.to_dict() for key, entry in (entries or {}).items()
        }
        self.saves = 0

    def load_all(self) -> Dict[str, CacheEntry]:
        return {key: CacheEntry.from_dict(data) for key, data in self.snapshot.items()}

    def save_all(self, entries: Dict[str, CacheEntry]) -> None:
        self.snapshot = {key: entry.to_dict() for key, entry in entries.items()}
        self.saves += 1


class JsonFileCacheStore:
    """
    One JSON document holding every entry of a producer.

    Writes go to a sibling temporary file that is then moved over the
    snapshot, so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path):
        self.path = Path(path)

    def load_all(self) -> Dict[str, CacheEntry]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Cache snapshot %s is unreadable, starting empty: %s", self.path, e)
            return {}

        if not isinstance(raw, dict):
            logger.warning("Cache snapshot %s has unexpected shape, starting empty", self.path)
            return {}

        entries = {}
        for key, data in raw.items():
            try:
                entries[key] = CacheEntry.from_dict(data)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Dropping malformed cache entry %s: %s", key, e)
        return entries

    def save_all(self, entries: Dict[str, CacheEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(
                {key: entry.to_dict() for key, entry in entries.items()},
                fh,
                ensure_ascii=False,
                indent=2,
            )
        os.replace(tmp_path, self.path)


class SingleFlightCache:
    """
    Day-bucketed cache with one regeneration in flight per key.

    ``extract`` turns raw generator text into an ``Envelope``; ``fallback``
    builds the static envelope served when the throttle refuses a call or a
    waiter gives up on its peer.
    """

    def __init__(
        self,
        name: str,
        store: CacheStore,
        extract: Callable[[str], Envelope],
        fallback: Callable[[], Envelope],
        *,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        retention_buckets: int = DEFAULT_RETENTION_BUCKETS,
        tz: tzinfo = timezone.utc,
        clock: Clock = utc_now,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.min_interval = min_interval
        self.wait_timeout = wait_timeout
        self.retention_buckets = retention_buckets
        self.tz = tz
        self.throttle = ThrottleState()
        self._store = store
        self._extract = extract
        self._fallback = fallback
        self._clock = clock
        self._timer = timer
        self._entries: Optional[Dict[str, CacheEntry]] = None
        self._inflight: Dict[str, asyncio.Future] = {}
        self._version = 0
        self._saved_version = 0
        self._save_lock = threading.Lock()

    # --- buckets and entries ---

    def current_bucket(self) -> str:
        return bucket_for(self._clock(), self.tz)

    def seconds_until_next_bucket(self) -> int:
        return seconds_until_next_bucket(self._clock(), self.tz)

    def _load(self) -> Dict[str, CacheEntry]:
        if self._entries is None:
            try:
                self._entries = self._store.load_all()
            except Exception as e:
                logger.warning("[%s] cache store failed to load, starting empty: %s", self.name, e)
                self._entries = {}
            logger.debug("[%s] loaded %d cache entries", self.name, len(self._entries))
        return self._entries

    def _snapshot(self):
        self._version += 1
        return self._version, dict(self._load())

    def _save_snapshot(self, version: int, snapshot: Dict[str, CacheEntry]) -> None:
        # Snapshots may finish out of order; an older one never replaces a newer one.
        with self._save_lock:
            if version <= self._saved_version:
                return
            try:
                self._store.save_all(snapshot)
            except OSError as e:
                logger.error("[%s] failed to persist cache snapshot: %s", self.name, e)
                return
            self._saved_version = version

    def _persist(self) -> None:
        self._save_snapshot(*self._snapshot())

    async def _persist_async(self) -> None:
        """Write the snapshot from a worker thread so the event loop keeps serving."""
        await asyncio.to_thread(self._save_snapshot, *self._snapshot())

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return (
            entry is not None
            and entry.authoritative
            and entry.bucket == self.current_bucket()
        )

    def peek(self, key: str) -> Optional[CacheEntry]:
        return self._load().get(key)

    def invalidate(self, key: str) -> bool:
        removed = self._load().pop(key, None) is not None
        if removed:
            logger.info("[%s] invalidated %s", self.name, key)
            self._persist()
        return removed

    def purge_older_than(self, retention_buckets: int) -> int:
        """Drop entries whose bucket is more than ``retention_buckets`` days old."""
        purged = self._drop_expired(retention_buckets)
        if purged:
            self._persist()
        return purged

    def _drop_expired(self, retention_buckets: int) -> int:
        entries = self._load()
        current = self.current_bucket()
        stale = [
            key for key, entry in entries.items()
            if bucket_age(entry.bucket, current) > retention_buckets
        ]
        for key in stale:
            del entries[key]
        if stale:
            logger.info("[%s] purged %d entries older than %d buckets", self.name, len(stale), retention_buckets)
        return len(stale)

    def stats(self) -> dict:
        entries = self._load()
        current = self.current_bucket()
        return {
            "name": self.name,
            "bucket": current,
            "entries": len(entries),
            "fresh_entries": sum(1 for entry in entries.values() if self.is_fresh(entry)),
            "in_flight": sorted(self._inflight),
            "last_generation_at": self.throttle.last_generation_at,
        }

    # --- reads ---

    async def get(self, key: str, generate: Generate) -> Envelope:
        result = await self.fetch(key, generate)
        return result.envelope

    async def fetch(self, key: str, generate: Generate, force: bool = False) -> CacheResult:
        """
        Return the envelope for ``key``, regenerating it through ``generate``
        when the stored entry is missing or stale (or ``force`` is set).

        Raises ``GenerationError`` or ``ConfigurationError`` when this call
        was the one regenerating and the generator failed.
        """
        entry = self._load().get(key)
        if not force and self.is_fresh(entry):
            logger.debug("[%s] cache hit %s", self.name, key)
            return CacheResult(entry.payload, cached=True)

        pending = self._inflight.get(key)
        if pending is not None:
            try:
                return await self._wait_for_peer(key, pending)
            except TimeoutWaitingForPeer as e:
                logger.warning("[%s] %s", self.name, e)
                return self._best_available(key)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        result = None
        try:
            result = await self._regenerate(key, generate)
            return result
        finally:
            # Waiters read None as "the peer failed".
            if not future.done():
                future.set_result(result)
            self._inflight.pop(key, None)

    async def _wait_for_peer(self, key: str, pending: asyncio.Future) -> CacheResult:
        logger.info("[%s] waiting for in-flight regeneration of %s", self.name, key)
        try:
            result = await asyncio.wait_for(asyncio.shield(pending), self.wait_timeout)
        except asyncio.TimeoutError:
            raise TimeoutWaitingForPeer(key, self.wait_timeout) from None
        if result is None:
            return self._best_available(key)
        return replace(result, cached=True)

    def _best_available(self, key: str) -> CacheResult:
        entry = self._load().get(key)
        if entry is not None:
            return CacheResult(entry.payload, cached=True, authoritative=self.is_fresh(entry))
        return CacheResult(self._fallback(), cached=False, authoritative=False)

    async def _regenerate(self, key: str, generate: Generate) -> CacheResult:
        now = self._timer()
        if not self.throttle.allows(now, self.min_interval):
            return await self._throttled(key)

        previous = self.throttle.last_generation_at
        self.throttle.record(now)
        started = time.monotonic()
        try:
            raw = await generate()
        except ConfigurationError:
            self.throttle.last_generation_at = previous
            raise
        except GenerationError as e:
            logger.error("[%s] regeneration of %s failed: %s", self.name, key, e)
            raise
        except Exception as e:
            logger.exception("[%s] regeneration of %s failed", self.name, key)
            raise GenerationError(f"Failed to generate {key}: {e}") from e

        envelope = self._extract(raw)
        self._store_entry(key, envelope, authoritative=True)
        self._drop_expired(self.retention_buckets)
        await self._persist_async()
        logger.info(
            "[%s] generated and cached %s in %d ms",
            self.name, key, int((time.monotonic() - started) * 1000),
        )
        return CacheResult(envelope, cached=False)

    async def _throttled(self, key: str) -> CacheResult:
        entry = self._load().get(key)
        if self.is_fresh(entry):
            # Only reachable on a forced refresh: keep serving the real entry.
            logger.info("[%s] throttled forced refresh of %s, serving cached entry", self.name, key)
            return CacheResult(entry.payload, cached=True)

        logger.info("[%s] throttled regeneration of %s, serving fallback", self.name, key)
        envelope = self._fallback()
        if entry is None:
            self._store_entry(key, envelope, authoritative=False)
            await self._persist_async()
        return CacheResult(envelope, cached=False, authoritative=False)

    def _store_entry(self, key: str, envelope: Envelope, authoritative: bool) -> None:
        self._load()[key] = CacheEntry(
            key=key,
            bucket=self.current_bucket(),
            payload=envelope,
            persisted_at=self._clock().isoformat(),
            authoritative=authoritative,
        )
