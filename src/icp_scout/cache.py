from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from . import core_store
from .models import AnalysisResult, normalize_identity

logger = logging.getLogger(__name__)

Identity = tuple[str, str, str, str]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def identity_key(business_name: str, city: str, uf: str, website: Optional[str]) -> str:
    return "::".join(normalize_identity(business_name, city, uf, website))


def _key(identity: Identity) -> str:
    return identity_key(*identity)


@dataclass(frozen=True)
class CacheEntry:
    result: AnalysisResult
    cached_at: datetime


class CacheStore(ABC):
    """Lookup of previously scored leads by normalized business identity."""

    def __init__(self, ttl_days: int = 30, clock: Clock = _utcnow) -> None:
        self.ttl = timedelta(days=ttl_days)
        self._clock = clock

    def is_expired(self, cached_at: datetime) -> bool:
        return self._clock() - cached_at > self.ttl

    @abstractmethod
    async def lookup(self, identity: Identity) -> Optional[CacheEntry]:
        raise NotImplementedError

    @abstractmethod
    async def store(
        self,
        identity: Identity,
        result: AnalysisResult,
        timestamp: Optional[datetime] = None,
        maps_url: str = "",
    ) -> None:
        raise NotImplementedError


class InMemoryCacheStore(CacheStore):
    def __init__(self, ttl_days: int = 30, clock: Clock = _utcnow) -> None:
        super().__init__(ttl_days, clock)
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def lookup(self, identity: Identity) -> Optional[CacheEntry]:
        entry = self._entries.get(_key(identity))
        if entry is None or self.is_expired(entry.cached_at):
            return None
        return entry

    async def store(
        self,
        identity: Identity,
        result: AnalysisResult,
        timestamp: Optional[datetime] = None,
        maps_url: str = "",
    ) -> None:
        self._entries[_key(identity)] = CacheEntry(result=result, cached_at=timestamp or self._clock())


class SqliteCacheStore(CacheStore):
    def __init__(self, db_path: Path, ttl_days: int = 30, clock: Clock = _utcnow) -> None:
        super().__init__(ttl_days, clock)
        self.db_path = db_path
        core_store.ensure_store(db_path)

    def _lookup_sync(self, key: str) -> Optional[CacheEntry]:
        with core_store.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT result_json, cached_at FROM lead_cache WHERE identity_key = ?",
                [key],
            ).fetchone()
        if row is None:
            return None
        cached_at = datetime.fromisoformat(row["cached_at"])
        if self.is_expired(cached_at):
            return None
        return CacheEntry(result=AnalysisResult.model_validate_json(row["result_json"]), cached_at=cached_at)

    def _store_sync(self, identity: Identity, result: AnalysisResult, cached_at: datetime, maps_url: str) -> None:
        business_name, city, uf, website = identity
        with core_store.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO lead_cache (
                    identity_key, business_name, city, uf, website, maps_url,
                    icp_level, faturamento_nivel, result_json, cached_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(identity_key) DO UPDATE SET
                    maps_url=excluded.maps_url,
                    icp_level=excluded.icp_level,
                    faturamento_nivel=excluded.faturamento_nivel,
                    result_json=excluded.result_json,
                    cached_at=excluded.cached_at
                """,
                [
                    _key(identity),
                    business_name,
                    city,
                    uf,
                    website,
                    maps_url,
                    result.icp_level,
                    result.faturamento_nivel,
                    result.model_dump_json(),
                    cached_at.isoformat(),
                ],
            )
            conn.commit()

    async def lookup(self, identity: Identity) -> Optional[CacheEntry]:
        return await asyncio.to_thread(self._lookup_sync, _key(identity))

    async def store(
        self,
        identity: Identity,
        result: AnalysisResult,
        timestamp: Optional[datetime] = None,
        maps_url: str = "",
    ) -> None:
        await asyncio.to_thread(self._store_sync, identity, result, timestamp or self._clock(), maps_url)

    def purge_expired(self) -> int:
        cutoff = (self._clock() - self.ttl).isoformat()
        with core_store.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM lead_cache WHERE cached_at < ?", [cutoff])
            conn.commit()
        return cursor.rowcount


class FailSoftCache(CacheStore):
    """Wraps a store so that backend failures degrade to cache misses."""

    def __init__(self, inner: CacheStore) -> None:
        super().__init__()
        self.inner = inner
        self.ttl = inner.ttl

    async def lookup(self, identity: Identity) -> Optional[CacheEntry]:
        try:
            return await self.inner.lookup(identity)
        except Exception:
            logger.warning("[CACHE] lookup failed for %s, treating as miss", identity[0], exc_info=True)
            return None

    async def store(
        self,
        identity: Identity,
        result: AnalysisResult,
        timestamp: Optional[datetime] = None,
        maps_url: str = "",
    ) -> None:
        try:
            await self.inner.store(identity, result, timestamp, maps_url)
        except Exception:
            logger.warning("[CACHE] store failed for %s", identity[0], exc_info=True)
