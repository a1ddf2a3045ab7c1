"""
Generation leases - TTL key store that deduplicates question generation.

acquire() is a conditional put-with-expiry: it succeeds only when no live
lease exists for the key. Leases are advisory; a crashed holder's lease
simply expires.
"""

import asyncio
import time
import uuid
from datetime import timedelta
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adaptive_assessment.engines.selection.buckets import bucket_signature
from adaptive_assessment.kernel.models.base import utc_now
from adaptive_assessment.kernel.models.generation_lease import GenerationLease
from adaptive_assessment.kernel.models.item import normalize_topic
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)


def generation_key(topic: str, buckets: Iterable[int]) -> str:
    """Dedup key: normalized topic plus the difficulty-bucket signature."""
    return f"{normalize_topic(topic)}|{bucket_signature(buckets)}"


class LeaseStore:
    """Contract for lease backends."""

    async def acquire(self, key: str, ttl_seconds: float) -> bool:
        raise NotImplementedError

    async def release(self, key: str) -> None:
        raise NotImplementedError

    async def sweep(self, max_age_seconds: float) -> int:
        """Remove leases acquired more than max_age_seconds ago."""
        raise NotImplementedError


class InMemoryLeaseStore(LeaseStore):
    """Single-process store. Key -> (acquired_at, expires_at) on the monotonic clock."""

    def __init__(self):
        self._data: Dict[str, Tuple[float, float]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, key: str, ttl_seconds: float) -> bool:
        async with self._lock:
            now = time.monotonic()
            current = self._data.get(key)
            if current is not None and current[1] > now:
                return False
            self._data[key] = (now, now + ttl_seconds)
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def sweep(self, max_age_seconds: float) -> int:
        async with self._lock:
            now = time.monotonic()
            stale = [k for k, (acquired, _) in self._data.items() if now - acquired > max_age_seconds]
            for k in stale:
                self._data.pop(k, None)
            return len(stale)

    def __contains__(self, key: str) -> bool:
        current = self._data.get(key)
        return current is not None and current[1] > time.monotonic()


class DatabaseLeaseStore(LeaseStore):
    """
    Lease table shared by every service instance.

    Each call runs in its own short transaction so a lease is visible to
    other instances immediately, independent of the caller's transaction.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        holder: Optional[str] = None,
    ):
        self._session_maker = session_maker
        self.holder = holder or uuid.uuid4().hex

    async def acquire(self, key: str, ttl_seconds: float) -> bool:
        now = utc_now()
        expires_at = now + timedelta(seconds=ttl_seconds)
        async with self._session_maker() as session:
            session.add(GenerationLease(
                key=key,
                holder=self.holder,
                acquired_at=now,
                expires_at=expires_at,
            ))
            try:
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()

            # Take over only an expired lease
            result = await session.execute(
                update(GenerationLease)
                .where(GenerationLease.key == key, GenerationLease.expires_at < now)
                .values(holder=self.holder, acquired_at=now, expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def release(self, key: str) -> None:
        async with self._session_maker() as session:
            await session.execute(delete(GenerationLease).where(GenerationLease.key == key))
            await session.commit()

    async def sweep(self, max_age_seconds: float) -> int:
        cutoff = utc_now() - timedelta(seconds=max_age_seconds)
        async with self._session_maker() as session:
            result = await session.execute(
                delete(GenerationLease).where(GenerationLease.acquired_at < cutoff)
            )
            await session.commit()
            if result.rowcount:
                logger.debug("Swept stale generation leases", extra={"count": result.rowcount})
            return result.rowcount or 0


async def run_lease_sweeper(
    store: LeaseStore,
    interval_seconds: float,
    max_age_seconds: float,
) -> None:
    """Periodic sweep loop; runs until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.sweep(max_age_seconds)
        except Exception:
            logger.exception("Generation lease sweep failed")
