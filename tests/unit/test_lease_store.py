"""Unit tests for the generation lease stores."""

import asyncio

import pytest
from sqlalchemy import select

from adaptive_assessment.engines.selection.lease_store import (
    DatabaseLeaseStore,
    InMemoryLeaseStore,
    run_lease_sweeper,
)
from adaptive_assessment.kernel.models import GenerationLease


class TestInMemoryLeaseStore:
    """Tests for the single-process store."""

    @pytest.mark.asyncio
    async def test_acquire_is_exclusive(self):
        store = InMemoryLeaseStore()
        assert await store.acquire("biology|2,3", 60) is True
        assert await store.acquire("biology|2,3", 60) is False
        assert await store.acquire("biology|3,4", 60) is True

    @pytest.mark.asyncio
    async def test_release(self):
        store = InMemoryLeaseStore()
        await store.acquire("k", 60)
        await store.release("k")
        assert "k" not in store
        assert await store.acquire("k", 60) is True

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken(self):
        store = InMemoryLeaseStore()
        await store.acquire("k", 0)
        assert "k" not in store
        assert await store.acquire("k", 60) is True

    @pytest.mark.asyncio
    async def test_sweep_by_age(self):
        store = InMemoryLeaseStore()
        await store.acquire("old", 600)
        await asyncio.sleep(0.02)
        await store.acquire("new", 600)

        assert await store.sweep(max_age_seconds=0.01) == 1
        assert "old" not in store
        assert "new" in store

    @pytest.mark.asyncio
    async def test_concurrent_acquire_single_winner(self):
        store = InMemoryLeaseStore()
        results = await asyncio.gather(*[store.acquire("k", 60) for _ in range(10)])
        assert results.count(True) == 1


class TestDatabaseLeaseStore:
    """Tests for the shared lease table (each call commits its own transaction)."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, session_maker):
        store = DatabaseLeaseStore(session_maker, holder="instance-a")
        other = DatabaseLeaseStore(session_maker, holder="instance-b")

        assert await store.acquire("biology|2,3", 60) is True
        assert await other.acquire("biology|2,3", 60) is False

        await store.release("biology|2,3")
        assert await other.acquire("biology|2,3", 60) is True

        async with session_maker() as session:
            lease = (await session.execute(select(GenerationLease))).scalar_one()
        assert lease.holder == "instance-b"

    @pytest.mark.asyncio
    async def test_expired_lease_taken_over(self, session_maker):
        store = DatabaseLeaseStore(session_maker, holder="instance-a")
        other = DatabaseLeaseStore(session_maker, holder="instance-b")

        assert await store.acquire("k", -1) is True
        assert await other.acquire("k", 60) is True

    @pytest.mark.asyncio
    async def test_sweep(self, session_maker):
        store = DatabaseLeaseStore(session_maker)
        await store.acquire("k", 600)

        assert await store.sweep(max_age_seconds=3600) == 0
        assert await store.sweep(max_age_seconds=-1) == 1
        assert await store.acquire("k", 60) is True


class TestLeaseSweeper:
    """Tests for the periodic sweep loop."""

    @pytest.mark.asyncio
    async def test_sweeper_runs_until_cancelled(self):
        store = InMemoryLeaseStore()
        await store.acquire("k", 600)

        task = asyncio.create_task(run_lease_sweeper(store, interval_seconds=0.01, max_age_seconds=0))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert "k" not in store
