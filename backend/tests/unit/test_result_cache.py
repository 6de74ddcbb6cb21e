"""
Unit tests for the content-addressed result cache.

Covers:
- Lookup across equivalent URL forms
- First-writer-wins on concurrent stores
- Stale entry replacement (inactive or expired)
- Access accounting and statistics
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from tubelearn.db.models import CacheAccessLog, CacheEntry
from tubelearn.enums import CacheAccessType
from tubelearn.services.result_cache import ResultCache

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
SHORT_URL = "https://youtu.be/dQw4w9WgXcQ"


@pytest.fixture
def cache(session_maker, processing_config) -> ResultCache:
    return ResultCache(session_maker=session_maker, config=processing_config)


class TestStoreAndLookup:
    @pytest.mark.asyncio
    async def test_miss_on_empty_cache(self, cache):
        assert await cache.lookup(URL) is None

    @pytest.mark.asyncio
    async def test_store_then_lookup_equivalent_url(self, cache):
        stored = await cache.store(URL, {"summary": "x"}, metadata={"title": "Intro"})

        entry = await cache.lookup(SHORT_URL)

        assert stored.created is True
        assert entry is not None
        assert entry.id == stored.entry.id
        assert entry.result_payload == {"summary": "x"}
        assert entry.video_title == "Intro"
        assert entry.access_count == 1
        assert entry.expires_at is not None

    @pytest.mark.asyncio
    async def test_zero_ttl_never_expires(self, cache):
        stored = await cache.store(URL, {"summary": "x"}, ttl_days=0)

        assert stored.entry.expires_at is None

    @pytest.mark.asyncio
    async def test_store_logs_create_access(self, cache, session_maker):
        await cache.store(URL, {"summary": "x"}, requester="me@example.com")

        async with session_maker() as session:
            logs = (await session.execute(select(CacheAccessLog))).scalars().all()

        assert [log.access_type for log in logs] == [CacheAccessType.CREATE.value]
        assert logs[0].requester == "me@example.com"

    @pytest.mark.asyncio
    async def test_live_entry_is_not_overwritten(self, cache):
        first = await cache.store(URL, {"summary": "first"})
        second = await cache.store(SHORT_URL, {"summary": "second"})

        assert second.created is False
        assert second.entry.id == first.entry.id
        assert second.entry.result_payload == {"summary": "first"}

    @pytest.mark.asyncio
    async def test_concurrent_stores_keep_one_entry(self, cache, session_maker):
        results = await asyncio.gather(
            cache.store(URL, {"summary": "a"}),
            cache.store(SHORT_URL, {"summary": "b"}),
        )

        async with session_maker() as session:
            count = await session.scalar(select(func.count(CacheEntry.id)))

        assert count == 1
        assert sorted(r.created for r in results) == [False, True]
        assert results[0].entry.result_payload == results[1].entry.result_payload


class TestStaleEntries:
    @pytest.mark.asyncio
    async def test_deactivated_entry_misses_and_is_replaced(self, cache):
        first = await cache.store(URL, {"summary": "old"})

        assert await cache.deactivate(URL) is True
        assert await cache.lookup(URL) is None

        replaced = await cache.store(URL, {"summary": "new"})

        assert replaced.created is True
        assert replaced.entry.id == first.entry.id
        assert replaced.entry.result_payload == {"summary": "new"}
        assert replaced.entry.is_active is True

    @pytest.mark.asyncio
    async def test_expired_entry_misses(self, cache, session_maker):
        stored = await cache.store(URL, {"summary": "old"})
        async with session_maker() as session:
            await session.execute(
                update(CacheEntry)
                .where(CacheEntry.id == stored.entry.id)
                .values(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
            )
            await session.commit()

        assert await cache.lookup(URL) is None

    @pytest.mark.asyncio
    async def test_deactivate_unknown_url(self, cache):
        assert await cache.deactivate(URL) is False


class TestAccounting:
    @pytest.mark.asyncio
    async def test_record_access_increments_count(self, cache):
        stored = await cache.store(URL, {"summary": "x"})

        await cache.record_access(stored.entry, CacheAccessType.REUSE, requester="a@example.com")
        await cache.record_access(stored.entry, CacheAccessType.REUSE)

        entry = await cache.lookup(URL)
        assert entry.access_count == 3

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        stored = await cache.store(URL, {"summary": "x"})
        await cache.store("https://youtu.be/9bZkp7q19f0", {"summary": "y"})
        await cache.record_access(stored.entry, CacheAccessType.REUSE)
        await cache.deactivate("https://youtu.be/9bZkp7q19f0")

        stats = await cache.get_stats()

        assert stats == {
            "total_entries": 2,
            "active_entries": 1,
            "total_accesses": 3,
            "reuse_count": 1,
        }
