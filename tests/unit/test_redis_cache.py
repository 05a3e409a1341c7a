"""
Tests for the Redis search result cache.

Tests cover:
- Cache hit/miss scenarios
- TTL handed to Redis (SETEX)
- Capacity bound through the insertion-time index
- Owner invalidation via SCAN + DELETE
- Redis failures degrading to misses and no-ops
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from memos_service.cache.redis_cache import RedisSearchCache, deserialize_results, serialize_results
from memos_service.cache.search_cache import owner_prefix
from memos_service.models.memo import ScoredMemo


def scan_results(keys):
    async def _scan_iter(match=None):
        for key in keys:
            yield key

    return _scan_iter


@pytest.fixture
def mock_redis():
    with patch("memos_service.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
        "memos_service.cache.redis_cache.Redis"
    ) as mock_redis_cls:
        mock_pool = MagicMock()
        mock_pool.aclose = AsyncMock()
        mock_pool_cls.from_url.return_value = mock_pool

        redis = AsyncMock()
        redis.ping = AsyncMock()
        redis.get = AsyncMock(return_value=None)
        redis.setex = AsyncMock()
        redis.zadd = AsyncMock(return_value=1)
        redis.zrem = AsyncMock(return_value=0)
        redis.zcard = AsyncMock(return_value=0)
        redis.zpopmin = AsyncMock(return_value=[])
        redis.zremrangebyscore = AsyncMock(return_value=0)
        redis.delete = AsyncMock(return_value=0)
        redis.aclose = AsyncMock()
        redis.scan_iter = MagicMock(side_effect=scan_results([]))
        mock_redis_cls.return_value = redis
        yield redis


@pytest.fixture
def results(make_memo):
    memo = make_memo("the invoice", tags=["finance"], embedding=[0.5] * 1536)
    return [ScoredMemo(memo=memo, relevance_score=0.5, debug_info={"keyword": 0.4})]


class TestSerialization:
    def test_round_trip_keeps_embedding_flag(self, results):
        restored = deserialize_results(serialize_results(results))

        assert restored[0].memo.id == results[0].memo.id
        assert restored[0].memo.tags == ["finance"]
        assert restored[0].memo.created_at == results[0].memo.created_at
        assert restored[0].relevance_score == 0.5
        assert restored[0].debug_info == {"keyword": 0.4}
        # The vector itself is never serialised, the flag is
        assert restored[0].memo.embedding is None
        assert restored[0].memo.has_embedding is True


class TestRedisSearchCache:
    @pytest.mark.asyncio
    async def test_cache_miss_returns_none(self, mock_redis):
        cache = RedisSearchCache(url="redis://localhost:6379", ttl_seconds=300)
        await cache.initialize()
        try:
            assert await cache.get("search:owner-1:abc") is None
            mock_redis.get.assert_called_once_with("memos:cache:search:owner-1:abc")
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self, mock_redis, results):
        cache = RedisSearchCache(ttl_seconds=120)
        await cache.initialize()
        try:
            await cache.set("search:owner-1:abc", results)
            key, ttl, payload = mock_redis.setex.call_args.args
            assert key == "memos:cache:search:owner-1:abc"
            assert ttl == 120
            assert deserialize_results(payload)[0].memo.id == results[0].memo.id
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_cache_hit_returns_results(self, mock_redis, results):
        mock_redis.get = AsyncMock(return_value=serialize_results(results))
        cache = RedisSearchCache()
        await cache.initialize()
        try:
            cached = await cache.get("search:owner-1:abc")
            assert [r.memo.id for r in cached] == [results[0].memo.id]
            assert (await cache.stats())["hits"] == 1
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self, mock_redis):
        mock_redis.get = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = RedisSearchCache()
        await cache.initialize()
        try:
            assert await cache.get("search:owner-1:abc") is None
            assert (await cache.stats())["misses"] == 1
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_a_miss(self, mock_redis):
        mock_redis.get = AsyncMock(return_value="not json")
        cache = RedisSearchCache()
        await cache.initialize()
        try:
            assert await cache.get("search:owner-1:abc") is None
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_set_error_is_swallowed(self, mock_redis, results):
        mock_redis.setex = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = RedisSearchCache()
        await cache.initialize()
        try:
            await cache.set("search:owner-1:abc", results)
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_invalidate_owner_scans_owner_prefix(self, mock_redis):
        keys = ["memos:cache:search:owner-1:a", "memos:cache:search:owner-1:b"]
        mock_redis.scan_iter = MagicMock(side_effect=scan_results(keys))
        mock_redis.delete = AsyncMock(return_value=2)

        cache = RedisSearchCache()
        await cache.initialize()
        try:
            assert await cache.invalidate_owner("owner-1") == 2
            mock_redis.scan_iter.assert_called_once_with(match="memos:cache:search:owner-1:*")
            mock_redis.delete.assert_called_once_with(*keys)
            mock_redis.zrem.assert_called_once_with("memos:cache:index", *keys)
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_invalidate_encodes_owner_id(self, mock_redis):
        cache = RedisSearchCache()
        await cache.initialize()
        try:
            assert await cache.invalidate_owner("team*[1]") == 0
            mock_redis.scan_iter.assert_called_once_with(match="memos:cache:search:team%2A%5B1%5D:*")
            mock_redis.delete.assert_not_called()
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_invalidate_does_not_reach_longer_owner_ids(self, mock_redis):
        cache = RedisSearchCache()
        await cache.initialize()
        try:
            await cache.invalidate_owner("a")
            assert mock_redis.scan_iter.call_args.kwargs["match"] == "memos:cache:search:a:*"
            # Owner "a:b" lives under search:a%3Ab:, which that pattern cannot match
            assert owner_prefix("a:b") == "search:a%3Ab:"
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_invalidate_escapes_glob_characters_in_prefix(self, mock_redis):
        cache = RedisSearchCache(key_prefix="memos[x]:")
        await cache.initialize()
        try:
            await cache.invalidate_owner("owner-1")
            mock_redis.scan_iter.assert_called_once_with(match="memos\\[x\\]:search:owner-1:*")
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_set_indexes_insertion_time(self, mock_redis, results):
        cache = RedisSearchCache(ttl_seconds=120, max_entries=3, clock=lambda: 1000.0)
        await cache.initialize()
        try:
            await cache.set("search:owner-1:abc", results)

            mock_redis.zremrangebyscore.assert_awaited_once_with("memos:cache:index", "-inf", 880.0)
            mock_redis.zadd.assert_awaited_once_with("memos:cache:index", {"memos:cache:search:owner-1:abc": 1000.0})
            mock_redis.zpopmin.assert_not_called()
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_full_cache_evicts_earliest_inserted(self, mock_redis, results):
        mock_redis.zcard = AsyncMock(return_value=3)
        mock_redis.zpopmin = AsyncMock(return_value=[("memos:cache:search:owner-2:old", 900.0)])
        mock_redis.delete = AsyncMock(return_value=1)

        cache = RedisSearchCache(max_entries=3, clock=lambda: 1000.0)
        await cache.initialize()
        try:
            await cache.set("search:owner-1:new", results)

            mock_redis.zpopmin.assert_awaited_once_with("memos:cache:index", 1)
            mock_redis.delete.assert_awaited_once_with("memos:cache:search:owner-2:old")
            mock_redis.setex.assert_awaited_once()
            assert (await cache.stats())["evictions"] == 1
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_below_capacity_nothing_evicted(self, mock_redis, results):
        mock_redis.zcard = AsyncMock(return_value=2)
        cache = RedisSearchCache(max_entries=3)
        await cache.initialize()
        try:
            await cache.set("search:owner-1:new", results)
            mock_redis.zpopmin.assert_not_called()
            mock_redis.delete.assert_not_called()
        finally:
            await cache.close()

    def test_max_entries_must_be_positive(self):
        with pytest.raises(ValueError):
            RedisSearchCache(max_entries=0)

    @pytest.mark.asyncio
    async def test_owner_scoped_stats(self, mock_redis):
        mock_redis.scan_iter = MagicMock(side_effect=scan_results(["memos:cache:search:owner-1:a"]))
        cache = RedisSearchCache()
        await cache.initialize()
        try:
            stats = await cache.stats(owner_id="owner-1")
            assert stats["total_entries"] == 1
            mock_redis.scan_iter.assert_called_once_with(match="memos:cache:search:owner-1:*")
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_initialize_failure_propagates(self, mock_redis):
        mock_redis.ping = AsyncMock(side_effect=ConnectionError("refused"))
        cache = RedisSearchCache()
        with pytest.raises(ConnectionError):
            await cache.initialize()
        assert await cache.get("search:owner-1:abc") is None

    @pytest.mark.asyncio
    async def test_uninitialized_cache_is_inert(self, results):
        cache = RedisSearchCache()
        await cache.set("k", results)
        assert await cache.get("k") is None
        assert await cache.invalidate_owner("owner-1") == 0
        assert (await cache.stats())["connected"] is False
