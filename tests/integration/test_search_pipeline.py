"""
End-to-end search pipeline: MemoService -> QdrantMemoStore (in-memory) -> SearchService.

Embeddings come from the deterministic topic embedder in conftest, so
"invoice", "billing" and "payment" land on the same direction.
"""

import asyncio

import pytest

from memos_service.config import SearchSettings, Settings
from memos_service.errors import StoreError
from memos_service.shared_services import ServiceManager


@pytest.fixture
async def manager(fake_embedder):
    manager = ServiceManager(Settings(), embedder=fake_embedder)
    await manager.initialize()
    yield manager
    await manager.close()


async def create(manager, owner_id="owner-1", **fields):
    fields.setdefault("author_role", "user")
    return await manager.memo_service.create_memo(owner_id, fields)


class TestHybridRanking:
    @pytest.mark.asyncio
    async def test_semantic_match_without_keyword(self, manager):
        word = await create(manager, content="Please review the invoice")
        semantic = await create(manager, content="billing run for march")
        await create(manager, content="walk the dog")

        results = await manager.search_service.search("owner-1", "invoice")

        assert [r.memo.id for r in results] == [word.id, semantic.id]
        assert results[1].debug_info["keyword"] == 0.0
        assert results[1].debug_info["semantic"] == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_owner_isolation(self, manager):
        await create(manager, owner_id="owner-2", content="the invoice")
        assert await manager.search_service.search("owner-1", "invoice") == []

    @pytest.mark.asyncio
    async def test_hard_filters(self, manager):
        finance = await create(manager, content="the invoice", tags=["finance"], session_id="s1")
        await create(manager, content="the invoice", tags=["travel"], session_id="s1")
        await create(manager, content="the invoice", tags=["finance"], session_id="s2")
        await create(manager, content="the invoice", tags=["finance"], session_id="s1", author_role="agent")

        results = await manager.search_service.search(
            "owner-1", "invoice", filters={"session_id": "s1", "tags": ["finance"], "author_role": "user"}
        )

        assert [r.memo.id for r in results] == [finance.id]
        assert results[0].debug_info["tag"] == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_popularity_sort_uses_access_counts(self, manager):
        rare = await create(manager, content="the invoice")
        popular = await create(manager, content="the invoice")
        for _ in range(3):
            await manager.memo_service.get_memo("owner-1", popular.id)

        results = await manager.search_service.search(
            "owner-1", "invoice", sort_by="popularity", filters={"include_popular": True}
        )

        assert [r.memo.id for r in results] == [popular.id, rare.id]
        assert results[0].memo.access_count == 3

    @pytest.mark.asyncio
    async def test_embedding_outage_then_backfill(self, manager, fake_embedder):
        fake_embedder.fail = True
        memo = await create(manager, content="billing run for march")
        assert memo.has_embedding is False

        # Neither side has an embedding; nothing clears the threshold
        assert await manager.search_service.search("owner-1", "invoice") == []

        fake_embedder.fail = False
        result = await manager.memo_service.regenerate_embeddings(batch_size=10)
        assert result == {"processed": 1, "succeeded": 1, "failed": 0}

        results = await manager.search_service.search("owner-1", "invoice")
        assert [r.memo.id for r in results] == [memo.id]

    @pytest.mark.asyncio
    async def test_backfill_does_not_overwrite_edited_memo(self, manager, fake_embedder, topic_vector):
        fake_embedder.fail = True
        memo = await create(manager, content="walk the dog")
        fake_embedder.fail = False

        # The backfill embeds the old text slowly while the memo is edited
        fake_embedder.delay = 0.2
        backfill = asyncio.create_task(manager.memo_service.regenerate_embeddings(batch_size=10))
        await asyncio.sleep(0.05)
        fake_embedder.delay = None
        await manager.memo_service.update_memo("owner-1", memo.id, {"content": "pay the invoice"})

        result = await backfill
        assert result["succeeded"] == 0

        stored = await manager.store.get("owner-1", memo.id)
        assert stored.content == "pay the invoice"
        assert stored.embedding == pytest.approx(topic_vector("pay the invoice"))


class TestCacheConsistency:
    @pytest.mark.asyncio
    async def test_mutations_invalidate_cached_results(self, manager):
        first = await create(manager, content="the invoice")
        assert [r.memo.id for r in await manager.search_service.search("owner-1", "invoice")] == [first.id]

        second = await create(manager, content="another invoice")
        ids = [r.memo.id for r in await manager.search_service.search("owner-1", "invoice")]
        assert ids == [first.id, second.id]

        await manager.memo_service.update_memo("owner-1", first.id, {"content": "walk the dog"})
        ids = [r.memo.id for r in await manager.search_service.search("owner-1", "invoice")]
        assert ids == [second.id]

        await manager.memo_service.delete_memo("owner-1", second.id)
        assert await manager.search_service.search("owner-1", "invoice") == []

    @pytest.mark.asyncio
    async def test_repeated_query_is_served_from_cache(self, manager, fake_embedder):
        await create(manager, content="the invoice", tags=["finance", "q3"])
        await manager.search_service.search("owner-1", "invoice", filters={"tags": ["q3", "finance"]})
        calls = len(fake_embedder.calls)

        await manager.search_service.search("owner-1", "Invoice ", filters={"tags": ["finance", "q3"]})

        assert len(fake_embedder.calls) == calls
        assert (await manager.search_service.cache_stats())["hits"] == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_not_cached(self, manager, monkeypatch):
        await create(manager, content="the invoice")

        async def broken(*args, **kwargs):
            raise StoreError("store offline")

        monkeypatch.setattr(manager.store, "query_records", broken)
        with pytest.raises(StoreError):
            await manager.search_service.search("owner-1", "invoice")
        monkeypatch.undo()

        assert len(await manager.search_service.search("owner-1", "invoice")) == 1


class TestPushdown:
    @pytest.mark.asyncio
    async def test_pushdown_matches_local_scoring(self, fake_embedder):
        local = ServiceManager(Settings(), embedder=fake_embedder)
        pushed = ServiceManager(
            Settings(search=SearchSettings(semantic_pushdown=True)), embedder=fake_embedder
        )
        await local.initialize()
        await pushed.initialize()
        try:
            for manager in (local, pushed):
                await create(manager, content="Please review the invoice")
                await create(manager, content="billing run for march")
                await create(manager, content="walk the dog")

            expected = await local.search_service.search("owner-1", "invoice")
            actual = await pushed.search_service.search("owner-1", "invoice")

            assert [r.memo.id for r in actual] == [r.memo.id for r in expected]
            for a, e in zip(actual, expected, strict=True):
                assert a.relevance_score == pytest.approx(e.relevance_score, abs=1e-4)
        finally:
            await local.close()
            await pushed.close()
