"""
HTTP API tests through FastAPI's TestClient.

The application runs its real lifespan against an in-memory Qdrant and the
deterministic topic embedder.
"""

import pytest
from fastapi.testclient import TestClient

from memos_service.config import Settings
from memos_service.errors import StoreError
from memos_service.shared_services import ServiceManager
from memos_service.web.app import create_app

OWNER = {"X-Owner-Id": "owner-1"}


@pytest.fixture
def manager(fake_embedder):
    return ServiceManager(Settings(), embedder=fake_embedder)


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as client:
        yield client


def create_memo(client, headers=OWNER, **body):
    body.setdefault("author_role", "user")
    response = client.post("/memos", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestMemoEndpoints:
    def test_create_and_get(self, client):
        created = create_memo(client, content="Pay the invoice", summary="billing", tags=["Finance"], importance=0.7)

        assert created["id"] == 1
        assert created["tags"] == ["finance"]
        assert created["has_embedding"] is True
        assert "embedding" not in created

        fetched = client.get(f"/memos/{created['id']}", headers=OWNER)
        assert fetched.status_code == 200
        assert fetched.json()["access_count"] == 1

    def test_missing_owner_header(self, client):
        response = client.post("/memos", json={"content": "x", "author_role": "user"})
        assert response.status_code == 401

    def test_validation_error_is_400(self, client):
        response = client.post("/memos", json={"content": "x", "author_role": "robot"}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "author_role" in response.json()["detail"]

    def test_not_found(self, client):
        response = client.get("/memos/999", headers=OWNER)
        assert response.status_code == 404
        assert response.json()["id"] == 999

    def test_other_owner_cannot_read(self, client):
        created = create_memo(client, content="private")
        response = client.get(f"/memos/{created['id']}", headers={"X-Owner-Id": "owner-2"})
        assert response.status_code == 404

    def test_list(self, client):
        for i in range(3):
            create_memo(client, content=f"memo {i}", session_id="s1")
        create_memo(client, content="elsewhere", session_id="s2")

        response = client.get("/memos", params={"session_id": "s1", "limit": 2}, headers=OWNER)
        body = response.json()
        assert body["count"] == 2
        assert [m["content"] for m in body["memos"]] == ["memo 2", "memo 1"]

    def test_update(self, client):
        created = create_memo(client, content="draft")
        response = client.patch(f"/memos/{created['id']}", json={"content": "final", "importance": 0.2}, headers=OWNER)

        assert response.status_code == 200
        assert response.json()["content"] == "final"
        assert response.json()["importance"] == 0.2

    def test_empty_update_is_400(self, client):
        created = create_memo(client, content="draft")
        response = client.patch(f"/memos/{created['id']}", json={}, headers=OWNER)
        assert response.status_code == 400

    def test_delete(self, client):
        created = create_memo(client, content="bye")
        assert client.delete(f"/memos/{created['id']}", headers=OWNER).status_code == 200
        assert client.delete(f"/memos/{created['id']}", headers=OWNER).status_code == 404

    def test_regenerate_embeddings(self, client, fake_embedder):
        fake_embedder.fail = True
        created = create_memo(client, content="billing later")
        assert created["has_embedding"] is False
        fake_embedder.fail = False

        response = client.post("/memos/regenerate-embeddings", params={"batch_size": 5}, headers=OWNER)
        assert response.json() == {"processed": 1, "succeeded": 1, "failed": 0}


class TestSearchEndpoints:
    def test_search(self, client):
        word = create_memo(client, content="Please review the invoice")
        substring = create_memo(client, content="invoices overview", importance=0.0)
        create_memo(client, content="walk the dog")

        response = client.post("/search", json={"query": "invoice"}, headers=OWNER)

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert [r["id"] for r in body["results"]] == [word["id"], substring["id"]]
        assert "relevance_score" not in body["results"][0]

    def test_debug_scores(self, client):
        create_memo(client, content="the invoice")
        body = client.post("/search", json={"query": "invoice", "debug": True}, headers=OWNER).json()
        result = body["results"][0]
        assert result["relevance_score"] == pytest.approx(0.8)
        assert result["score_breakdown"]["keyword_match"] == "word"

    def test_filters_and_sort(self, client):
        create_memo(client, content="old invoice", tags=["finance"])
        newer = create_memo(client, content="new invoice", tags=["finance"])
        create_memo(client, content="travel invoice", tags=["travel"])

        body = client.post(
            "/search",
            json={"query": "invoice", "filters": {"tags": ["finance"]}, "sort_by": "recency", "limit": 1},
            headers=OWNER,
        ).json()

        assert [r["id"] for r in body["results"]] == [newer["id"]]

    @pytest.mark.parametrize(
        "body",
        [
            {"query": "a"},
            {"query": "x" * 501},
            {"query": "invoice", "sort_by": "alphabetical"},
            {"query": "invoice", "limit": 0},
            {"query": "invoice", "limit": 1000},
            {"query": "invoice", "filters": {"min_importance": 2}},
        ],
    )
    def test_invalid_search(self, client, body):
        assert client.post("/search", json=body, headers=OWNER).status_code == 400

    def test_store_outage_is_503(self, client, manager, monkeypatch):
        async def broken(*args, **kwargs):
            raise StoreError("store offline")

        monkeypatch.setattr(manager.store, "query_records", broken)
        response = client.post("/search", json={"query": "invoice"}, headers=OWNER)
        assert response.status_code == 503

    def test_embedding_outage_still_searches(self, client, fake_embedder):
        create_memo(client, content="the invoice")
        fake_embedder.fail = True
        body = client.post("/search", json={"query": "invoice"}, headers=OWNER).json()
        assert body["count"] == 1

    def test_cache_endpoints(self, client):
        create_memo(client, content="the invoice")
        client.post("/search", json={"query": "invoice"}, headers=OWNER)
        client.post("/search", json={"query": "invoice"}, headers=OWNER)

        stats = client.get("/search/cache/stats", headers=OWNER).json()
        assert stats["enabled"] is True
        assert stats["hits"] == 1

        cleared = client.delete("/search/cache", headers=OWNER).json()
        assert cleared == {"success": True, "cleared": 1}

    def test_cache_stats_cover_only_the_caller(self, client):
        other = {"X-Owner-Id": "owner-2"}
        create_memo(client, content="the invoice")
        create_memo(client, headers=other, content="the payment")
        client.post("/search", json={"query": "invoice"}, headers=OWNER)
        client.post("/search", json={"query": "payment"}, headers=other)
        client.post("/search", json={"query": "payment"}, headers=other)

        stats = client.get("/search/cache/stats", headers=OWNER).json()
        assert stats["owner_id"] == "owner-1"
        assert stats["total_entries"] == 1
        assert stats["hits"] == 0
        assert stats["misses"] == 1
        assert "evictions" not in stats

        # Health keeps the process-wide view
        health = client.get("/health").json()
        assert health["cache"]["total_entries"] == 2
        assert health["cache"]["hits"] == 1

    def test_analytics(self, client):
        client.post("/search", json={"query": "invoice"}, headers=OWNER)
        client.post("/search", json={"query": "payment"}, headers={"X-Owner-Id": "owner-2"})

        analytics = client.get("/search/analytics", headers=OWNER).json()
        assert analytics["total_searches"] == 1
        assert analytics["popular_queries"] == [{"query": "invoice", "count": 1}]


class TestHealth:
    def test_healthy(self, client):
        create_memo(client, content="x")
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["store"]["total_memos"] == 1
        assert body["cache"]["enabled"] is True

    def test_store_down(self, client, manager, monkeypatch):
        async def broken():
            raise StoreError("store offline")

        monkeypatch.setattr(manager.store, "get_stats", broken)
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_not_initialized(self):
        app = create_app(ServiceManager(Settings()))
        # Without entering the lifespan the services are never started
        response = TestClient(app).get("/health")
        assert response.status_code == 503
