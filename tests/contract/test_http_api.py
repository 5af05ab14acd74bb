"""Contract tests for the JSON HTTP surface"""

import httpx
import pytest
from starlette.applications import Starlette
from starlette.routing import Route

from bookfinder.api.books import BookApi, Services
from bookfinder.api.health import HealthApi
from bookfinder.config import config
from bookfinder.exceptions import PersistenceError

LEGACY = {"title": "Legacy", "author": "Unknown", "description": "Imported", "language": "English"}

DUNE = {
    "title": "Dune",
    "author": "Frank Herbert",
    "description": "Desert planet epic",
    "genre": "Science Fiction",
    "publishYear": 1965,
}


@pytest.fixture
def services(store, fake_embedder):
    return Services.build(store, fake_embedder)


@pytest.fixture
async def client(services):
    async def get_services() -> Services:
        return services

    routes = [
        Route(path, endpoint=endpoint, methods=methods)
        for api in (BookApi(get_services), HealthApi(get_services))
        for path, methods, endpoint in api.routes()
    ]
    app = Starlette(routes=routes)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def _create(client, **overrides) -> dict:
    response = await client.post("/api/books", json={**DUNE, **overrides})
    assert response.status_code == 201
    return response.json()


class TestBookCrud:
    @pytest.mark.asyncio
    async def test_create_returns_201_without_embedding(self, client, fake_embedder):
        response = await client.post("/api/books", json=DUNE)

        body = response.json()
        assert response.status_code == 201
        assert "embedding" not in body
        assert body["title"] == "Dune"
        assert body["publishYear"] == 1965
        assert body["language"] == "English"
        assert {"id", "createdAt", "updatedAt"} <= set(body)
        assert fake_embedder.calls == ["Dune. Desert planet epic"]

    @pytest.mark.asyncio
    async def test_create_missing_title(self, client, fake_embedder):
        payload = {key: value for key, value in DUNE.items() if key != "title"}

        response = await client.post("/api/books", json=payload)

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "title"
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_create_provider_failure(self, client, fake_embedder, store):
        fake_embedder.fail = True

        response = await client.post("/api/books", json=DUNE)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate embedding"}
        assert await store.count_books() == 0

    @pytest.mark.asyncio
    async def test_get_book(self, client):
        created = await _create(client)

        response = await client.get(f"/api/books/{created['id']}")

        assert response.status_code == 200
        assert response.json() == created

    @pytest.mark.asyncio
    async def test_get_unknown_book(self, client):
        response = await client.get("/api/books/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "Book not found"}

    @pytest.mark.asyncio
    async def test_list_books(self, client):
        await _create(client)
        await _create(client, title="Emma", author="Jane Austen", genre="Classic")

        everything = await client.get("/api/books")
        classics = await client.get("/api/books", params={"genre": "Classic"})
        paged = await client.get("/api/books", params={"limit": 1, "skip": 1})

        assert everything.json()["count"] == 2
        assert [b["title"] for b in everything.json()["books"]] == ["Emma", "Dune"]
        assert [b["title"] for b in classics.json()["books"]] == ["Emma"]
        assert [b["title"] for b in paged.json()["books"]] == ["Dune"]

    @pytest.mark.asyncio
    async def test_list_rejects_bad_pagination(self, client):
        response = await client.get("/api/books", params={"skip": -1})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_patch_genre_does_not_reembed(self, client, fake_embedder):
        created = await _create(client)

        response = await client.patch(f"/api/books/{created['id']}", json={"genre": "Classic"})

        assert response.status_code == 200
        assert response.json()["genre"] == "Classic"
        assert len(fake_embedder.calls) == 1

    @pytest.mark.asyncio
    async def test_patch_title_reembeds(self, client, fake_embedder):
        created = await _create(client)

        response = await client.patch(f"/api/books/{created['id']}", json={"title": "Dune II"})

        assert response.status_code == 200
        assert fake_embedder.calls[-1] == "Dune II. Desert planet epic"

    @pytest.mark.asyncio
    async def test_patch_rejects_null_title(self, client):
        created = await _create(client)

        response = await client.patch(f"/api/books/{created['id']}", json={"title": None})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_patch_unknown_book(self, client):
        response = await client.patch("/api/books/missing", json={"genre": "Classic"})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_book(self, client):
        created = await _create(client)

        response = await client.delete(f"/api/books/{created['id']}")
        again = await client.delete(f"/api/books/{created['id']}")

        assert response.status_code == 200
        assert response.json() == {"message": "Book deleted successfully"}
        assert again.status_code == 404


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_returns_ranked_results(self, client):
        await _create(client)
        await _create(client, title="Emma", author="Jane Austen", description="Matchmaking")

        response = await client.post(
            "/api/books/search", json={"query": "Dune. Desert planet epic", "limit": 1}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["query"] == "Dune. Desert planet epic"
        assert body["count"] == 1
        assert body["results"][0]["title"] == "Dune"
        assert body["results"][0]["similarityScore"] == pytest.approx(1.0, abs=1e-5)
        assert "embedding" not in body["results"][0]

    @pytest.mark.asyncio
    async def test_short_query_never_reaches_provider(self, client, fake_embedder):
        response = await client.post("/api/books/search", json={"query": "ab"})

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "query"
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 51, "ten"])
    async def test_limit_out_of_range(self, client, fake_embedder, limit):
        response = await client.post(
            "/api/books/search", json={"query": "space opera", "limit": limit}
        )

        assert response.status_code == 400
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_malformed_json(self, client):
        response = await client.post(
            "/api/books/search",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "body"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/api/books/search", "/api/books"])
    async def test_body_that_is_not_utf8(self, client, fake_embedder, path):
        response = await client.post(
            path,
            content=b'{"query": "\xff\xfe dune"}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["errors"] == [{"field": "body", "message": "Malformed JSON"}]
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_patch_body_that_is_not_utf8(self, client):
        created = await _create(client)

        response = await client.patch(
            f"/api/books/{created['id']}",
            content=b'{"genre": "\xff"}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_limit_follows_configured_maximum(self, client, fake_embedder, monkeypatch):
        monkeypatch.setattr(config, "search_max_limit", 5)

        response = await client.post(
            "/api/books/search", json={"query": "space opera", "limit": 6}
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "limit"
        assert fake_embedder.calls == []


class TestSimilar:
    @pytest.mark.asyncio
    async def test_similar_excludes_base_book(self, client):
        dune = await _create(client)
        await _create(client, title="Dune Messiah", description="Desert planet sequel")
        await _create(client, title="Emma", author="Jane Austen", genre="Classic")

        response = await client.post(f"/api/books/{dune['id']}/similar", json={"limit": 5})

        body = response.json()
        assert response.status_code == 200
        assert body["baseBook"] == {"id": dune["id"], "title": "Dune", "author": "Frank Herbert"}
        assert body["count"] == 2
        assert dune["id"] not in {r["id"] for r in body["results"]}

    @pytest.mark.asyncio
    async def test_similar_accepts_empty_body(self, client):
        dune = await _create(client)

        response = await client.post(f"/api/books/{dune['id']}/similar")

        assert response.status_code == 200
        assert response.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_similar_unknown_book(self, client):
        response = await client.post("/api/books/missing/similar", json={})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_similar_book_without_embedding(self, client, store):
        legacy = await store.create(LEGACY, None)

        response = await client.post(f"/api/books/{legacy.id}/similar", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Book has no embedding"}


class TestStatsAndHealth:
    @pytest.mark.asyncio
    async def test_embedding_stats(self, client, store):
        await _create(client)
        await store.create(LEGACY, None)

        response = await client.get("/api/books/stats/embeddings")

        assert response.status_code == 200
        assert response.json() == {
            "totalBooks": 2,
            "booksWithEmbeddings": 1,
            "booksWithoutEmbeddings": 1,
            "coveragePercentage": 50.0,
        }

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["version"] == config.service_version

    @pytest.mark.asyncio
    async def test_health_reports_unreachable_database(self, client, store, monkeypatch):
        async def broken():
            raise PersistenceError("disk on fire")

        monkeypatch.setattr(store, "health_check", broken)

        response = await client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["error"] == "disk on fire"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/", "/health", "/api/health/ping"])
    async def test_liveness(self, client, path):
        response = await client.get(path)

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
