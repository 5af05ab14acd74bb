"""Shared fixtures: a deterministic embedder, an in-memory vector index and stores"""

import hashlib
import math

import pytest

from bookfinder.exceptions import EmbeddingProviderError
from bookfinder.models.book import Book, BookCreate
from bookfinder.services.book_store import BookStore
from bookfinder.services.embedder import Embedder
from bookfinder.services.lifecycle import BookService

DIMENSION = 8


class FakeEmbedder(Embedder):
    """Deterministic embedder: the same text always maps to the same vector"""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.calls: list[str] = []
        self.fail = False
        self.overrides: dict[str, list[float]] = {}

    def vector_for(self, text: str) -> list[float]:
        if text in self.overrides:
            return list(self.overrides[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        # Multiples of 1/64 are exact in float32, so vectors survive storage unchanged
        return [((digest[i] - 128) / 64.0) or 1.0 for i in range(self.dimension)]

    async def embed_text(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingProviderError()
        self.calls.append(text)
        return self.vector_for(text)

    async def embed_batch(
        self, texts: list[str], batch_size: int | None = None
    ) -> list[list[float]]:
        if self.fail:
            raise EmbeddingProviderError("Failed to generate batch embeddings")
        self.calls.extend(texts)
        return [self.vector_for(text) for text in texts]


def cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryIndex:
    """Exact nearest-neighbor index over a list, recording the k it was asked for"""

    def __init__(self):
        self.entries: list[tuple[Book, list[float]]] = []
        self.requested_k: list[int] = []

    def add(self, book: Book, vector: list[float]) -> None:
        self.entries.append((book, vector))

    async def knn_search(self, vector: list[float], k: int) -> list[tuple[Book, float]]:
        self.requested_k.append(k)
        scored = [(book, cosine(vector, stored)) for book, stored in self.entries]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:k]


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def memory_index():
    return InMemoryIndex()


@pytest.fixture
def make_book():
    """Build a Book with sensible defaults"""

    def _make(**overrides) -> Book:
        fields = {
            "title": "Dune",
            "author": "Frank Herbert",
            "description": "Desert planet epic",
            "genre": "Science Fiction",
        }
        fields.update(overrides)
        return Book(**fields)

    return _make


@pytest.fixture
def dune():
    return BookCreate(
        title="Dune",
        author="Frank Herbert",
        description="Desert planet epic",
        genre="Science Fiction",
        isbn="9780441172719",
        publish_year=1965,
    )


@pytest.fixture
async def store():
    """In-memory book store with a small vector dimension"""
    book_store = BookStore(db_path=":memory:", dimension=DIMENSION)
    await book_store.initialize()
    yield book_store
    book_store.close()


@pytest.fixture
def book_service(store, fake_embedder):
    return BookService(store, fake_embedder)
