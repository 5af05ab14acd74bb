"""Embedding coverage statistics"""

from bookfinder.models.search import EmbeddingStats
from bookfinder.services.book_store import BookStore


def coverage_percentage(with_embeddings: int, total: int) -> float:
    """Share of books with an embedding, in percent, rounded to two decimals"""
    if total <= 0:
        return 0.0
    return round(with_embeddings / total * 100, 2)


class CoverageReporter:
    """Report how many books currently have a usable embedding"""

    def __init__(self, store: BookStore):
        self.store = store

    async def get_embedding_stats(self) -> EmbeddingStats:
        total = await self.store.count_books()
        with_embeddings = await self.store.count_with_embedding()

        return EmbeddingStats(
            total_books=total,
            books_with_embeddings=with_embeddings,
            books_without_embeddings=total - with_embeddings,
            coverage_percentage=coverage_percentage(with_embeddings, total),
        )
