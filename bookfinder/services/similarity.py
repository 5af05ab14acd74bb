"""Similarity search over stored book embeddings"""

import logging
from typing import Protocol

from bookfinder.config import config
from bookfinder.models.book import Book
from bookfinder.models.search import SimilarBook

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Nearest-neighbor lookup over stored book embeddings"""

    async def knn_search(self, vector: list[float], k: int) -> list[tuple[Book, float]]:
        """Return up to k (book, similarity) pairs, most similar first"""
        ...


class SimilarityService:
    """Rank, filter and annotate nearest-neighbor candidates"""

    def __init__(
        self,
        index: VectorIndex,
        oversampling_factor: int | None = None,
        max_candidates: int | None = None,
    ):
        self.index = index
        self.oversampling_factor = oversampling_factor or config.search_oversampling_factor
        self.max_candidates = max_candidates or config.search_max_candidates

    def candidate_count(self, limit: int) -> int:
        """
        Number of nearest-neighbor candidates to fetch for a result limit

        The approximate index trades recall for speed, and genre/identity
        filters run afterwards, so the candidate list is oversampled.
        """
        return max(limit, min(limit * self.oversampling_factor, self.max_candidates))

    async def find_similar(
        self,
        base_vector: list[float],
        limit: int = 10,
        exclude_id: str | None = None,
        genre: str | None = None,
    ) -> list[SimilarBook]:
        """
        Find the books closest to a vector

        Args:
            base_vector: Vector to compare against
            limit: Maximum number of results
            exclude_id: Book id to leave out (the book the search was seeded from)
            genre: Only keep books of this genre

        Returns:
            At most ``limit`` books ordered by non-increasing similarity
        """
        k = self.candidate_count(limit)
        candidates = await self.index.knn_search(base_vector, k)

        results: list[SimilarBook] = []
        for book, score in candidates:
            if genre and book.genre != genre:
                continue
            if exclude_id and book.id == exclude_id:
                continue
            results.append(SimilarBook(**book.model_dump(), similarity_score=score))

        # sorted() is stable, so ties keep the index's order
        results = sorted(results, key=lambda r: r.similarity_score, reverse=True)[:limit]

        logger.debug(
            f"Similarity search: {len(candidates)} candidates (k={k}) -> {len(results)} results"
        )
        return results

    async def search_by_text(
        self, query_vector: list[float], limit: int = 10, genre: str | None = None
    ) -> list[SimilarBook]:
        """Rank books against an embedded text query"""
        return await self.find_similar(query_vector, limit=limit, genre=genre)
