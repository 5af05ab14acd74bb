"""Data models for the book search service"""

from bookfinder.models.book import Book, BookCreate, BookUpdate, BookWithEmbedding
from bookfinder.models.search import (
    BaseBookInfo,
    EmbeddingStats,
    SearchRequest,
    SearchResponse,
    SimilarBook,
    SimilarRequest,
    SimilarResponse,
)

__all__ = [
    "Book",
    "BookCreate",
    "BookUpdate",
    "BookWithEmbedding",
    "SearchRequest",
    "SimilarRequest",
    "SimilarBook",
    "SearchResponse",
    "SimilarResponse",
    "BaseBookInfo",
    "EmbeddingStats",
]
