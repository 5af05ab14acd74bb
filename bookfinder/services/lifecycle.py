"""Book write operations that keep each book's embedding in sync with its text"""

import logging
from typing import Any

from bookfinder.exceptions import BookNotFoundError
from bookfinder.models.book import Book, BookCreate, BookUpdate, BookWithEmbedding
from bookfinder.services.book_store import BookStore
from bookfinder.services.embedder import Embedder, book_text

logger = logging.getLogger(__name__)

# Fields whose change invalidates the stored embedding
EMBEDDED_FIELDS = ("title", "description")


def needs_reembedding(current: Book, changes: dict[str, Any]) -> bool:
    """
    Decide whether an update must regenerate the book's embedding

    Args:
        current: Book as currently stored
        changes: Fields the update supplies

    Returns:
        True if the update changes the title or description
    """
    for field in EMBEDDED_FIELDS:
        value = changes.get(field)
        if value is not None and value != getattr(current, field):
            return True
    return False


def merged_text(current: Book, changes: dict[str, Any]) -> str:
    """Embedding text of the book as it will look after the update is applied"""
    title = changes.get("title") or current.title
    description = changes.get("description") or current.description
    return book_text(title, description)


class BookService:
    """Create, update and delete books, paying for embeddings only when text changes"""

    def __init__(self, store: BookStore, embedder: Embedder | None = None):
        self.store = store
        self.embedder = embedder or Embedder()

    async def create_book(self, data: BookCreate) -> Book:
        """
        Create a book with a freshly computed embedding

        The embedding is generated before anything is written, so a provider
        failure leaves no record behind.
        """
        embedding = await self.embedder.embed_book(data.title, data.description)
        book = await self.store.create(data.model_dump(), embedding)
        logger.info(f"Created book {book.id} ({book.title!r})")
        return book

    async def update_book(self, book_id: str, update: BookUpdate) -> Book:
        """
        Apply a partial update, regenerating the embedding if title or description change

        Raises:
            BookNotFoundError: If the book does not exist
            EmbeddingProviderError: If regeneration fails (nothing is written)
        """
        current = await self.store.get(book_id)
        if current is None:
            raise BookNotFoundError(book_id)

        changes = update.changes()
        embedding = None
        if needs_reembedding(current, changes):
            embedding = await self.embedder.embed_text(merged_text(current, changes))
            logger.info(f"Regenerating embedding for book {book_id}")

        book = await self.store.update(book_id, changes, embedding=embedding)
        if book is None:
            # Deleted between the read and the write
            raise BookNotFoundError(book_id)
        return book

    async def delete_book(self, book_id: str) -> None:
        """Delete a book together with its embedding"""
        if not await self.store.delete(book_id):
            raise BookNotFoundError(book_id)
        logger.info(f"Deleted book {book_id}")

    async def get_book(self, book_id: str) -> Book:
        book = await self.store.get(book_id)
        if book is None:
            raise BookNotFoundError(book_id)
        return book

    async def get_book_with_embedding(self, book_id: str) -> BookWithEmbedding:
        book = await self.store.get_with_embedding(book_id)
        if book is None:
            raise BookNotFoundError(book_id)
        return book

    async def list_books(
        self,
        genre: str | None = None,
        author: str | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[Book]:
        return await self.store.list_books(genre=genre, author=author, limit=limit, skip=skip)

    async def backfill_embeddings(self, batch_size: int | None = None) -> int:
        """
        Compute embeddings for every book that has none

        Returns:
            Number of books that received an embedding
        """
        books = await self.store.missing_embeddings()
        if not books:
            return 0

        texts = [book_text(book.title, book.description) for book in books]
        embeddings = await self.embedder.embed_batch(texts, batch_size=batch_size)

        filled = 0
        for book, embedding in zip(books, embeddings, strict=True):
            if await self.store.set_embedding(book.id, embedding):
                filled += 1

        logger.info(f"Backfilled embeddings for {filled}/{len(books)} books")
        return filled
