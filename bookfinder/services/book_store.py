"""SQLite book store with a sqlite_vec vector index"""

import logging
import sqlite3
import struct
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import sqlite_vec

from bookfinder.config import config
from bookfinder.exceptions import PersistenceError
from bookfinder.models.book import Book, BookWithEmbedding

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = (
    "id",
    "title",
    "author",
    "description",
    "genre",
    "isbn",
    "publish_year",
    "publisher",
    "page_count",
    "language",
    "created_at",
    "updated_at",
)

# Fields a partial update may overwrite
_MUTABLE_COLUMNS = frozenset(_BOOK_COLUMNS) - {"id", "created_at", "updated_at"}

_SUPPORTED_METRICS = ("cosine", "l2", "l1")


def _serialize(vector: list[float]) -> bytes:
    return struct.pack(f"{len(vector)}f", *vector)


def _deserialize(blob: bytes) -> list[float]:
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def _now() -> str:
    return datetime.now(UTC).isoformat()


class BookStore:
    """SQLite-based store for book records and their embeddings"""

    def __init__(
        self,
        db_path: str | None = None,
        dimension: int | None = None,
        distance_metric: str | None = None,
    ):
        self.db_path = db_path or config.db_path
        self.dimension = dimension or config.embedding_dimension
        self.distance_metric = distance_metric or config.vector_distance_metric
        if self.distance_metric not in _SUPPORTED_METRICS:
            raise ValueError(
                f"Unsupported distance metric: {self.distance_metric}. "
                f"Must be one of: {', '.join(_SUPPORTED_METRICS)}"
            )
        # For :memory: databases, we need to keep a persistent connection
        # because each connection gets a separate in-memory database
        self._memory_conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        # The :memory: connection is shared by requests served from other threads
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        """
        Create and configure a new database connection

        For :memory: databases, returns the persistent connection.
        For file databases, creates a new connection.
        """
        if self.db_path == ":memory:":
            if self._memory_conn is None:
                self._memory_conn = self._connect()
            return self._memory_conn

        return self._connect()

    def _ensure_connection(
        self, conn: sqlite3.Connection | None
    ) -> tuple[sqlite3.Connection, bool]:
        """
        Ensure we have a connection, creating one if needed

        Returns:
            Tuple of (connection, should_close)
        """
        if conn is not None:
            return conn, False

        new_conn = self._get_connection()
        # Never close :memory: connections (they're persistent)
        should_close = self.db_path != ":memory:"
        return new_conn, should_close

    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}"
            )

    def _score(self, distance: float) -> float:
        # Cosine distance is in range [0, 2], convert to similarity [0, 1]
        if self.distance_metric == "cosine":
            return 1.0 - (distance / 2.0)
        return 1.0 / (1.0 + distance)

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> Book:
        return Book(**{column: row[column] for column in _BOOK_COLUMNS})

    async def initialize(self) -> None:
        """Create the database file and schema if missing"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn, should_close = self._ensure_connection(None)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    description TEXT NOT NULL,
                    genre TEXT,
                    isbn TEXT,
                    publish_year INTEGER,
                    publisher TEXT,
                    page_count INTEGER,
                    language TEXT NOT NULL,
                    has_embedding INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK(length(title) > 0)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_books_genre ON books(genre)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_books_author ON books(author)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")

            # vec0 is optimized for vector similarity search
            conn.execute(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS vec_books USING vec0(
                    book_id TEXT PRIMARY KEY,
                    embedding FLOAT[{self.dimension}] distance_metric={self.distance_metric}
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize database {self.db_path}: {e}")
            raise PersistenceError(f"Failed to initialize database: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def create(
        self,
        data: dict[str, Any],
        embedding: list[float] | None,
        conn: sqlite3.Connection | None = None,
    ) -> Book:
        """
        Insert a book and (optionally) its embedding in one transaction

        Args:
            data: Book fields (as produced by BookCreate.model_dump())
            embedding: Vector for the book, or None to store it without one
            conn: Optional connection (for transactions)
        """
        if embedding is not None:
            self._check_dimension(embedding)

        timestamp = _now()
        book = Book(**data, created_at=timestamp, updated_at=timestamp)
        record = book.model_dump()
        record["created_at"] = record["updated_at"] = timestamp

        conn, should_close = self._ensure_connection(conn)
        try:
            conn.execute(
                f"""
                INSERT INTO books ({", ".join(_BOOK_COLUMNS)}, has_embedding)
                VALUES ({", ".join("?" for _ in _BOOK_COLUMNS)}, ?)
            """,
                (*(record[column] for column in _BOOK_COLUMNS), int(embedding is not None)),
            )
            if embedding is not None:
                conn.execute(
                    "INSERT INTO vec_books (book_id, embedding) VALUES (?, ?)",
                    (book.id, _serialize(embedding)),
                )
            conn.commit()
            return book
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to create book: {e}")
            raise PersistenceError(f"Failed to create book: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def get(self, book_id: str, conn: sqlite3.Connection | None = None) -> Book | None:
        """Fetch the public view of a book, or None if it does not exist"""
        conn, should_close = self._ensure_connection(conn)
        try:
            row = conn.execute(
                f"SELECT {', '.join(_BOOK_COLUMNS)} FROM books WHERE id = ?", (book_id,)
            ).fetchone()
            return self._row_to_book(row) if row else None
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read book: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def get_with_embedding(
        self, book_id: str, conn: sqlite3.Connection | None = None
    ) -> BookWithEmbedding | None:
        """Fetch a book together with its embedding (None when it has no vector yet)"""
        conn, should_close = self._ensure_connection(conn)
        try:
            row = conn.execute(
                f"SELECT {', '.join(_BOOK_COLUMNS)}, has_embedding FROM books WHERE id = ?",
                (book_id,),
            ).fetchone()
            if not row:
                return None

            embedding = None
            if row["has_embedding"]:
                vec_row = conn.execute(
                    "SELECT embedding FROM vec_books WHERE book_id = ?", (book_id,)
                ).fetchone()
                if vec_row:
                    embedding = _deserialize(vec_row["embedding"])

            return BookWithEmbedding(
                **{column: row[column] for column in _BOOK_COLUMNS}, embedding=embedding
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read book: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def list_books(
        self,
        genre: str | None = None,
        author: str | None = None,
        limit: int | None = None,
        skip: int = 0,
        conn: sqlite3.Connection | None = None,
    ) -> list[Book]:
        """
        List books newest first

        Args:
            genre: Exact genre match
            author: Case-insensitive substring of the author name
            limit: Page size (default from config)
            skip: Number of books to skip
            conn: Optional connection (for transactions)
        """
        limit = limit if limit is not None else config.list_default_limit

        clauses: list[str] = []
        params: list[Any] = []
        if genre:
            clauses.append("genre = ?")
            params.append(genre)
        if author:
            clauses.append("instr(lower(author), lower(?)) > 0")
            params.append(author)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn, should_close = self._ensure_connection(conn)
        try:
            cursor = conn.execute(
                f"""
                SELECT {", ".join(_BOOK_COLUMNS)}
                FROM books
                {where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
            """,
                (*params, limit, skip),
            )
            return [self._row_to_book(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list books: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def update(
        self,
        book_id: str,
        changes: dict[str, Any],
        embedding: list[float] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> Book | None:
        """
        Merge the supplied fields into a book, replacing its embedding if given

        Fields and embedding are written in a single transaction.

        Returns:
            The updated book, or None if it does not exist
        """
        unknown = set(changes) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if embedding is not None:
            self._check_dimension(embedding)

        assignments = [f"{column} = ?" for column in changes]
        params: list[Any] = list(changes.values())
        assignments.append("updated_at = ?")
        params.append(_now())
        if embedding is not None:
            assignments.append("has_embedding = 1")

        conn, should_close = self._ensure_connection(conn)
        try:
            cursor = conn.execute(
                f"UPDATE books SET {', '.join(assignments)} WHERE id = ?", (*params, book_id)
            )
            if cursor.rowcount == 0:
                conn.rollback()
                return None

            if embedding is not None:
                conn.execute("DELETE FROM vec_books WHERE book_id = ?", (book_id,))
                conn.execute(
                    "INSERT INTO vec_books (book_id, embedding) VALUES (?, ?)",
                    (book_id, _serialize(embedding)),
                )
            conn.commit()

            row = conn.execute(
                f"SELECT {', '.join(_BOOK_COLUMNS)} FROM books WHERE id = ?", (book_id,)
            ).fetchone()
            return self._row_to_book(row) if row else None
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to update book {book_id}: {e}")
            raise PersistenceError(f"Failed to update book: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def set_embedding(
        self, book_id: str, embedding: list[float], conn: sqlite3.Connection | None = None
    ) -> bool:
        """Attach an embedding to an existing book without touching its fields"""
        self._check_dimension(embedding)

        conn, should_close = self._ensure_connection(conn)
        try:
            cursor = conn.execute("UPDATE books SET has_embedding = 1 WHERE id = ?", (book_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                return False
            conn.execute("DELETE FROM vec_books WHERE book_id = ?", (book_id,))
            conn.execute(
                "INSERT INTO vec_books (book_id, embedding) VALUES (?, ?)",
                (book_id, _serialize(embedding)),
            )
            conn.commit()
            return True
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to store embedding: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def delete(self, book_id: str, conn: sqlite3.Connection | None = None) -> bool:
        """Delete a book and its embedding; returns whether the book existed"""
        conn, should_close = self._ensure_connection(conn)
        try:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                conn.execute("DELETE FROM vec_books WHERE book_id = ?", (book_id,))
            conn.commit()
            return deleted
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to delete book {book_id}: {e}")
            raise PersistenceError(f"Failed to delete book: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def knn_search(
        self,
        vector: list[float],
        k: int,
        conn: sqlite3.Connection | None = None,
    ) -> list[tuple[Book, float]]:
        """
        Approximate nearest-neighbor search using sqlite_vec

        Args:
            vector: Query vector
            k: Number of candidates to return
            conn: Optional connection (for transactions)

        Returns:
            (book, similarity) pairs, most similar first
        """
        self._check_dimension(vector)

        conn, should_close = self._ensure_connection(conn)
        try:
            # sqlite_vec requires k = ? in WHERE clause instead of separate LIMIT
            cursor = conn.execute(
                f"""
                WITH knn AS (
                    SELECT book_id, distance
                    FROM vec_books
                    WHERE embedding MATCH ? AND k = ?
                )
                SELECT {", ".join(f"b.{column}" for column in _BOOK_COLUMNS)}, knn.distance
                FROM knn
                INNER JOIN books b ON b.id = knn.book_id
                ORDER BY knn.distance
            """,
                (_serialize(vector), k),
            )
            return [
                (self._row_to_book(row), self._score(row["distance"]))
                for row in cursor.fetchall()
            ]
        except sqlite3.Error as e:
            logger.error(f"Vector search failed: {e}")
            raise PersistenceError(f"Vector search failed: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def missing_embeddings(
        self, limit: int | None = None, conn: sqlite3.Connection | None = None
    ) -> list[Book]:
        """Books that have no embedding yet, oldest first"""
        conn, should_close = self._ensure_connection(conn)
        try:
            cursor = conn.execute(
                f"""
                SELECT {", ".join(_BOOK_COLUMNS)}
                FROM books
                WHERE has_embedding = 0
                ORDER BY created_at, rowid
                LIMIT ?
            """,
                (limit if limit is not None else -1,),
            )
            return [self._row_to_book(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list books without embeddings: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def count_books(self, conn: sqlite3.Connection | None = None) -> int:
        """Get total number of books in database"""
        conn, should_close = self._ensure_connection(conn)
        try:
            result = conn.execute("SELECT COUNT(*) FROM books").fetchone()
            return result[0] if result else 0
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to count books: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def count_with_embedding(self, conn: sqlite3.Connection | None = None) -> int:
        """Get number of books that currently have an embedding"""
        conn, should_close = self._ensure_connection(conn)
        try:
            result = conn.execute("SELECT COUNT(*) FROM books WHERE has_embedding = 1").fetchone()
            return result[0] if result else 0
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to count embeddings: {e}") from e
        finally:
            if should_close:
                conn.close()

    async def health_check(self, conn: sqlite3.Connection | None = None) -> bool:
        """Check if database is reachable and initialized"""
        try:
            conn, should_close = self._ensure_connection(conn)
        except sqlite3.Error:
            return False

        try:
            conn.execute("SELECT COUNT(*) FROM books").fetchone()
            return True
        except sqlite3.Error:
            return False
        finally:
            if should_close:
                conn.close()

    def close(self) -> None:
        """
        Close database connection

        For :memory: databases, closes the persistent connection.
        For file databases, this is a no-op (connections are per-method).
        """
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
