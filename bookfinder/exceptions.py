"""Error taxonomy for the book search service"""


class BookFinderError(Exception):
    """Base class for all service errors"""

    status_code = 500


class RequestValidationError(BookFinderError):
    """Raised when a request is malformed or out of range; nothing was attempted"""

    status_code = 400

    def __init__(self, errors: list[dict[str, str]]):
        self.errors = errors
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        super().__init__(f"Invalid request: {summary}")


class BookNotFoundError(BookFinderError):
    """Raised when no book matches the given id"""

    status_code = 404

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__("Book not found")


class MissingEmbeddingError(BookFinderError):
    """Raised when a similarity search is seeded by a book that has no vector yet"""

    status_code = 400

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__("Book has no embedding")


class EmbeddingProviderError(BookFinderError):
    """Raised when the embedding model fails to produce a vector"""

    def __init__(self, message: str = "Failed to generate embedding"):
        super().__init__(message)


class PersistenceError(BookFinderError):
    """Raised when the database rejects or cannot complete an operation"""

    pass
