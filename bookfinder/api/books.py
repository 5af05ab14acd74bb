"""HTTP handlers for the book catalog and semantic search"""

import functools
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from bookfinder.config import config
from bookfinder.exceptions import BookFinderError, MissingEmbeddingError, RequestValidationError
from bookfinder.models.book import BookCreate, BookUpdate
from bookfinder.models.search import (
    BaseBookInfo,
    SearchRequest,
    SearchResponse,
    SimilarRequest,
    SimilarResponse,
)
from bookfinder.services.book_store import BookStore
from bookfinder.services.coverage import CoverageReporter
from bookfinder.services.embedder import Embedder
from bookfinder.services.lifecycle import BookService
from bookfinder.services.similarity import SimilarityService
from bookfinder.services.telemetry import get_telemetry_service

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class Services:
    """Everything a request handler needs, wired around one store and one embedder"""

    store: BookStore
    embedder: Embedder
    books: BookService
    similarity: SimilarityService
    coverage: CoverageReporter

    @classmethod
    def build(cls, store: BookStore, embedder: Embedder) -> "Services":
        return cls(
            store=store,
            embedder=embedder,
            books=BookService(store, embedder),
            similarity=SimilarityService(store),
            coverage=CoverageReporter(store),
        )


ServicesProvider = Callable[[], Awaitable[Services]]


class ListQuery(BaseModel):
    """Query string accepted when listing books"""

    genre: str | None = None
    author: str | None = None
    limit: int = Field(default_factory=lambda: config.list_default_limit, ge=1, le=1000)
    skip: int = Field(default=0, ge=0)


def validation_errors(error: ValidationError) -> list[dict[str, str]]:
    """Flatten a pydantic error into field/message pairs"""
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "body",
            "message": err["msg"],
        }
        for err in error.errors()
    ]


def parse(model: type[ModelT], data: Any) -> ModelT:
    """Validate request data, raising RequestValidationError on failure"""
    if not isinstance(data, dict):
        raise RequestValidationError([{"field": "body", "message": "Expected a JSON object"}])
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(validation_errors(e)) from e


async def read_json(request: Request) -> Any:
    """Decode the request body; an empty body is treated as an empty object"""
    body = await request.body()
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise RequestValidationError([{"field": "body", "message": "Malformed JSON"}]) from e


async def run_search(services: Services, request: SearchRequest) -> SearchResponse:
    """Embed a query and rank the catalog against it"""
    query_embedding = await services.embedder.embed_text(request.query)
    results = await services.similarity.search_by_text(
        query_embedding, limit=request.limit, genre=request.genre
    )
    return SearchResponse(query=request.query, count=len(results), results=results)


async def run_similar(services: Services, book_id: str, request: SimilarRequest) -> SimilarResponse:
    """Find the books closest to a stored book, excluding the book itself"""
    book = await services.books.get_book_with_embedding(book_id)
    if book.embedding is None:
        raise MissingEmbeddingError(book_id)

    # One extra candidate so self-exclusion still leaves `limit` results
    results = await services.similarity.find_similar(
        book.embedding, limit=request.limit + 1, exclude_id=book.id, genre=request.genre
    )
    results = results[: request.limit]

    return SimilarResponse(
        base_book=BaseBookInfo(id=book.id, title=book.title, author=book.author),
        count=len(results),
        results=results,
    )


def json_errors(handler):
    """Turn service errors into structured JSON responses"""

    @functools.wraps(handler)
    async def wrapper(self, request: Request) -> JSONResponse:
        try:
            return await handler(self, request)
        except RequestValidationError as e:
            return JSONResponse({"errors": e.errors}, status_code=e.status_code)
        except BookFinderError as e:
            if e.status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {e}")
            return JSONResponse({"error": str(e)}, status_code=e.status_code)
        except Exception as e:
            logger.error(f"{request.method} {request.url.path} failed: {e}", exc_info=True)
            return JSONResponse({"error": "Internal server error"}, status_code=500)

    return wrapper


class BookApi:
    """Book catalog routes: CRUD with embedding upkeep, search and coverage stats"""

    def __init__(self, get_services: ServicesProvider):
        self._services = get_services

    def routes(self) -> list[tuple[str, list[str], Callable]]:
        """(path, methods, endpoint) triples, most specific paths first"""
        return [
            ("/api/books/search", ["POST"], self.search),
            ("/api/books/stats/embeddings", ["GET"], self.embedding_stats),
            ("/api/books/{book_id}/similar", ["POST"], self.similar),
            ("/api/books", ["GET"], self.list_books),
            ("/api/books", ["POST"], self.create_book),
            ("/api/books/{book_id}", ["GET"], self.get_book),
            ("/api/books/{book_id}", ["PATCH"], self.update_book),
            ("/api/books/{book_id}", ["DELETE"], self.delete_book),
        ]

    @json_errors
    async def list_books(self, request: Request) -> JSONResponse:
        query = parse(ListQuery, dict(request.query_params))
        services = await self._services()
        books = await services.books.list_books(
            genre=query.genre, author=query.author, limit=query.limit, skip=query.skip
        )
        return JSONResponse({"count": len(books), "books": [book.to_json() for book in books]})

    @json_errors
    async def get_book(self, request: Request) -> JSONResponse:
        services = await self._services()
        book = await services.books.get_book(request.path_params["book_id"])
        return JSONResponse(book.to_json())

    @json_errors
    async def create_book(self, request: Request) -> JSONResponse:
        data = parse(BookCreate, await read_json(request))
        services = await self._services()
        book = await services.books.create_book(data)
        return JSONResponse(book.to_json(), status_code=201)

    @json_errors
    async def update_book(self, request: Request) -> JSONResponse:
        update = parse(BookUpdate, await read_json(request))
        services = await self._services()
        book = await services.books.update_book(request.path_params["book_id"], update)
        return JSONResponse(book.to_json())

    @json_errors
    async def delete_book(self, request: Request) -> JSONResponse:
        services = await self._services()
        await services.books.delete_book(request.path_params["book_id"])
        return JSONResponse({"message": "Book deleted successfully"})

    @json_errors
    async def search(self, request: Request) -> JSONResponse:
        telemetry = get_telemetry_service()
        body = await read_json(request)
        error: Exception | None = None
        response = None

        try:
            search_request = parse(SearchRequest, body)
            services = await self._services()
            result = await run_search(services, search_request)
            response = result.model_dump(mode="json", by_alias=True)
            return JSONResponse(response)
        except Exception as e:
            error = e
            raise
        finally:
            telemetry.log_query(
                tool_name="search_books",
                query=body.get("query") if isinstance(body, dict) else None,
                parameters=body if isinstance(body, dict) else {},
                response=response,
                error=error,
            )

    @json_errors
    async def similar(self, request: Request) -> JSONResponse:
        telemetry = get_telemetry_service()
        book_id = request.path_params["book_id"]
        error: Exception | None = None
        response = None
        parameters: dict[str, Any] = {"book_id": book_id}

        try:
            similar_request = parse(SimilarRequest, await read_json(request))
            parameters.update(limit=similar_request.limit, genre=similar_request.genre)
            services = await self._services()
            result = await run_similar(services, book_id, similar_request)
            response = result.model_dump(mode="json", by_alias=True)
            return JSONResponse(response)
        except Exception as e:
            error = e
            raise
        finally:
            telemetry.log_query(
                tool_name="find_similar_books",
                query=None,
                parameters=parameters,
                response=response,
                error=error,
            )

    @json_errors
    async def embedding_stats(self, request: Request) -> JSONResponse:
        services = await self._services()
        stats = await services.coverage.get_embedding_stats()
        return JSONResponse(stats.model_dump(mode="json", by_alias=True))
