"""Book search server: JSON HTTP routes and MCP tools served by fastmcp"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import McpError
from mcp.types import ErrorData
from pydantic import ValidationError

from bookfinder.api.books import BookApi, Services, run_search, run_similar
from bookfinder.api.health import HealthApi
from bookfinder.config import config
from bookfinder.exceptions import BookNotFoundError, MissingEmbeddingError
from bookfinder.models.search import SearchRequest, SimilarRequest
from bookfinder.services.book_store import BookStore
from bookfinder.services.embedder import Embedder
from bookfinder.services.telemetry import get_telemetry_service

logger = logging.getLogger(__name__)

mcp = FastMCP(name="bookfinder", version=config.service_version)

# Initialized on first request
_services: Services | None = None
_services_lock = asyncio.Lock()


async def get_services() -> Services:
    """Get or initialize services"""
    global _services

    async with _services_lock:
        if _services is None:
            store = BookStore(config.db_path)
            await store.initialize()
            _services = Services.build(store, Embedder())
            logger.info(f"Services initialized (database: {config.db_path})")

    return _services


def register_routes(server: FastMCP, *apis: BookApi | HealthApi) -> None:
    """Expose API handlers as custom HTTP routes on the MCP server"""
    for api in apis:
        for path, methods, endpoint in api.routes():
            server.custom_route(path, methods=methods)(endpoint)


register_routes(mcp, BookApi(get_services), HealthApi(get_services))


@mcp.tool()
async def search_books(query: str, limit: int = 10, genre: str | None = None) -> dict[str, Any]:
    """Search the book catalog by meaning and return the most similar books

    Args:
        query: Natural language description of what to read (3-500 characters)
        limit: Maximum number of results to return (1-50, default: 10)
        genre: Only return books of this genre

    Returns:
        dict: The query, result count and ranked results with similarity scores
    """
    telemetry = get_telemetry_service()
    error: Exception | None = None
    response = None

    try:
        try:
            request = SearchRequest.model_validate(
                {"query": query, "limit": limit, "genre": genre}
            )
        except ValidationError as e:
            error = e
            raise McpError(ErrorData(code=-32602, message=f"Invalid search request: {e}")) from e

        try:
            result = await run_search(await get_services(), request)
        except Exception as e:
            error = e
            raise McpError(ErrorData(code=-32603, message=f"Search failed: {e}")) from e

        response = result.model_dump(mode="json", by_alias=True)
        return response

    finally:
        telemetry.log_query(
            tool_name="search_books",
            query=query,
            parameters={"limit": limit, "genre": genre},
            response=response,
            error=error,
        )


@mcp.tool()
async def find_similar_books(
    book_id: str, limit: int = 10, genre: str | None = None
) -> dict[str, Any]:
    """Find books similar to a book in the catalog

    Args:
        book_id: ID of the book to compare against
        limit: Maximum number of results to return (1-50, default: 10)
        genre: Only return books of this genre

    Returns:
        dict: The base book, result count and ranked results with similarity scores
    """
    telemetry = get_telemetry_service()
    error: Exception | None = None
    response = None

    try:
        try:
            request = SimilarRequest.model_validate({"limit": limit, "genre": genre})
            result = await run_similar(await get_services(), book_id, request)
        except BookNotFoundError as e:
            error = e
            raise McpError(
                ErrorData(code=-32002, message=f"Book with ID {book_id} not found")
            ) from e
        except MissingEmbeddingError as e:
            error = e
            raise McpError(ErrorData(code=-32602, message=str(e))) from e
        except ValidationError as e:
            error = e
            raise McpError(ErrorData(code=-32602, message=f"Invalid request: {e}")) from e
        except Exception as e:
            error = e
            raise McpError(ErrorData(code=-32603, message=f"Search failed: {e}")) from e

        response = result.model_dump(mode="json", by_alias=True)
        return response

    finally:
        telemetry.log_query(
            tool_name="find_similar_books",
            query=None,
            parameters={"book_id": book_id, "limit": limit, "genre": genre},
            response=response,
            error=error,
        )


@mcp.tool()
async def get_embedding_stats() -> dict[str, Any]:
    """Report how many books in the catalog can be found by semantic search

    Returns:
        dict: Total books, books with and without embeddings, and coverage percentage
    """
    try:
        services = await get_services()
        stats = await services.coverage.get_embedding_stats()
    except Exception as e:
        logger.error(f"Failed to compute embedding stats: {e}")
        raise McpError(
            ErrorData(code=-32603, message=f"Failed to compute embedding stats: {e}")
        ) from e

    return stats.model_dump(mode="json", by_alias=True)


def main() -> None:
    """Entry point for the server"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if Path(".env").exists():
        load_dotenv()

    logger.info(f"Starting bookfinder on http://{config.server_host}:{config.server_port}")
    logger.info(f"Book API available at http://{config.server_host}:{config.server_port}/api/books")
    mcp.run(transport="streamable-http", host=config.server_host, port=config.server_port)


if __name__ == "__main__":
    main()
