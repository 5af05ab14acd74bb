"""Seed the catalog from a JSON file and backfill missing embeddings"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from bookfinder.config import config
from bookfinder.exceptions import BookFinderError
from bookfinder.models.book import BookCreate
from bookfinder.services.book_store import BookStore
from bookfinder.services.coverage import CoverageReporter
from bookfinder.services.embedder import Embedder
from bookfinder.services.lifecycle import BookService


def load_books(path: Path) -> list[dict]:
    """Read a JSON array of book objects"""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array of books")
    return data


async def import_books(service: BookService, books: list[dict]) -> tuple[int, int]:
    """
    Create each book through the service so it gets an embedding

    Returns:
        Tuple of (imported, failed)
    """
    success_count = 0
    error_count = 0

    for book_data in books:
        title = book_data.get("title", "<untitled>")
        try:
            book = await service.create_book(BookCreate.model_validate(book_data))
            success_count += 1
            print(f"  ✓ Imported: {book.title} by {book.author}")
        except (ValidationError, BookFinderError) as e:
            error_count += 1
            print(f"  ✗ Failed to import {title}: {e}")

    return success_count, error_count


async def seed(books_path: str | None = None, backfill: bool = False) -> int:
    """
    Import books and optionally embed books that have no vector yet

    Args:
        books_path: JSON file to import (default from config); None with backfill skips import
        backfill: Embed every stored book that lacks an embedding

    Returns:
        Process exit code
    """
    if Path(".env").exists():
        load_dotenv()
        print("✓ Loaded environment variables from .env file")

    print("=" * 80)
    print("Book Seeding Starting")
    print("=" * 80)

    store = BookStore(config.db_path)
    embedder = None

    try:
        print("\n[1/4] Initializing services...")
        print(f"  Loading embedding model: {config.embedding_model}")
        embedder = Embedder()
        embedder.download_model()
        await store.initialize()
        print(f"✓ Database initialized: {config.db_path}")
        service = BookService(store, embedder)

        imported = failed = total = 0
        if books_path or not backfill:
            path = Path(books_path or config.seed_file)
            print(f"\n[2/4] Importing books from {path}...")
            books = load_books(path)
            total = len(books)
            print(f"  Found {total} books to import")
            imported, failed = await import_books(service, books)
        else:
            print("\n[2/4] Skipping import")

        filled = 0
        if backfill:
            print("\n[3/4] Backfilling missing embeddings...")
            filled = await service.backfill_embeddings()
            print(f"✓ Embedded {filled} books")
        else:
            print("\n[3/4] Skipping embedding backfill")

        print("\n[4/4] Checking embedding coverage...")
        stats = await CoverageReporter(store).get_embedding_stats()

        print("\n" + "=" * 80)
        print("Seeding Complete!")
        print("=" * 80)
        print(f"Imported: {imported}")
        print(f"Failed: {failed}")
        print(f"Total: {total}")
        print(f"Backfilled: {filled}")
        print(
            f"Coverage: {stats.books_with_embeddings}/{stats.total_books} books "
            f"({stats.coverage_percentage:.2f}%)"
        )
        print(f"Database path: {config.db_path}")
        print("=" * 80)
        return 0

    except (OSError, ValueError, BookFinderError) as e:
        print(f"\n✗ Seeding failed: {e}")
        return 1
    finally:
        if embedder is not None:
            await embedder.close()
        store.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import books and compute their embeddings")
    parser.add_argument(
        "--file",
        dest="books_path",
        default=None,
        help=f"JSON array of books to import (default: {config.seed_file})",
    )
    parser.add_argument(
        "--backfill",
        action="store_true",
        help="Embed stored books that have no embedding yet",
    )
    return parser.parse_args(argv)


def main() -> None:
    """Main entry point"""
    args = parse_args()
    exit_code = asyncio.run(seed(books_path=args.books_path, backfill=args.backfill))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
