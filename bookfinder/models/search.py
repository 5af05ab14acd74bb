"""Search request/response models"""

from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bookfinder.config import config
from bookfinder.models.book import Book


def _blank_to_none(v: str | None) -> str | None:
    if v is not None and not v.strip():
        return None
    return v


GenreFilter = Annotated[str | None, AfterValidator(_blank_to_none)]


def _within_max_limit(v: int) -> int:
    if v > config.search_max_limit:
        raise ValueError(f"Input should be less than or equal to {config.search_max_limit}")
    return v


ResultLimit = Annotated[int, AfterValidator(_within_max_limit)]


class SearchRequest(BaseModel):
    """Free-text semantic search over the catalog"""

    model_config = ConfigDict(str_strip_whitespace=True)

    query: str = Field(min_length=3, max_length=500, description="Natural language query")
    limit: ResultLimit = Field(
        default_factory=lambda: config.search_default_limit,
        ge=1,
        description="Maximum number of results to return",
    )
    genre: GenreFilter = Field(default=None, description="Only return books of this genre")


class SimilarRequest(BaseModel):
    """Similar-books search seeded by a stored book"""

    model_config = ConfigDict(str_strip_whitespace=True)

    limit: ResultLimit = Field(
        default_factory=lambda: config.search_default_limit,
        ge=1,
        description="Maximum number of results to return",
    )
    genre: GenreFilter = Field(default=None, description="Only return books of this genre")


class SimilarBook(Book):
    """A stored book annotated with its similarity to the query vector"""

    similarity_score: float = Field(description="Higher is more similar")


class SearchResponse(BaseModel):
    """Response body for a text search"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: str
    count: int = Field(ge=0)
    results: list[SimilarBook]


class BaseBookInfo(BaseModel):
    """Identity of the book a similarity search was seeded from"""

    id: str
    title: str
    author: str


class SimilarResponse(BaseModel):
    """Response body for a "similar books" search"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    base_book: BaseBookInfo
    count: int = Field(ge=0)
    results: list[SimilarBook]


class EmbeddingStats(BaseModel):
    """How many stored books currently have a vector"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_books: int = Field(ge=0)
    books_with_embeddings: int = Field(ge=0)
    books_without_embeddings: int = Field(ge=0)
    coverage_percentage: float = Field(ge=0.0, le=100.0)
