"""Book record data models

Reads come in two shapes: ``Book`` never carries the embedding, while
``BookWithEmbedding`` is returned only when the vector is explicitly requested.
"""

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from bookfinder.config import config


class BookCreate(BaseModel):
    """Fields accepted when creating a book"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    title: str = Field(min_length=1, description="Book title")
    author: str = Field(min_length=1, description="Author name")
    description: str = Field(min_length=1, description="Free text description (embedded)")
    genre: str | None = Field(default=None, description="Genre label")
    isbn: str | None = Field(default=None, description="ISBN")
    publish_year: int | None = Field(default=None, description="Year of publication")
    publisher: str | None = Field(default=None, description="Publisher name")
    page_count: int | None = Field(default=None, ge=0, description="Number of pages")
    language: str = Field(
        default_factory=lambda: config.default_language, description="Language of the book"
    )


class BookUpdate(BaseModel):
    """Partial update; only fields explicitly supplied are merged"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    title: str | None = Field(default=None, min_length=1)
    author: str | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, min_length=1)
    genre: str | None = None
    isbn: str | None = None
    publish_year: int | None = None
    publisher: str | None = None
    page_count: int | None = Field(default=None, ge=0)
    language: str | None = Field(default=None, min_length=1)

    @field_validator("title", "author", "description", "language")
    @classmethod
    def reject_null(cls, v: str | None) -> str:
        """Required fields may be omitted but never cleared"""
        if v is None:
            raise ValueError("Field cannot be null")
        return v

    def changes(self) -> dict:
        """Return only the fields the caller supplied"""
        return self.model_dump(exclude_unset=True)


class Book(BaseModel):
    """Public view of a stored book (never includes the embedding)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier (UUID)")
    title: str
    author: str
    description: str
    genre: str | None = None
    isbn: str | None = None
    publish_year: int | None = None
    publisher: str | None = None
    page_count: int | None = None
    language: str = Field(default_factory=lambda: config.default_language)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> dict:
        """Serialize using the camelCase wire names"""
        return self.model_dump(mode="json", by_alias=True)


class BookWithEmbedding(Book):
    """Full view of a stored book, including its vector when one exists"""

    embedding: list[float] | None = Field(
        default=None, description="Vector computed from title and description"
    )

    def to_book(self) -> Book:
        """Drop the embedding and return the public view"""
        return Book.model_validate(self.model_dump(exclude={"embedding"}))
