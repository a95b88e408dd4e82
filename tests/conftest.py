"""
Common fixtures and setup for docdal tests.
Provides test entity classes, gateways over in-memory and sqlite storage,
and storages that fail on demand.
"""
from typing import Any, Dict, Iterable, List, Optional

import pytest
from pydantic import BaseModel, Field

from docdal import (
    DB, Entity, InMemoryDocumentStorage, Many, One, SqlDocumentStorage, many
)

# ========================================================================
# Test entity classes
# ========================================================================

class Book(Entity):
    """A simple entity with scalar and list fields."""
    title: str
    pages: int = 0
    tags: List[str] = Field(default_factory=list)


class Address(BaseModel):
    street: str
    city: str


class Author(Entity):
    """Parent of a one-to-many relationship to Book."""
    name: str
    address: Optional[Address] = None
    favourite: Optional[One] = None
    books: Many = many(Book)


class Category(Entity):
    """Self-referencing one-to-many relationship."""
    name: str
    subcategories: Many = many("Category")


class Shelf(Entity):
    """Entity embedding other entities as document copies."""
    label: str
    featured: List[Book] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)


class Unserializable(Entity):
    """Entity whose `handle` can hold a value with no document form."""
    handle: Any = None

# ========================================================================
# Storages
# ========================================================================

class FailingDeleteStorage(InMemoryDocumentStorage):
    """In-memory storage whose delete_one fails for selected ids."""

    def __init__(self, failing_ids: Iterable[str] = ()) -> None:
        super().__init__()
        self.failing_ids = set(failing_ids)
        self.delete_calls: List[str] = []

    def delete_one(self, collection: str, document_id: str) -> int:
        self.delete_calls.append(document_id)
        if document_id in self.failing_ids:
            raise ConnectionError(f"store unavailable while deleting {document_id}")
        return super().delete_one(collection, document_id)


class FailingWriteStorage(InMemoryDocumentStorage):
    """In-memory storage whose writes always fail."""

    def replace_one(self, collection: str, document_id: str, document: Dict[str, Any], upsert: bool = True) -> int:
        raise ConnectionError("store unavailable")

    def update_one(self, collection: str, document_id: str, fields: Dict[str, Any], upsert: bool = True) -> int:
        raise ConnectionError("store unavailable")

# ========================================================================
# Fixtures
# ========================================================================

@pytest.fixture
def storage() -> InMemoryDocumentStorage:
    return InMemoryDocumentStorage()


@pytest.fixture
def db(storage: InMemoryDocumentStorage) -> DB:
    """Gateway over a fresh in-memory storage."""
    return DB(storage, "test")


@pytest.fixture
def sql_db(tmp_path):
    """Gateway over a sqlite file, disposed after the test."""
    sql_storage = SqlDocumentStorage.from_url(f"sqlite:///{tmp_path / 'docdal.db'}")
    yield DB(sql_storage, "test")
    sql_storage.engine.dispose()


@pytest.fixture
def saved_book(db: DB) -> Book:
    book = Book(title="Dune", pages=412, tags=["scifi"])
    book.save(db)
    return book


@pytest.fixture
def author_with_books(db: DB):
    """A saved author linked to two saved books."""
    first = Book(title="Foundation", pages=255)
    second = Book(title="I, Robot", pages=253)
    author = Author(name="Isaac Asimov")
    for entity in (first, second, author):
        entity.save(db)
    author.books = author.books.initialize(author)
    author.books.add(db, first)
    author.books.add(db, second)
    return author, first, second
