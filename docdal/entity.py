############################################################
# entity.py
############################################################

"""
Persistable entities, their identity and their document copies.

1. IDENTITY:
   - Every entity carries a string `id`; an empty id means "not yet saved"
   - `require_saved()` guards every operation that needs a stable id and
     runs before any store I/O
   - New ids are uuid4 hex strings; `EMPTY_ID` (the nil uuid) marks an
     embedded document copy

2. DUPLICATION:
   - `duplicate()` copies an entity through its JSON document form, so the
     copy never shares mutable state with the original
   - `to_document()` / `to_documents()` strip the identity of the copies so
     they can be embedded inside another entity as plain values

3. FACADE:
   - Entities expose save/delete/reference helpers that delegate to an
     explicitly passed `DB` gateway

Example Usage:
```python
class Book(Entity):
    title: str

book = Book(title="Dune")
book.save(db)                 # assigns book.id
ref = book.to_reference()     # One(id=book.id, entity_type="Book")
copy = book.to_document()     # copy.id == EMPTY_ID
```
"""

import logging
from typing import (
    Any, Dict, Iterable, Iterator, List, Optional, Type, TypeVar, TYPE_CHECKING
)
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
from pydantic_core import PydanticSerializationError

from docdal.errors import InvalidStateError, SerializationError
from docdal.registry import EntityTypeRegistry

if TYPE_CHECKING:
    from docdal.db import DB, SaveMode
    from docdal.query import Collection
    from docdal.references import One

##############################
# 1) Identity
##############################

EMPTY_ID: str = UUID(int=0).hex
"""Identifier carried by embedded document copies."""

T_Entity = TypeVar('T_Entity', bound='Entity')


def new_id() -> str:
    """Generate a fresh entity identifier."""
    return uuid4().hex


def is_unsaved(entity: Any) -> bool:
    """True iff the entity has no identifier yet."""
    return not getattr(entity, 'id', None)


def require_saved(entity: Any) -> None:
    """Raise InvalidStateError unless the entity has an identifier."""
    if is_unsaved(entity):
        raise InvalidStateError(
            f"{type(entity).__name__} must be saved before this operation"
        )

##############################
# 2) The Entity
##############################

class Entity(BaseModel):
    """
    Base class for entities persisted by the gateway.

    Subclasses declare plain pydantic fields. Single references are declared
    as `One` fields, one-to-many relationships as `Many` fields built with
    `many(ChildType)`. Every subclass is recorded in `EntityTypeRegistry`
    under its collection name when the class is created.

    Attributes:
        id: Store identifier, empty until the entity is saved
    """
    id: str = Field(default="", description="Store identifier; empty until saved")

    model_config = {
        "ser_json_timedelta": "iso8601",
    }

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        EntityTypeRegistry.register(cls)

    @classmethod
    def collection_name(cls) -> str:
        """Name of the store collection holding this type."""
        return cls.__name__

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id or '<unsaved>'})"

    def to_store_document(self) -> Dict[str, Any]:
        """JSON-compatible document written to the store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_store_document(cls: Type[T_Entity], document: Dict[str, Any]) -> T_Entity:
        """Rebuild an entity from a stored document."""
        return cls.model_validate(document)

    # Facade: delegates to the gateway / duplicator / reference handle

    @classmethod
    def collection(cls: Type[T_Entity], db: "DB") -> "Collection[T_Entity]":
        """A lazy queryable view of every stored entity of this type."""
        return db.collection(cls)

    @classmethod
    def find(cls: Type[T_Entity], db: "DB", entity_id: str) -> Optional[T_Entity]:
        """Fetch one entity of this type by id, or None."""
        return db.find(cls, entity_id)

    def save(self, db: "DB", mode: Optional["SaveMode"] = None) -> None:
        """
        Insert this entity, or replace the stored record with the same id.

        WARNING: with the default replace mode the stored shape is always
        overwritten with the current shape, so fields removed from the type
        are lost.

        Blocks the calling thread; do not call from a running event loop.
        """
        if mode is None:
            db.save(self)
        else:
            db.save(self, mode=mode)

    async def save_async(self, db: "DB", mode: Optional["SaveMode"] = None, timeout: Optional[float] = None) -> None:
        """Async variant of `save`."""
        if mode is None:
            await db.save_async(self, timeout=timeout)
        else:
            await db.save_async(self, mode=mode, timeout=timeout)

    def delete(self, db: "DB") -> None:
        """
        Delete this entity.

        Join records of one-to-many relationships naming it are removed too.
        Blocks the calling thread; do not call from a running event loop.
        """
        require_saved(self)
        db.delete(type(self), self.id)

    async def delete_async(self, db: "DB", timeout: Optional[float] = None) -> None:
        """Async variant of `delete`."""
        require_saved(self)
        await db.delete_async(type(self), self.id, timeout=timeout)

    def to_reference(self) -> "One":
        """Return a `One` handle pointing at this entity."""
        from docdal.references import One
        return One.create(self)

    def to_document(self: T_Entity) -> T_Entity:
        """Unlinked duplicate of this entity with a blank id, ready for embedding."""
        return to_document(self)

##############################
# 3) Duplication
##############################

def duplicate(entity: T_Entity) -> T_Entity:
    """
    Deep copy an entity through its JSON document form.

    Raises:
        SerializationError: If the entity cannot round-trip
    """
    try:
        payload = entity.model_dump_json()
        return type(entity).model_validate_json(payload)
    except (PydanticSerializationError, ValueError) as exc:
        raise SerializationError(
            f"{type(entity).__name__}({entity.id}) cannot round-trip through its document form: {exc}"
        ) from exc


def to_document(entity: T_Entity) -> T_Entity:
    """Duplicate an entity and reset its id to EMPTY_ID."""
    copy = duplicate(entity)
    copy.id = EMPTY_ID
    return copy


def iter_documents(entities: Iterable[T_Entity]) -> Iterator[T_Entity]:
    """Lazily yield document copies, in input order."""
    for entity in entities:
        yield to_document(entity)


def to_documents(entities: Iterable[T_Entity]) -> List[T_Entity]:
    """Document copies of every entity, in input order."""
    return list(iter_documents(entities))
