############################################################
# references.py
############################################################

"""
References between entities.

1. SINGLE REFERENCES (`One`):
   - Hold the target's id and collection name, never its data
   - Resolve on demand against a gateway; a deleted target resolves to None

2. ONE-TO-MANY REFERENCES (`Many`):
   - Declared on the parent type with `many(ChildType)`
   - Unbound until `initialize(parent)` returns a copy scoped to the
     parent's id
   - Links live as join records in a separate collection named
     "{Parent}~{Child}"; the parent and child documents never embed them
   - Reading children always re-queries the store

Example Usage:
```python
class Author(Entity):
    name: str
    books: Many = many(Book)

author.save(db)
author.books = author.books.initialize(author)
author.books.add(db, book)
titles = [b.title for b in author.books.children(db)]
```
"""

import json
import logging
from typing import Any, Iterable, List, Optional, Type, Union, TYPE_CHECKING
from uuid import NAMESPACE_OID, uuid5

from pydantic import BaseModel, Field

from docdal.entity import Entity, require_saved
from docdal.errors import ChildTypeError, InvalidStateError
from docdal.query import Collection
from docdal.registry import EntityTypeRegistry, join_collection_name

if TYPE_CHECKING:
    from docdal.db import DB

_logger = logging.getLogger("One")


def link_id(parent_id: str, child_id: str) -> str:
    """Store id of the join record linking `parent_id` to `child_id`, unique per pair."""
    return uuid5(NAMESPACE_OID, json.dumps([parent_id, child_id])).hex


def _resolve_type(name: str) -> Type[Entity]:
    entity_type = EntityTypeRegistry.get(name)
    if entity_type is None:
        raise InvalidStateError(f"Unknown entity type '{name}'")
    return entity_type

##############################
# 1) One
##############################

class One(BaseModel):
    """
    Serializable pointer to exactly one entity.

    Attributes:
        id: Identifier of the referenced entity
        entity_type: Collection name of the referenced entity's type
    """
    id: str
    entity_type: str

    @classmethod
    def create(cls, entity: Entity) -> "One":
        """Capture a reference to a saved entity."""
        require_saved(entity)
        return cls(id=entity.id, entity_type=type(entity).collection_name())

    def target_type(self) -> Type[Entity]:
        return _resolve_type(self.entity_type)

    def resolve(self, db: "DB") -> Optional[Entity]:
        """Fetch the referenced entity, or None if it no longer exists."""
        entity = db.find(self.target_type(), self.id)
        if entity is None:
            _logger.debug(f"Reference {self.entity_type}({self.id}) is stale")
        return entity

    async def resolve_async(self, db: "DB", timeout: Optional[float] = None) -> Optional[Entity]:
        """Async variant of `resolve`."""
        entity = await db.find_async(self.target_type(), self.id, timeout=timeout)
        if entity is None:
            _logger.debug(f"Reference {self.entity_type}({self.id}) is stale")
        return entity

##############################
# 2) Many
##############################

def many(child_type: Union[Type[Entity], str]) -> Any:
    """
    Declare a one-to-many relationship field.

    `child_type` may be the child class or its collection name (for types
    declared later in the module).
    """
    name = child_type if isinstance(child_type, str) else child_type.collection_name()
    return Field(default_factory=lambda: Many(child_type=name))


class Many(BaseModel):
    """
    Typed accessor for the children linked to one parent entity.

    The object is never the source of truth: links are stored as join
    records keyed by (parent id, child id). Binding to a parent happens only
    through `initialize`, which returns a new instance.
    Linking a child of another type raises `ChildTypeError`.

    Attributes:
        child_type: Collection name of the child type
        parent_type: Collection name of the parent type, empty until bound
        parent_id: Id of the parent, empty until bound
    """
    child_type: str = ""
    parent_type: str = ""
    parent_id: str = ""

    @property
    def is_bound(self) -> bool:
        return bool(self.parent_id)

    @property
    def join_collection(self) -> str:
        self._require_bound()
        return join_collection_name(self.parent_type, self.child_type)

    def initialize(self, parent: Entity) -> "Many":
        """Return a copy of this collection bound to `parent`."""
        require_saved(parent)
        if not self.child_type:
            raise InvalidStateError("Reference collection declared without a child type")
        return Many(
            child_type=self.child_type,
            parent_type=type(parent).collection_name(),
            parent_id=parent.id,
        )

    def _require_bound(self) -> None:
        if not self.is_bound:
            raise InvalidStateError(
                "Reference collection must be initialized with its parent before use"
            )

    def _check_child(self, child: Entity) -> None:
        require_saved(child)
        if type(child).collection_name() != self.child_type:
            raise ChildTypeError(
                f"Expected a {self.child_type} child, got {type(child).__name__}"
            )

    def _link_id(self, child_id: str) -> str:
        return link_id(self.parent_id, child_id)

    def _add_links(self, db: "DB", children: List[Entity]) -> None:
        for child in children:
            db.storage.replace_one(
                self.join_collection,
                self._link_id(child.id),
                {"parent_id": self.parent_id, "child_id": child.id},
                upsert=True,
            )
        logging.getLogger("Many").info(
            f"Linked {len(children)} {self.child_type} to {self.parent_type}({self.parent_id})"
        )

    def _remove_links(self, db: "DB", children: List[Entity]) -> None:
        removed = 0
        for child in children:
            removed += db.storage.delete_one(self.join_collection, self._link_id(child.id))
        logging.getLogger("Many").info(
            f"Unlinked {removed} {self.child_type} from {self.parent_type}({self.parent_id})"
        )

    def _validated(self, children: Iterable[Entity]) -> List[Entity]:
        self._require_bound()
        checked = list(children)
        for child in checked:
            self._check_child(child)
        return checked

    def add(self, db: "DB", child: Entity) -> None:
        """Link `child` to the parent. Adding an existing link is a no-op."""
        self.add_many(db, [child])

    def add_many(self, db: "DB", children: Iterable[Entity]) -> None:
        self._add_links(db, self._validated(children))

    async def add_async(self, db: "DB", child: Entity, timeout: Optional[float] = None) -> None:
        await self.add_many_async(db, [child], timeout=timeout)

    async def add_many_async(self, db: "DB", children: Iterable[Entity], timeout: Optional[float] = None) -> None:
        checked = self._validated(children)
        await db.run_async(self._add_links, db, checked, timeout=timeout)

    def remove(self, db: "DB", child: Entity) -> None:
        """Unlink `child`. Removing a missing link is a no-op."""
        self.remove_many(db, [child])

    def remove_many(self, db: "DB", children: Iterable[Entity]) -> None:
        self._remove_links(db, self._validated(children))

    async def remove_async(self, db: "DB", child: Entity, timeout: Optional[float] = None) -> None:
        await self.remove_many_async(db, [child], timeout=timeout)

    async def remove_many_async(self, db: "DB", children: Iterable[Entity], timeout: Optional[float] = None) -> None:
        checked = self._validated(children)
        await db.run_async(self._remove_links, db, checked, timeout=timeout)

    def child_ids(self, db: "DB") -> List[str]:
        """Ids of every linked child, including links whose child was deleted."""
        self._require_bound()
        links = db.storage.find(self.join_collection, {"parent_id": self.parent_id})
        return [link["child_id"] for link in links]

    def children(self, db: "DB") -> "ChildCollection":
        """Lazy view of the children currently linked to the parent."""
        self._require_bound()
        return ChildCollection(db, self)

    def count(self, db: "DB") -> int:
        return self.children(db).count()


class ChildCollection(Collection[Entity]):
    """
    Collection restricted to the children linked to one parent.
    Each evaluation reads the join records first, then the child documents.
    """

    def __init__(self, db: "DB", relation: Many, criteria: Optional[dict] = None) -> None:
        super().__init__(db, _resolve_type(relation.child_type), criteria)
        self._relation = relation

    def _clone(self) -> "ChildCollection":
        return ChildCollection(self._db, self._relation, self._criteria)

    def _fetch(self) -> List[Entity]:
        child_ids = self._relation.child_ids(self._db)
        if not child_ids:
            return []
        documents = self._db.storage.find(
            self._entity_type.collection_name(), self._criteria, ids=child_ids
        )
        return [self._entity_type.from_store_document(doc) for doc in documents]

    def __repr__(self) -> str:
        return (
            f"ChildCollection({self._relation.parent_type}({self._relation.parent_id})"
            f" -> {self._relation.child_type}, {self._criteria})"
        )
