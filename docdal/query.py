"""
Lazy, restartable views over stored entities.

A `Collection` holds no results. Every iteration or terminal call
(`all`, `first`, `count`, ...) goes back to the store, so it always reflects
the latest persisted state.
"""

from typing import (
    Any, Dict, Generic, Iterator, List, Optional, Type, TypeVar, TYPE_CHECKING
)

if TYPE_CHECKING:
    from docdal.db import DB
    from docdal.entity import Entity

E = TypeVar('E', bound='Entity')


class Collection(Generic[E]):
    """
    Queryable view of the documents of one entity type.

    Filtering is delegated to the storage; `filter()` returns a new view and
    never mutates this one.
    """

    def __init__(self, db: "DB", entity_type: Type[E], criteria: Optional[Dict[str, Any]] = None) -> None:
        self._db = db
        self._entity_type = entity_type
        self._criteria: Dict[str, Any] = dict(criteria or {})

    @property
    def entity_type(self) -> Type[E]:
        return self._entity_type

    @property
    def criteria(self) -> Dict[str, Any]:
        return dict(self._criteria)

    def filter(self, **criteria: Any) -> "Collection[E]":
        """A narrowed view matching every given field value."""
        clone = self._clone()
        clone._criteria.update(criteria)
        return clone

    def _clone(self) -> "Collection[E]":
        return Collection(self._db, self._entity_type, self._criteria)

    def _fetch(self) -> List[E]:
        documents = self._db.storage.find(self._entity_type.collection_name(), self._criteria)
        return [self._entity_type.from_store_document(doc) for doc in documents]

    def __iter__(self) -> Iterator[E]:
        return iter(self._fetch())

    def __repr__(self) -> str:
        return f"Collection({self._entity_type.__name__}, {self._criteria})"

    def all(self) -> List[E]:
        return self._fetch()

    def first(self) -> Optional[E]:
        results = self._fetch()
        return results[0] if results else None

    def count(self) -> int:
        return len(self._fetch())

    def ids(self) -> List[str]:
        return [entity.id for entity in self._fetch()]

    # async terminals run the read in a worker thread, bounded by `timeout` seconds

    async def all_async(self, timeout: Optional[float] = None) -> List[E]:
        return await self._db.run_async(self._fetch, timeout=timeout)

    async def first_async(self, timeout: Optional[float] = None) -> Optional[E]:
        results = await self.all_async(timeout=timeout)
        return results[0] if results else None

    async def count_async(self, timeout: Optional[float] = None) -> int:
        return len(await self.all_async(timeout=timeout))

    async def ids_async(self, timeout: Optional[float] = None) -> List[str]:
        return [entity.id for entity in await self.all_async(timeout=timeout)]
