############################################################
# db.py
############################################################

"""
The persistence gateway.

`DB` is the single point of contact with the store. It is built once at
startup (directly around a storage, from host/port, or from a
`StoreSettings` object) and passed explicitly to the code that needs it.
After construction it holds no per-call state.

1. SAVE (upsert by id):
   - An entity without an id (or carrying EMPTY_ID) gets a new id first
   - REPLACE mode overwrites the whole stored document with the current
     shape; fields no longer declared by the type are lost
   - MERGE mode only overwrites the fields the current shape carries

2. DELETE (with single-level cascade):
   - Removes the document, then the join records of every one-to-many
     relationship naming the type as parent or as child
   - Children of a deleted parent are kept; deleting a missing id is a no-op

3. ASYNC / SYNC:
   - `*_async` methods run the storage call in a worker thread; each takes
     an optional timeout in seconds and is cancelled like any awaitable
   - `save`, `delete` and `delete_all` block on their async variant and
     must not be called from a running event loop
"""

import asyncio
import logging
from enum import Enum
from typing import (
    Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type, TypeVar
)

from pydantic_core import PydanticSerializationError

from docdal.config import DEFAULT_HOST, DEFAULT_PORT, StoreSettings
from docdal.entity import EMPTY_ID, Entity, is_unsaved, new_id
from docdal.errors import InvalidStateError, SerializationError
from docdal.query import Collection
from docdal.registry import EntityTypeRegistry, RelationshipRegistry
from docdal.storage import DocumentStorage, InMemoryDocumentStorage, SqlDocumentStorage

E = TypeVar('E', bound=Entity)
R = TypeVar('R')


class SaveMode(str, Enum):
    """How `save` treats an existing record with the same id."""
    REPLACE = "replace"
    MERGE = "merge"


def run_blocking(awaitable: Awaitable[R]) -> R:
    """
    Run an awaitable to completion on a fresh event loop and return its result.

    Raises:
        RuntimeError: If called from a thread that is already running an event loop
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_await(awaitable))
    if asyncio.iscoroutine(awaitable):
        awaitable.close()
    raise RuntimeError(
        "Blocking docdal call made from a running event loop; await the *_async variant instead"
    )


async def _await(awaitable: Awaitable[R]) -> R:
    return await awaitable


class DB:
    """
    Gateway between entities and a document storage.

    Attributes:
        storage: The document storage every call is delegated to
        database: Name of the database the gateway was configured for
        relationships: One-to-many relationships declared by the known types
    """

    def __init__(
        self,
        storage: DocumentStorage,
        database: str = "",
        models: Optional[Iterable[Type[Entity]]] = None
    ) -> None:
        self._logger = logging.getLogger("DB")
        self._storage = storage
        self._database = database
        model_list = list(models) if models is not None else EntityTypeRegistry.all_types()
        self._relationships = RelationshipRegistry.from_models(model_list)
        self._logger.info(
            f"Gateway ready for database '{database}' on {type(storage).__name__} "
            f"({len(model_list)} entity types, {len(self._relationships)} relationships)"
        )

    @classmethod
    def connect(
        cls,
        database: str,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        models: Optional[Iterable[Type[Entity]]] = None
    ) -> "DB":
        """Build a gateway from a host, a port and a database name."""
        return cls.from_settings(StoreSettings(host=host, port=port), database, models=models)

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        database: str,
        models: Optional[Iterable[Type[Entity]]] = None
    ) -> "DB":
        """Build a gateway from a settings object (credentials, TLS options, ...)."""
        if settings.is_memory:
            storage: DocumentStorage = InMemoryDocumentStorage()
        else:
            storage = SqlDocumentStorage.from_url(
                settings.to_url(database), **settings.engine_options()
            )
        return cls(storage, database, models=models)

    @property
    def storage(self) -> DocumentStorage:
        return self._storage

    @property
    def database(self) -> str:
        return self._database

    @property
    def relationships(self) -> RelationshipRegistry:
        return self._relationships

    def __repr__(self) -> str:
        return f"DB({self._database!r}, {type(self._storage).__name__})"

    def get_status(self) -> Dict[str, Any]:
        return {
            "database": self._database,
            "relationships": len(self._relationships),
            **self._storage.get_storage_status(),
        }

    async def run_async(self, func: Callable[..., R], *args: Any, timeout: Optional[float] = None) -> R:
        """Run a blocking storage call in a worker thread."""
        call = asyncio.to_thread(func, *args)
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout)

    ##############################
    # Queries
    ##############################

    def collection(self, entity_type: Type[E]) -> Collection[E]:
        """Lazy queryable view of every stored entity of `entity_type`."""
        return Collection(self, entity_type)

    def find(self, entity_type: Type[E], entity_id: str) -> Optional[E]:
        """Fetch one entity by id, or None."""
        if not entity_id:
            return None
        document = self._storage.find_one(entity_type.collection_name(), entity_id)
        if document is None:
            self._logger.debug(f"{entity_type.collection_name()}({entity_id}) not found")
            return None
        return entity_type.from_store_document(document)

    async def find_async(self, entity_type: Type[E], entity_id: str, timeout: Optional[float] = None) -> Optional[E]:
        return await self.run_async(self.find, entity_type, entity_id, timeout=timeout)

    ##############################
    # Save
    ##############################

    async def save_async(
        self,
        entity: Entity,
        mode: SaveMode = SaveMode.REPLACE,
        timeout: Optional[float] = None
    ) -> None:
        """
        Insert the entity, or replace the stored record with the same id.

        WARNING: in REPLACE mode the stored shape is always overwritten with
        the current shape of the entity. Be mindful of data loss when fields
        are removed from the type.

        If the call times out or is cancelled the entity keeps its new id,
        so saving it again upserts the same record.
        """
        collection = type(entity).collection_name()
        previous_id = entity.id
        if is_unsaved(entity) or entity.id == EMPTY_ID:
            entity.id = new_id()
        try:
            document = entity.to_store_document()
        except PydanticSerializationError as exc:
            entity.id = previous_id
            raise SerializationError(f"{collection}({entity.id}) cannot be serialized: {exc}") from exc

        write = self._storage.update_one if mode is SaveMode.MERGE else self._storage.replace_one
        try:
            await self.run_async(write, collection, entity.id, document, timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            # the worker thread may still complete the write under this id
            self._logger.warning(f"Saving {collection}({entity.id}) abandoned before the store answered")
            raise
        except Exception as exc:
            self._logger.error(f"Saving {collection}({entity.id}) failed: {exc!r}")
            entity.id = previous_id
            raise
        self._logger.info(f"Saved {collection}({entity.id}) [{mode.value}]")

    def save(self, entity: Entity, mode: SaveMode = SaveMode.REPLACE) -> None:
        """Blocking variant of `save_async`."""
        run_blocking(self.save_async(entity, mode=mode))

    ##############################
    # Delete
    ##############################

    def _delete_with_cascade(self, collection: str, entity_id: str) -> None:
        deleted = self._storage.delete_one(collection, entity_id)
        unlinked = 0
        for join_collection, key in self._relationships.join_targets_for(collection):
            unlinked += self._storage.delete_many(join_collection, {key: entity_id})
        self._logger.info(
            f"Deleted {collection}({entity_id}): {deleted} document(s), {unlinked} link(s)"
        )

    async def delete_async(self, entity_type: Type[Entity], entity_id: str, timeout: Optional[float] = None) -> None:
        """
        Delete one entity by id.
        Join records of one-to-many relationships naming it are deleted too;
        linked children are kept.
        """
        if not entity_id:
            raise InvalidStateError(f"Cannot delete an unsaved {entity_type.__name__}")
        collection = entity_type.collection_name()
        try:
            await self.run_async(self._delete_with_cascade, collection, entity_id, timeout=timeout)
        except BaseException as exc:
            self._logger.error(f"Deleting {collection}({entity_id}) failed: {exc!r}")
            raise

    def delete(self, entity_type: Type[Entity], entity_id: str) -> None:
        """Blocking variant of `delete_async`."""
        run_blocking(self.delete_async(entity_type, entity_id))

    async def delete_all_async(
        self,
        entity_type: Type[Entity],
        entity_ids: Iterable[str],
        timeout: Optional[float] = None
    ) -> None:
        """
        Delete several entities concurrently.

        Waits for every delete to settle, then re-raises the first failure.
        Deletes that succeeded are not rolled back.
        """
        ids = list(entity_ids)
        if not all(ids):
            raise InvalidStateError(f"Cannot delete an unsaved {entity_type.__name__}")
        results = await asyncio.gather(
            *(self.delete_async(entity_type, entity_id, timeout=timeout) for entity_id in ids),
            return_exceptions=True,
        )
        failures: List[BaseException] = [r for r in results if isinstance(r, BaseException)]
        if failures:
            self._logger.error(
                f"{len(failures)} of {len(ids)} deletes of {entity_type.collection_name()} failed"
            )
            raise failures[0]

    def delete_all(self, entity_type: Type[Entity], entity_ids: Iterable[str]) -> None:
        """Blocking variant of `delete_all_async`."""
        run_blocking(self.delete_all_async(entity_type, entity_ids))

    def drop(self, entity_type: Type[Entity]) -> None:
        """Delete every stored entity of a type together with its join collections."""
        collection = entity_type.collection_name()
        self._storage.drop_collection(collection)
        for join_collection, _ in self._relationships.join_targets_for(collection):
            self._storage.drop_collection(join_collection)
        self._logger.info(f"Dropped {collection}")
