"""
Convenience functions over entities and gateway registration.

The per-entity helpers (`save`, `delete`, `to_reference`, `to_document`, ...)
live on `Entity` itself; this module holds the ones that work on sequences
of entities, plus the two entry points that register a process-wide `DB`
with a dependency_injector container.

Example Usage:
```python
container = add_docdal(None, "library", host="10.0.0.5")
db = container.db()              # always the same DB instance

delete_all(db, old_books)        # blocks; use delete_all_async in coroutines
embedded = to_documents(books)   # identity-stripped copies, same order
```
"""

import asyncio
import logging
from typing import Iterable, Optional

from dependency_injector import containers, providers

from docdal.config import DEFAULT_HOST, DEFAULT_PORT, StoreSettings
from docdal.db import DB, run_blocking
from docdal.entity import Entity, require_saved, to_documents, iter_documents

__all__ = [
    "add_docdal",
    "add_docdal_from_settings",
    "delete_all",
    "delete_all_async",
    "iter_documents",
    "to_documents",
]

logger = logging.getLogger("Extensions")


##############################
# Batch delete
##############################

async def delete_all_async(db: DB, entities: Iterable[Entity]) -> None:
    """
    Delete several entities concurrently.

    Every entity must be saved; this is checked for all of them before the
    first delete is issued. Join records of their one-to-many relationships
    are deleted too. If any delete fails the first failure is re-raised once
    all deletes have settled; completed deletes are not rolled back.
    """
    targets = list(entities)
    for entity in targets:
        require_saved(entity)
    results = await asyncio.gather(
        *(db.delete_async(type(entity), entity.id) for entity in targets),
        return_exceptions=True,
    )
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        logger.error(f"{len(failures)} of {len(targets)} deletes failed")
        raise failures[0]


def delete_all(db: DB, entities: Iterable[Entity]) -> None:
    """Blocking variant of `delete_all_async`."""
    run_blocking(delete_all_async(db, entities))


##############################
# Registration
##############################

def _container(container: Optional[containers.DynamicContainer]) -> containers.DynamicContainer:
    return container if container is not None else containers.DynamicContainer()


def add_docdal(
    container: Optional[containers.DynamicContainer],
    database: str,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> containers.DynamicContainer:
    """
    Register a singleton `DB` as `container.db`.

    Args:
        container: Container to register on; a new one is created if None
        database: Database name
        host: Store host address. Defaults to 127.0.0.1
        port: Store port number. Defaults to 5432
    """
    target = _container(container)
    target.db = providers.Singleton(DB.connect, database, host, port)
    logger.info(f"Registered DB for '{database}' at {host}:{port}")
    return target


def add_docdal_from_settings(
    container: Optional[containers.DynamicContainer],
    settings: StoreSettings,
    database: str,
) -> containers.DynamicContainer:
    """
    Register a singleton `DB` built from a settings object (credentials,
    TLS options, pool tuning) as `container.db`.
    """
    target = _container(container)
    target.db = providers.Singleton(DB.from_settings, settings, database)
    logger.info(f"Registered DB for '{database}' from {type(settings).__name__}")
    return target
