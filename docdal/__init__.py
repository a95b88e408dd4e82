"""
docdal: a data-access layer over a document store.

Entities are pydantic models with a string id. They reference each other
through `One` handles and `Many` collections, and are saved and deleted
through an explicitly constructed `DB` gateway.
"""
from docdal.config import DEFAULT_HOST, DEFAULT_PORT, StoreSettings
from docdal.db import DB, SaveMode, run_blocking
from docdal.entity import (
    EMPTY_ID,
    Entity,
    duplicate,
    is_unsaved,
    iter_documents,
    new_id,
    require_saved,
    to_document,
    to_documents,
)
from docdal.errors import ChildTypeError, DocDALError, InvalidStateError, SerializationError
from docdal.extensions import (
    add_docdal,
    add_docdal_from_settings,
    delete_all,
    delete_all_async,
)
from docdal.query import Collection
from docdal.references import ChildCollection, Many, One, many
from docdal.storage import DocumentStorage, InMemoryDocumentStorage, SqlDocumentStorage

__all__ = [
    "ChildCollection",
    "ChildTypeError",
    "Collection",
    "DB",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DocDALError",
    "DocumentStorage",
    "EMPTY_ID",
    "Entity",
    "InMemoryDocumentStorage",
    "InvalidStateError",
    "Many",
    "One",
    "SaveMode",
    "SerializationError",
    "SqlDocumentStorage",
    "StoreSettings",
    "add_docdal",
    "add_docdal_from_settings",
    "delete_all",
    "delete_all_async",
    "duplicate",
    "is_unsaved",
    "iter_documents",
    "many",
    "new_id",
    "require_saved",
    "run_blocking",
    "to_document",
    "to_documents",
]
