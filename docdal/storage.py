############################################################
# storage.py
############################################################

"""
Document storage backends.

A storage keeps JSON-compatible documents grouped in named collections and
addressed by string id. It knows nothing about entity classes: the gateway
turns entities into documents and back.

Two implementations are provided:
- InMemoryDocumentStorage: dictionaries guarded by a lock; copies on the way
  in and out so callers never share state with the store
- SqlDocumentStorage: one row per document in a single SQLAlchemy table,
  the document body kept in a JSON column

Criteria passed to `find` / `delete_many` are equality matches on top-level
document fields.
"""

import logging
import threading
from copy import deepcopy
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from sqlalchemy import JSON, String, create_engine, delete, select
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

Document = Dict[str, Any]
Criteria = Dict[str, Any]

##############################
# 1) Storage Protocol
##############################

class DocumentStorage(Protocol):
    """
    Interface of the document store the gateway talks to.
    Implementations must be safe to call from several threads at once.
    """
    def find_one(self, collection: str, document_id: str) -> Optional[Document]: ...
    def find(self, collection: str, criteria: Optional[Criteria] = None, ids: Optional[Iterable[str]] = None) -> List[Document]: ...
    def replace_one(self, collection: str, document_id: str, document: Document, upsert: bool = True) -> int: ...
    def update_one(self, collection: str, document_id: str, fields: Document, upsert: bool = True) -> int: ...
    def delete_one(self, collection: str, document_id: str) -> int: ...
    def delete_many(self, collection: str, criteria: Criteria) -> int: ...
    def drop_collection(self, collection: str) -> None: ...
    def collection_names(self) -> List[str]: ...
    def get_storage_status(self) -> Dict[str, Any]: ...
    def clear(self) -> None: ...


def matches(document: Document, criteria: Optional[Criteria]) -> bool:
    """True if every criteria field equals the document field."""
    if not criteria:
        return True
    missing = object()
    return all(document.get(key, missing) == value for key, value in criteria.items())

##############################
# 2) In-memory storage
##############################

class InMemoryDocumentStorage(DocumentStorage):
    """
    In-memory storage using nested dictionaries.
    """
    def __init__(self) -> None:
        self._logger = logging.getLogger("InMemoryDocumentStorage")
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = threading.RLock()

    def find_one(self, collection: str, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._collections.get(collection, {}).get(document_id)
            return deepcopy(document) if document is not None else None

    def find(self, collection: str, criteria: Optional[Criteria] = None, ids: Optional[Iterable[str]] = None) -> List[Document]:
        wanted = set(ids) if ids is not None else None
        with self._lock:
            documents = self._collections.get(collection, {})
            result = [
                deepcopy(doc)
                for doc_id, doc in documents.items()
                if (wanted is None or doc_id in wanted) and matches(doc, criteria)
            ]
        self._logger.debug(f"find {collection} {criteria or {}} -> {len(result)} documents")
        return result

    def replace_one(self, collection: str, document_id: str, document: Document, upsert: bool = True) -> int:
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            if document_id not in documents and not upsert:
                return 0
            stored = deepcopy(document)
            stored["id"] = document_id
            documents[document_id] = stored
        return 1

    def update_one(self, collection: str, document_id: str, fields: Document, upsert: bool = True) -> int:
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            if document_id not in documents:
                if not upsert:
                    return 0
                documents[document_id] = {"id": document_id}
            documents[document_id].update(deepcopy(fields))
            documents[document_id]["id"] = document_id
        return 1

    def delete_one(self, collection: str, document_id: str) -> int:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(document_id, None)
        return 0 if removed is None else 1

    def delete_many(self, collection: str, criteria: Criteria) -> int:
        with self._lock:
            documents = self._collections.get(collection, {})
            doomed = [doc_id for doc_id, doc in documents.items() if matches(doc, criteria)]
            for doc_id in doomed:
                del documents[doc_id]
        if doomed:
            self._logger.debug(f"delete_many {collection} {criteria} -> {len(doomed)} documents")
        return len(doomed)

    def drop_collection(self, collection: str) -> None:
        with self._lock:
            self._collections.pop(collection, None)

    def collection_names(self) -> List[str]:
        with self._lock:
            return [name for name, docs in self._collections.items() if docs]

    def get_storage_status(self) -> Dict[str, Any]:
        with self._lock:
            counts = {name: len(docs) for name, docs in self._collections.items() if docs}
        return {
            "storage": "in_memory",
            "in_memory": True,
            "document_count": sum(counts.values()),
            "collections": counts,
        }

    def clear(self) -> None:
        with self._lock:
            self._collections.clear()

##############################
# 3) SQL storage
##############################

class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""
    pass


class DocumentRow(Base):
    """One stored document."""
    __tablename__ = "docdal_documents"

    collection: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    body: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)


def _criteria_clauses(criteria: Optional[Criteria]) -> Tuple[List[Any], Criteria]:
    """
    Split criteria into SQL clauses on the JSON body and leftovers that
    have to be matched in Python (None, lists, nested objects).
    """
    clauses: List[Any] = []
    leftover: Criteria = {}
    for key, value in (criteria or {}).items():
        if key == "id" and isinstance(value, str):
            clauses.append(DocumentRow.id == value)
        elif isinstance(value, bool):
            clauses.append(DocumentRow.body[key].as_boolean() == value)
        elif isinstance(value, int):
            clauses.append(DocumentRow.body[key].as_integer() == value)
        elif isinstance(value, float):
            clauses.append(DocumentRow.body[key].as_float() == value)
        elif isinstance(value, str):
            clauses.append(DocumentRow.body[key].as_string() == value)
        else:
            leftover[key] = value
    return clauses, leftover


class SqlDocumentStorage(DocumentStorage):
    """
    SQLAlchemy-based document storage.

    Features:
    - Works with any dialect supporting the JSON type (sqlite, postgresql, mysql)
    - Equality criteria on top-level fields are pushed down to SQL
    - Every call runs in its own short transaction; the engine's connection
      pool provides thread safety
    """
    def __init__(
        self,
        engine: Engine,
        session_factory: Optional[Callable[[], Session]] = None,
        create_tables: bool = True
    ) -> None:
        self._logger = logging.getLogger("SqlDocumentStorage")
        self._engine = engine
        self._session_factory = session_factory or sessionmaker(bind=engine, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(engine)
        self._logger.info(f"Initialized SQL storage on {engine.url.render_as_string(hide_password=True)}")

    @classmethod
    def from_url(cls, url: Union[str, URL], **engine_kwargs: Any) -> "SqlDocumentStorage":
        """Create the engine for `url` and wrap it."""
        return cls(create_engine(url, **engine_kwargs))

    @property
    def engine(self) -> Engine:
        return self._engine

    def _select(self, collection: str, criteria: Optional[Criteria], ids: Optional[Iterable[str]]) -> Tuple[Any, Criteria]:
        clauses, leftover = _criteria_clauses(criteria)
        stmt = select(DocumentRow).where(DocumentRow.collection == collection, *clauses)
        if ids is not None:
            stmt = stmt.where(DocumentRow.id.in_(list(ids)))
        return stmt, leftover

    def find_one(self, collection: str, document_id: str) -> Optional[Document]:
        with self._session_factory() as session:
            row = session.get(DocumentRow, (collection, document_id))
            return dict(row.body) if row is not None else None

    def find(self, collection: str, criteria: Optional[Criteria] = None, ids: Optional[Iterable[str]] = None) -> List[Document]:
        stmt, leftover = self._select(collection, criteria, ids)
        with self._session_factory() as session:
            rows = session.scalars(stmt).all()
            result = [dict(row.body) for row in rows if matches(row.body, leftover)]
        self._logger.debug(f"find {collection} {criteria or {}} -> {len(result)} documents")
        return result

    def replace_one(self, collection: str, document_id: str, document: Document, upsert: bool = True) -> int:
        body = {**document, "id": document_id}
        with self._session_factory() as session, session.begin():
            row = session.get(DocumentRow, (collection, document_id))
            if row is not None:
                row.body = body
            elif upsert:
                session.add(DocumentRow(collection=collection, id=document_id, body=body))
            else:
                return 0
        return 1

    def update_one(self, collection: str, document_id: str, fields: Document, upsert: bool = True) -> int:
        with self._session_factory() as session, session.begin():
            row = session.get(DocumentRow, (collection, document_id))
            if row is not None:
                # a new dict so the JSON column is flagged dirty
                row.body = {**row.body, **fields, "id": document_id}
            elif upsert:
                session.add(DocumentRow(collection=collection, id=document_id, body={**fields, "id": document_id}))
            else:
                return 0
        return 1

    def delete_one(self, collection: str, document_id: str) -> int:
        stmt = delete(DocumentRow).where(
            DocumentRow.collection == collection, DocumentRow.id == document_id
        )
        with self._session_factory() as session, session.begin():
            result = session.execute(stmt)
        return result.rowcount or 0

    def delete_many(self, collection: str, criteria: Criteria) -> int:
        clauses, leftover = _criteria_clauses(criteria)
        with self._session_factory() as session, session.begin():
            if leftover:
                candidates = session.scalars(
                    select(DocumentRow).where(DocumentRow.collection == collection, *clauses)
                ).all()
                doomed = [row.id for row in candidates if matches(row.body, leftover)]
                if not doomed:
                    return 0
                clauses = [DocumentRow.id.in_(doomed)]
            result = session.execute(
                delete(DocumentRow).where(DocumentRow.collection == collection, *clauses)
            )
        count = result.rowcount or 0
        if count:
            self._logger.debug(f"delete_many {collection} {criteria} -> {count} documents")
        return count

    def drop_collection(self, collection: str) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(delete(DocumentRow).where(DocumentRow.collection == collection))

    def collection_names(self) -> List[str]:
        with self._session_factory() as session:
            return list(session.scalars(select(DocumentRow.collection).distinct()).all())

    def get_storage_status(self) -> Dict[str, Any]:
        return {
            "storage": "sql",
            "in_memory": False,
            "dialect": self._engine.dialect.name,
            "collections": self.collection_names(),
        }

    def clear(self) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(delete(DocumentRow))
