"""
Tests for the SQLAlchemy document storage, directly and behind a gateway.
"""
import pytest

from docdal import DB, SaveMode, SqlDocumentStorage
from docdal.storage import DocumentRow

from conftest import Author, Book


@pytest.fixture
def sql_storage(sql_db):
    return sql_db.storage


class TestSqlDocumentStorage:
    """Tests for the storage operations on sqlite."""

    def test_table_is_created(self, sql_storage):
        assert DocumentRow.__tablename__ == "docdal_documents"
        assert sql_storage.collection_names() == []

    def test_replace_and_find_one(self, sql_storage):
        assert sql_storage.replace_one("Thing", "1", {"name": "a", "size": 3}) == 1
        assert sql_storage.find_one("Thing", "1") == {"name": "a", "size": 3, "id": "1"}
        assert sql_storage.find_one("Thing", "2") is None
        assert sql_storage.find_one("Other", "1") is None

    def test_replace_overwrites_whole_document(self, sql_storage):
        sql_storage.replace_one("Thing", "1", {"name": "a", "size": 3})
        sql_storage.replace_one("Thing", "1", {"name": "b"})
        assert sql_storage.find_one("Thing", "1") == {"name": "b", "id": "1"}

    def test_update_merges_fields(self, sql_storage):
        sql_storage.replace_one("Thing", "1", {"name": "a", "size": 3})
        sql_storage.update_one("Thing", "1", {"name": "b"})
        assert sql_storage.find_one("Thing", "1") == {"name": "b", "size": 3, "id": "1"}

    def test_without_upsert_missing_documents_are_untouched(self, sql_storage):
        assert sql_storage.replace_one("Thing", "1", {"name": "a"}, upsert=False) == 0
        assert sql_storage.update_one("Thing", "1", {"name": "a"}, upsert=False) == 0
        assert sql_storage.find_one("Thing", "1") is None

    def test_find_pushes_scalar_criteria_down(self, sql_storage):
        sql_storage.replace_one("Thing", "1", {"name": "a", "size": 3, "on": True, "score": 2.5})
        sql_storage.replace_one("Thing", "2", {"name": "b", "size": 4, "on": False, "score": 1.0})
        assert [d["id"] for d in sql_storage.find("Thing", {"name": "a"})] == ["1"]
        assert [d["id"] for d in sql_storage.find("Thing", {"size": 4})] == ["2"]
        assert [d["id"] for d in sql_storage.find("Thing", {"on": True})] == ["1"]
        assert [d["id"] for d in sql_storage.find("Thing", {"score": 2.5})] == ["1"]
        assert sql_storage.find("Thing", {"name": "a", "size": 4}) == []

    def test_find_matches_structured_criteria(self, sql_storage):
        sql_storage.replace_one("Thing", "1", {"tags": ["x"], "note": None})
        sql_storage.replace_one("Thing", "2", {"tags": ["y"]})
        assert [d["id"] for d in sql_storage.find("Thing", {"tags": ["x"]})] == ["1"]
        assert [d["id"] for d in sql_storage.find("Thing", {"note": None})] == ["1"]

    def test_find_by_ids(self, sql_storage):
        for doc_id in ("1", "2", "3"):
            sql_storage.replace_one("Thing", doc_id, {"n": int(doc_id)})
        found = sql_storage.find("Thing", ids=["1", "3", "9"])
        assert sorted(d["id"] for d in found) == ["1", "3"]
        assert sql_storage.find("Thing", ids=[]) == []

    def test_delete_one(self, sql_storage):
        sql_storage.replace_one("Thing", "1", {"n": 1})
        assert sql_storage.delete_one("Thing", "1") == 1
        assert sql_storage.delete_one("Thing", "1") == 0

    def test_delete_many(self, sql_storage):
        sql_storage.replace_one("Link", "p~1", {"parent_id": "p", "child_id": "1"})
        sql_storage.replace_one("Link", "p~2", {"parent_id": "p", "child_id": "2"})
        sql_storage.replace_one("Link", "q~1", {"parent_id": "q", "child_id": "1"})
        assert sql_storage.delete_many("Link", {"parent_id": "p"}) == 2
        assert [d["id"] for d in sql_storage.find("Link")] == ["q~1"]

    def test_delete_many_with_structured_criteria(self, sql_storage):
        sql_storage.replace_one("Thing", "1", {"tags": ["x"]})
        sql_storage.replace_one("Thing", "2", {"tags": ["y"]})
        assert sql_storage.delete_many("Thing", {"tags": ["x"]}) == 1
        assert sql_storage.delete_many("Thing", {"tags": ["z"]}) == 0
        assert [d["id"] for d in sql_storage.find("Thing")] == ["2"]

    def test_drop_and_clear(self, sql_storage):
        sql_storage.replace_one("A", "1", {})
        sql_storage.replace_one("B", "1", {})
        sql_storage.drop_collection("A")
        assert sql_storage.collection_names() == ["B"]
        sql_storage.clear()
        assert sql_storage.collection_names() == []

    def test_status(self, sql_storage):
        sql_storage.replace_one("A", "1", {})
        status = sql_storage.get_storage_status()
        assert status["storage"] == "sql"
        assert status["dialect"] == "sqlite"
        assert status["in_memory"] is False
        assert status["collections"] == ["A"]

    def test_existing_tables_are_reused(self, sql_storage):
        sql_storage.replace_one("A", "1", {"n": 1})
        reopened = SqlDocumentStorage(sql_storage.engine, create_tables=False)
        assert reopened.find_one("A", "1") == {"n": 1, "id": "1"}


class TestSqlGateway:
    """Tests for the gateway over sqlite."""

    def test_save_find_and_filter(self, sql_db):
        book = Book(title="Dune", pages=412, tags=["scifi"])
        book.save(sql_db)
        Book(title="Emma", pages=474).save(sql_db)
        assert Book.find(sql_db, book.id) == book
        assert Book.collection(sql_db).filter(pages=412).ids() == [book.id]

    def test_merge_mode(self, sql_db):
        sql_db.storage.replace_one("Book", "legacy", {"title": "Old", "isbn": "123"})
        book = Book.find(sql_db, "legacy")
        book.pages = 10
        book.save(sql_db, mode=SaveMode.MERGE)
        stored = sql_db.storage.find_one("Book", "legacy")
        assert stored["isbn"] == "123"
        assert stored["pages"] == 10

    def test_relationships_and_cascade(self, sql_db):
        author = Author(name="Isaac Asimov")
        books = [Book(title="Foundation"), Book(title="I, Robot")]
        for entity in [author, *books]:
            entity.save(sql_db)
        author.books = author.books.initialize(author)
        author.books.add_many(sql_db, books)
        assert sorted(b.title for b in author.books.children(sql_db)) == ["Foundation", "I, Robot"]
        assert author.books.children(sql_db).filter(title="Foundation").ids() == [books[0].id]

        author.delete(sql_db)
        assert sql_db.storage.find(author.books.join_collection) == []
        assert Book.collection(sql_db).count() == 2

    @pytest.mark.asyncio
    async def test_delete_all_async(self, sql_db):
        books = [Book(title=f"Vol {i}") for i in range(3)]
        for book in books:
            await book.save_async(sql_db)
        await sql_db.delete_all_async(Book, [b.id for b in books])
        assert await Book.collection(sql_db).count_async() == 0

    def test_gateway_from_url(self, tmp_path):
        storage = SqlDocumentStorage.from_url(f"sqlite:///{tmp_path / 'other.db'}")
        db = DB(storage, "other")
        try:
            Book(title="Dune").save(db)
            assert db.get_status()["collections"] == ["Book"]
        finally:
            storage.engine.dispose()
