"""
Tests for entity identity: the unsaved state, the saved guard and id generation.
"""
from types import SimpleNamespace

import pytest

from docdal import EMPTY_ID, InvalidStateError, is_unsaved, new_id, require_saved
from docdal.registry import EntityTypeRegistry

from conftest import Author, Book


class TestUnsavedState:
    """Tests for is_unsaved / require_saved."""

    @pytest.mark.parametrize("entity_id", ["", None])
    def test_empty_identifier_is_unsaved(self, entity_id):
        entity = SimpleNamespace(id=entity_id)
        assert is_unsaved(entity)
        with pytest.raises(InvalidStateError, match="must be saved"):
            require_saved(entity)

    @pytest.mark.parametrize("entity_id", ["a", new_id(), EMPTY_ID])
    def test_non_empty_identifier_is_saved(self, entity_id):
        book = Book(title="Dune", id=entity_id)
        assert not is_unsaved(book)
        require_saved(book)

    def test_new_entity_starts_unsaved(self):
        book = Book(title="Dune")
        assert book.id == ""
        assert is_unsaved(book)

    def test_error_names_the_entity_type(self):
        with pytest.raises(InvalidStateError, match="Author"):
            require_saved(Author(name="Anonymous"))


class TestIdGeneration:
    """Tests for generated identifiers."""

    def test_ids_are_unique_hex_strings(self):
        ids = {new_id() for _ in range(100)}
        assert len(ids) == 100
        for entity_id in ids:
            assert len(entity_id) == 32
            int(entity_id, 16)

    def test_empty_id_is_nil_uuid(self):
        assert EMPTY_ID == "0" * 32
        assert new_id() != EMPTY_ID


class TestTypeRegistry:
    """Tests for the entity type catalog."""

    def test_subclasses_are_registered_by_collection_name(self):
        assert Book.collection_name() == "Book"
        assert EntityTypeRegistry.get("Book") is Book
        assert EntityTypeRegistry.get("Author") is Author

    def test_unknown_name(self):
        assert EntityTypeRegistry.get("NoSuchType") is None

    def test_status_lists_types(self):
        status = EntityTypeRegistry.get_registry_status()
        assert "Book" in status["entity_types"]
