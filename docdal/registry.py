"""
Registries of entity types and of the one-to-many relationships between them.

`EntityTypeRegistry` is filled as entity classes are defined and lets a
stored type name (e.g. the `entity_type` of a `One` handle) be turned back
into a class.

`RelationshipRegistry` is built once, when a gateway is constructed, from
the `Many` fields the registered types declare. The gateway consults it to
find which join collections to clean up when an entity is deleted.
"""

import logging
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from docdal.entity import Entity


class EntityTypeRegistry:
    """
    Static catalog of entity classes keyed by collection name.
    """
    _logger = logging.getLogger("EntityTypeRegistry")
    _types: Dict[str, Type["Entity"]] = {}

    @classmethod
    def register(cls, entity_type: Type["Entity"]) -> None:
        name = entity_type.collection_name()
        existing = cls._types.get(name)
        if existing is not None and existing is not entity_type:
            cls._logger.warning(
                f"Collection name '{name}' re-registered: "
                f"{existing.__module__}.{existing.__qualname__} -> "
                f"{entity_type.__module__}.{entity_type.__qualname__}"
            )
        cls._types[name] = entity_type
        cls._logger.debug(f"Registered entity type {name}")

    @classmethod
    def get(cls, name: str) -> Optional[Type["Entity"]]:
        return cls._types.get(name)

    @classmethod
    def all_types(cls) -> List[Type["Entity"]]:
        return list(cls._types.values())

    @classmethod
    def get_registry_status(cls) -> Dict[str, Any]:
        return {"entity_types": sorted(cls._types)}


class Relationship(NamedTuple):
    """A declared one-to-many relationship."""
    parent: str
    child: str
    field: str

    @property
    def join_collection(self) -> str:
        return join_collection_name(self.parent, self.child)


def join_collection_name(parent: str, child: str) -> str:
    """Name of the collection holding the join records of a parent/child pair."""
    return f"{parent}~{child}"


class RelationshipRegistry:
    """
    Index of one-to-many relationships by parent and by child type.

    Only direct relationships are indexed; cascades are single-level.
    """

    def __init__(self, relationships: Iterable[Relationship] = ()) -> None:
        self._logger = logging.getLogger("RelationshipRegistry")
        self._by_parent: Dict[str, List[Relationship]] = {}
        self._by_child: Dict[str, List[Relationship]] = {}
        self._join_collections: Dict[str, Relationship] = {}
        for relationship in relationships:
            self.add(relationship)

    @classmethod
    def from_models(cls, models: Iterable[Type["Entity"]]) -> "RelationshipRegistry":
        """Collect the `Many` fields declared by the given entity types."""
        from docdal.references import Many

        registry = cls()
        for model in models:
            for field_name, field_info in model.model_fields.items():
                if field_info.default_factory is not None:
                    default = field_info.default_factory()  # type: ignore[call-arg]
                else:
                    default = field_info.default
                if not isinstance(default, Many) or not default.child_type:
                    continue
                registry.add(Relationship(
                    parent=model.collection_name(),
                    child=default.child_type,
                    field=field_name,
                ))
        return registry

    def add(self, relationship: Relationship) -> None:
        join = relationship.join_collection
        if join in self._join_collections:
            previous = self._join_collections[join]
            self._logger.warning(
                f"{relationship.parent}.{relationship.field} shares join collection "
                f"'{join}' with {previous.parent}.{previous.field}"
            )
        else:
            self._join_collections[join] = relationship
        self._by_parent.setdefault(relationship.parent, []).append(relationship)
        self._by_child.setdefault(relationship.child, []).append(relationship)
        self._logger.info(
            f"Relationship {relationship.parent}.{relationship.field} -> {relationship.child}"
        )

    def as_parent(self, collection: str) -> List[Relationship]:
        """Relationships in which `collection` is the parent type."""
        return list(self._by_parent.get(collection, []))

    def as_child(self, collection: str) -> List[Relationship]:
        """Relationships in which `collection` is the child type."""
        return list(self._by_child.get(collection, []))

    def join_targets_for(self, collection: str) -> List[Tuple[str, str]]:
        """(join collection, key field) pairs to clear when a `collection` entity is deleted."""
        targets: List[Tuple[str, str]] = []
        for relationship in self.as_parent(collection):
            target = (relationship.join_collection, "parent_id")
            if target not in targets:
                targets.append(target)
        for relationship in self.as_child(collection):
            target = (relationship.join_collection, "child_id")
            if target not in targets:
                targets.append(target)
        return targets

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_parent.values())
