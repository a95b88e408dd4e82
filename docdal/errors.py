"""
Exception types raised by the data-access layer.

Store failures are not wrapped: whatever the configured storage raises
(for the SQL backend, ``sqlalchemy.exc.SQLAlchemyError``) reaches the caller
unchanged.
"""


class DocDALError(Exception):
    """Base class for all errors raised by docdal itself."""


class InvalidStateError(DocDALError):
    """
    An operation was attempted on an object in the wrong state.

    Raised when an unsaved entity is referenced or deleted, when a ``Many``
    collection is used before being initialized with its parent, or when a
    reference names an entity type that is not registered.
    Always raised before any store I/O.
    """


class SerializationError(DocDALError):
    """An entity could not round-trip through its document form."""


class ChildTypeError(DocDALError, TypeError):
    """A ``Many`` collection was given a child of another entity type."""
