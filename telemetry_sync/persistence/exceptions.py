"""Persistence layer exceptions.

All store failures derive from PersistenceError so callers can catch them with
a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for document store errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when the store cannot be initialised or reached.

    Examples:
    - Invalid database URL
    - Database file not accessible
    - get_session() called before init_database()
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when an operation requires a document that does not exist.

    Lookups that may legitimately miss return None instead.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a write violates a constraint or a document is malformed."""

    pass
