"""
Exceptions raised by the chat drop message repository.

All repository errors derive from RepositoryError so callers can catch the
whole family in one place. None of them are fatal to the repository itself.
"""


class RepositoryError(Exception):
    """Base class for repository errors."""


class EntityNotFoundError(RepositoryError):
    """Raised when no message with the given id is stored."""

    def __init__(self, entity_id) -> None:
        super().__init__(f"Message not found: {entity_id!r}")
        self.entity_id = entity_id


class PersistenceError(RepositoryError):
    """Raised when the store rejects a write (constraint violation, I/O failure)."""


class ImmutableFieldError(RepositoryError):
    """Raised when an update tries to change a field fixed at creation."""

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Field is immutable: {field_name}")
        self.field_name = field_name


class InvalidStatusTransitionError(RepositoryError):
    """Raised when a status change is not allowed by the read-state machine."""

    def __init__(self, current, requested) -> None:
        super().__init__(f"Invalid status transition: {current.value} -> {requested.value}")
        self.current = current
        self.requested = requested
