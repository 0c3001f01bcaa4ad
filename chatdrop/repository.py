"""
Repository for chat drop messages.

ChatDropMessageRepository is the contract the chat UI and the drop sync
layer program against. SqlChatDropMessageRepository implements it on top of
a SQLAlchemy session factory that the caller passes in.

Every operation opens its own session and runs in exactly one transaction;
no session outlives the call that opened it.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatdrop.aggregation import latest_per_contact, new_for_identity
from chatdrop.entities import (
    ChatDropMessage,
    PagingResult,
    check_payload_type,
    decode_payload,
    encode_payload,
)
from chatdrop.exceptions import EntityNotFoundError, ImmutableFieldError, PersistenceError
from chatdrop.metrics import instrument, record_ingest_outcome
from chatdrop.models import ChatDropMessageRow
from chatdrop.paging import conversation_query, newest_first, paginate
from chatdrop.read_state import check_transition, mark_conversation_read

logger = logging.getLogger(__name__)


class ChatDropMessageRepository(ABC):
    """Storage and queries for chat drop messages."""

    @abstractmethod
    def persist(self, message: ChatDropMessage) -> None:
        """
        Insert a new message.

        If ``message.id`` is None the store assigns one and it is written
        back onto ``message``.

        Raises:
            PersistenceError: if the store rejects the insert (e.g. the id is taken)
        """

    @abstractmethod
    def update(self, message: ChatDropMessage) -> None:
        """
        Replace the stored message having ``message.id``.

        Raises:
            EntityNotFoundError: if no message has that id
            ImmutableFieldError: if the direction would change
            InvalidStatusTransitionError: if the status would go READ -> NEW
            PersistenceError: if the store rejects the write
        """

    @abstractmethod
    def delete(self, message_id: int) -> None:
        """
        Remove a message.

        Raises:
            EntityNotFoundError: if no message has that id
        """

    @abstractmethod
    def find_by_id(self, message_id: int) -> ChatDropMessage:
        """
        Raises:
            EntityNotFoundError: if no message has that id
        """

    @abstractmethod
    def exists(self, message: ChatDropMessage) -> bool:
        """True iff a message equal to ``message``, id included, is stored."""

    @abstractmethod
    def find_by_contact(self, contact_id: int, identity_id: int) -> list[ChatDropMessage]:
        """Whole conversation, newest first."""

    @abstractmethod
    def find_by_contact_page(
        self, contact_id: int, identity_id: int, offset: int, page_size: int
    ) -> PagingResult[ChatDropMessage]:
        """
        One window of the conversation listing.

        ``available_range`` is the size of the whole conversation, whatever
        the window.

        Raises:
            ValueError: if offset or page_size is negative
        """

    @abstractmethod
    def find_new(self, identity_id: int) -> list[ChatDropMessage]:
        """Every NEW message of the identity, across contacts."""

    @abstractmethod
    def find_latest(self, identity_id: int) -> list[ChatDropMessage]:
        """Newest message of every conversation, most recently active first."""

    @abstractmethod
    def mark_as_read(self, contact_id: int, identity_id: int) -> int:
        """
        Move every NEW message of the conversation to READ.

        Returns:
            Number of messages transitioned (0 when there was nothing to do)
        """

    @abstractmethod
    def ingest(self, message: ChatDropMessage) -> bool:
        """
        Record a message unless it is already stored.

        The check and the insert share one transaction. Deduplication relies
        on the caller-supplied id: a message without an id is always new.

        Returns:
            True if the message was persisted, False if it was a duplicate
        """


# =============================================================================
# Row Mapping
# =============================================================================

def row_values(message: ChatDropMessage) -> dict:
    """
    Column values of the row storing ``message``.

    Raises:
        PersistenceError: if message_type does not match the payload variant
    """
    try:
        check_payload_type(message.message_type, message.payload)
    except ValueError as e:
        logger.error(f"Refusing to store message {message.id}: {e}")
        raise PersistenceError(f"Refusing to store message {message.id}: {e}") from e

    return {
        "id": message.id,
        "contact_id": message.contact_id,
        "identity_id": message.identity_id,
        "direction": message.direction.value,
        "status": message.status.value,
        "message_type": message.message_type.value,
        "payload": encode_payload(message.payload),
        "created_on": message.created_on,
    }


def to_row(message: ChatDropMessage) -> ChatDropMessageRow:
    """Build an ORM row from a message."""
    return ChatDropMessageRow(**row_values(message))


def to_entity(row: ChatDropMessageRow) -> ChatDropMessage:
    """Build a message from an ORM row."""
    return ChatDropMessage(
        id=row.id,
        contact_id=row.contact_id,
        identity_id=row.identity_id,
        direction=row.direction,
        status=row.status,
        message_type=row.message_type,
        payload=decode_payload(row.payload),
        created_on=row.created_on,
    )


def find_equal_row(db: Session, message: ChatDropMessage):
    """Id of the stored row equal to ``message`` in every column, or None."""
    if message.id is None:
        return None

    row = ChatDropMessageRow
    return (
        db.query(row.id)
        .filter(
            row.id == message.id,
            row.contact_id == message.contact_id,
            row.identity_id == message.identity_id,
            row.direction == message.direction.value,
            row.status == message.status.value,
            row.message_type == message.message_type.value,
            row.payload == encode_payload(message.payload),
            row.created_on == message.created_on,
        )
        .first()
    )


def insert_row(db: Session, message: ChatDropMessage) -> int:
    """Add ``message`` as a new row and return the id it was stored under."""
    row = to_row(message)
    db.add(row)
    db.flush()
    return row.id


# =============================================================================
# SQLAlchemy Implementation
# =============================================================================

class SqlChatDropMessageRepository(ChatDropMessageRepository):
    """ChatDropMessageRepository backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @instrument("persist")
    def persist(self, message: ChatDropMessage) -> None:
        logger.info(
            f"Persisting message: contact={message.contact_id}, "
            f"identity={message.identity_id}, id={message.id}"
        )
        try:
            with self._session_factory.begin() as db:
                assigned_id = insert_row(db, message)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist message {message.id}: {e}")
            raise PersistenceError(f"Failed to persist message {message.id}: {e}") from e

        message.id = assigned_id
        logger.info(f"Message persisted: {assigned_id}")

    @instrument("update")
    def update(self, message: ChatDropMessage) -> None:
        logger.info(f"Updating message: {message.id}")
        if message.id is None:
            raise EntityNotFoundError(None)
        values = row_values(message)

        try:
            with self._session_factory.begin() as db:
                row = db.get(ChatDropMessageRow, message.id)
                if row is None:
                    logger.info(f"Update target not found: {message.id}")
                    raise EntityNotFoundError(message.id)

                current = to_entity(row)
                if current.direction != message.direction:
                    raise ImmutableFieldError("direction")
                check_transition(current.status, message.status)

                for column, value in values.items():
                    setattr(row, column, value)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update message {message.id}: {e}")
            raise PersistenceError(f"Failed to update message {message.id}: {e}") from e

        logger.info(f"Message updated: {message.id}")

    @instrument("delete")
    def delete(self, message_id: int) -> None:
        logger.info(f"Deleting message: {message_id}")
        try:
            with self._session_factory.begin() as db:
                deleted = (
                    db.query(ChatDropMessageRow)
                    .filter(ChatDropMessageRow.id == message_id)
                    .delete(synchronize_session=False)
                )
                if deleted == 0:
                    logger.info(f"Delete target not found: {message_id}")
                    raise EntityNotFoundError(message_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete message {message_id}: {e}")
            raise PersistenceError(f"Failed to delete message {message_id}: {e}") from e

        logger.info(f"Message deleted: {message_id}")

    @instrument("find_by_id")
    def find_by_id(self, message_id: int) -> ChatDropMessage:
        logger.debug(f"Looking up message by ID: {message_id}")
        with self._session_factory.begin() as db:
            row = db.get(ChatDropMessageRow, message_id)
            if row is None:
                raise EntityNotFoundError(message_id)
            return to_entity(row)

    @instrument("exists")
    def exists(self, message: ChatDropMessage) -> bool:
        with self._session_factory.begin() as db:
            found = find_equal_row(db, message)
        logger.debug(f"Message {message.id} exists: {found is not None}")
        return found is not None

    @instrument("find_by_contact")
    def find_by_contact(self, contact_id: int, identity_id: int) -> list[ChatDropMessage]:
        logger.info(f"Listing conversation: contact={contact_id}, identity={identity_id}")
        with self._session_factory.begin() as db:
            rows = newest_first(conversation_query(db, contact_id, identity_id)).all()
            return [to_entity(r) for r in rows]

    @instrument("find_by_contact_page")
    def find_by_contact_page(
        self, contact_id: int, identity_id: int, offset: int, page_size: int
    ) -> PagingResult[ChatDropMessage]:
        logger.info(
            f"Paging conversation: contact={contact_id}, identity={identity_id}, "
            f"offset={offset}, page_size={page_size}"
        )
        # count and window must see the same snapshot
        with self._session_factory.begin() as db:
            messages, total = paginate(
                conversation_query(db, contact_id, identity_id), offset, page_size, to_entity
            )
        logger.info(f"Retrieved {len(messages)} of {total} messages")
        return PagingResult[ChatDropMessage](result=messages, available_range=total)

    @instrument("find_new")
    def find_new(self, identity_id: int) -> list[ChatDropMessage]:
        logger.info(f"Listing new messages: identity={identity_id}")
        with self._session_factory.begin() as db:
            return [to_entity(r) for r in new_for_identity(db, identity_id)]

    @instrument("find_latest")
    def find_latest(self, identity_id: int) -> list[ChatDropMessage]:
        logger.info(f"Listing latest messages: identity={identity_id}")
        with self._session_factory.begin() as db:
            return [to_entity(r) for r in latest_per_contact(db, identity_id)]

    @instrument("mark_as_read")
    def mark_as_read(self, contact_id: int, identity_id: int) -> int:
        logger.info(f"Marking conversation read: contact={contact_id}, identity={identity_id}")
        try:
            with self._session_factory.begin() as db:
                updated = mark_conversation_read(db, contact_id, identity_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark conversation read: {e}")
            raise PersistenceError(f"Failed to mark conversation read: {e}") from e

        logger.info(f"Marked {updated} messages read")
        return updated

    @instrument("ingest")
    def ingest(self, message: ChatDropMessage) -> bool:
        logger.info(f"Ingesting message: id={message.id}")
        try:
            with self._session_factory.begin() as db:
                if find_equal_row(db, message) is not None:
                    assigned_id = None
                else:
                    assigned_id = insert_row(db, message)
        except IntegrityError as e:
            # a concurrent ingest of the same message won the insert
            with self._session_factory.begin() as db:
                if find_equal_row(db, message) is None:
                    logger.error(f"Failed to ingest message {message.id}: {e}")
                    raise PersistenceError(f"Failed to ingest message {message.id}: {e}") from e
            assigned_id = None
        except SQLAlchemyError as e:
            logger.error(f"Failed to ingest message {message.id}: {e}")
            raise PersistenceError(f"Failed to ingest message {message.id}: {e}") from e

        if assigned_id is None:
            logger.info(f"Duplicate message detected: {message.id}")
            record_ingest_outcome("duplicate")
            return False

        message.id = assigned_id
        logger.info(f"Message ingested: {assigned_id}")
        record_ingest_outcome("created")
        return True
