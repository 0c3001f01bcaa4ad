"""
Read-state machine for chat drop messages.

States: NEW, READ. The only real transition is NEW -> READ; staying in the
same state is allowed so that full-replace updates can carry the current
status unchanged.
"""

import logging

from sqlalchemy.orm import Session

from chatdrop.entities import Status
from chatdrop.exceptions import InvalidStatusTransitionError
from chatdrop.models import ChatDropMessageRow

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    Status.NEW: frozenset({Status.NEW, Status.READ}),
    Status.READ: frozenset({Status.READ}),
}


def can_transition(current: Status, requested: Status) -> bool:
    """Return True if a message in ``current`` may move to ``requested``."""
    return requested in ALLOWED_TRANSITIONS[current]


def check_transition(current: Status, requested: Status) -> None:
    """
    Validate a single-record status change.

    Raises:
        InvalidStatusTransitionError: if the move is not allowed
    """
    if not can_transition(current, requested):
        logger.warning(f"Rejected status transition: {current.value} -> {requested.value}")
        raise InvalidStatusTransitionError(current, requested)


def mark_conversation_read(db: Session, contact_id: int, identity_id: int) -> int:
    """
    Move every NEW message of one conversation to READ.

    Issued as one UPDATE statement so a concurrent reader never sees the
    conversation half transitioned. Other conversations of the identity are
    not touched.

    Returns:
        Number of messages transitioned
    """
    updated = (
        db.query(ChatDropMessageRow)
        .filter(
            ChatDropMessageRow.contact_id == contact_id,
            ChatDropMessageRow.identity_id == identity_id,
            ChatDropMessageRow.status == Status.NEW.value,
        )
        .update({ChatDropMessageRow.status: Status.READ.value}, synchronize_session=False)
    )
    logger.debug(f"Marked {updated} messages read: contact={contact_id}, identity={identity_id}")
    return updated
