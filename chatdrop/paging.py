"""
Windowed retrieval over conversation listings.

Listings are ordered newest first: created_on DESC, then id DESC, so two
messages sharing a timestamp come back with the later-inserted one first.
The total is counted on the unwindowed query, so it is the same for every
page of a listing.
"""

import logging
from typing import Callable, Tuple

from sqlalchemy.orm import Query, Session

from chatdrop.models import ChatDropMessageRow

logger = logging.getLogger(__name__)


def newest_first(query: Query) -> Query:
    """Apply the listing order shared by every message query."""
    return query.order_by(ChatDropMessageRow.created_on.desc(), ChatDropMessageRow.id.desc())


def conversation_query(db: Session, contact_id: int, identity_id: int) -> Query:
    """Unordered query over all rows of one (contact, identity) conversation."""
    return db.query(ChatDropMessageRow).filter(
        ChatDropMessageRow.contact_id == contact_id,
        ChatDropMessageRow.identity_id == identity_id,
    )


def paginate(query: Query, offset: int, page_size: int, convert: Callable) -> Tuple[list, int]:
    """
    Return the window [offset, offset + page_size) of ``query`` in listing order.

    Args:
        query: Unordered, unwindowed query
        offset: Number of rows to skip (>= 0)
        page_size: Maximum number of rows to return (>= 0)
        convert: Maps each row to the item type of the result

    Returns:
        Tuple of (converted window, total row count ignoring the window)

    Raises:
        ValueError: if offset or page_size is negative
    """
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")
    if page_size < 0:
        raise ValueError(f"page_size must be >= 0, got {page_size}")

    total = query.count()
    logger.debug(f"Total rows matching query: {total}")

    if offset >= total or page_size == 0:
        return [], total

    rows = newest_first(query).offset(offset).limit(page_size).all()
    logger.debug(f"Retrieved {len(rows)} rows at offset {offset}")
    return [convert(row) for row in rows], total
