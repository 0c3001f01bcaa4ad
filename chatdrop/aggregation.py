"""
Cross-conversation queries for one identity: the latest message of every
conversation and the set of unread messages.
"""

import logging

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from chatdrop.entities import Status
from chatdrop.models import ChatDropMessageRow
from chatdrop.paging import newest_first

logger = logging.getLogger(__name__)


def latest_per_contact(db: Session, identity_id: int) -> list:
    """
    Select the newest row of every conversation of ``identity_id``.

    Within a conversation the row with the highest created_on wins, ties
    going to the highest id. The rows are returned most recently active
    conversation first, ties between conversations by ascending contact_id.
    Contacts without messages do not appear.
    """
    row = ChatDropMessageRow

    max_created = (
        db.query(
            row.contact_id.label("contact_id"),
            func.max(row.created_on).label("max_created_on"),
        )
        .filter(row.identity_id == identity_id)
        .group_by(row.contact_id)
        .subquery()
    )

    latest_ids = (
        db.query(func.max(row.id).label("id"))
        .select_from(row)
        .join(
            max_created,
            and_(
                row.contact_id == max_created.c.contact_id,
                row.created_on == max_created.c.max_created_on,
            ),
        )
        .filter(row.identity_id == identity_id)
        .group_by(row.contact_id)
        .subquery()
    )

    rows = (
        db.query(row)
        .filter(row.id.in_(select(latest_ids.c.id)))
        .order_by(row.created_on.desc(), row.contact_id.asc())
        .all()
    )
    logger.debug(f"Latest messages for identity {identity_id}: {len(rows)} conversations")
    return rows


def new_for_identity(db: Session, identity_id: int) -> list:
    """Select every NEW row of ``identity_id`` across all contacts."""
    query = db.query(ChatDropMessageRow).filter(
        ChatDropMessageRow.identity_id == identity_id,
        ChatDropMessageRow.status == Status.NEW.value,
    )
    return newest_first(query).all()
