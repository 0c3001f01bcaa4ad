"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For the domain entities these rows map to, see entities.py.
"""

from sqlalchemy import BigInteger, Column, Index, Integer, String, Text

from chatdrop.storage import Base


class ChatDropMessageRow(Base):
    """
    SQLAlchemy model for storing chat drop messages.

    Table: chat_drop_messages
    Primary Key: id (store-assigned unless the caller supplies one)
    """
    __tablename__ = "chat_drop_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contact_id = Column(Integer, nullable=False)
    identity_id = Column(Integer, nullable=False, index=True)
    direction = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    message_type = Column(String(32), nullable=False)
    payload = Column(Text, nullable=False)  # JSON, see entities.encode_payload
    created_on = Column(BigInteger, nullable=False)  # epoch milliseconds

    __table_args__ = (
        Index("ix_chat_drop_messages_conversation", "contact_id", "identity_id", "created_on"),
        Index("ix_chat_drop_messages_identity_status", "identity_id", "status"),
    )
