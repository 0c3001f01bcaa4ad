"""
Domain entities for chat drop messages.

This module contains:
- Enums for message direction, read status and payload type
- Payload variants (a tagged union discriminated by ``kind``)
- The ChatDropMessage record and the PagingResult wrapper

Entities are pydantic models, so equality is structural and
``model_copy(update=...)`` gives copy-with-override.
"""

from enum import Enum
from typing import Annotated, Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


# =============================================================================
# Enums
# =============================================================================

class Direction(str, Enum):
    """Whether the message was received from or sent to the contact."""
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"


class Status(str, Enum):
    """Read state of a message. Only NEW -> READ is ever allowed."""
    NEW = "NEW"
    READ = "READ"


class MessageType(str, Enum):
    """Tag selecting the payload variant."""
    BOX_MESSAGE = "BOX_MESSAGE"
    SHARE_NOTIFICATION = "SHARE_NOTIFICATION"


# =============================================================================
# Payload Variants
# =============================================================================

class TextMessage(BaseModel):
    """Plain text body of a BOX_MESSAGE."""
    kind: Literal["text"] = "text"
    text: str


class ShareNotification(BaseModel):
    """
    Notification that a file share was sent through the drop.

    Carries the share url and the key needed to open it, plus a
    human-readable text shown in the conversation.
    """
    kind: Literal["share_notification"] = "share_notification"
    text: str = ""
    url: str
    key: str


MessagePayload = Annotated[
    Union[TextMessage, ShareNotification],
    Field(discriminator="kind"),
]

# Message type each payload variant is stored under
PAYLOAD_TYPES = {
    TextMessage: MessageType.BOX_MESSAGE,
    ShareNotification: MessageType.SHARE_NOTIFICATION,
}

_payload_adapter = TypeAdapter(MessagePayload)


def check_payload_type(message_type: MessageType, payload: BaseModel) -> None:
    """
    Raise ValueError unless ``payload`` is the variant ``message_type`` selects.

    Runs at construction and again before a message is written, since
    model_copy(update=...) skips validation.
    """
    expected = PAYLOAD_TYPES.get(type(payload))
    if message_type != expected:
        raise ValueError(
            f"message_type {message_type.value} does not match "
            f"payload kind {getattr(payload, 'kind', None)!r}"
        )


def encode_payload(payload: BaseModel) -> str:
    """Serialize a payload variant to JSON text for storage."""
    return payload.model_dump_json()


def decode_payload(data: str):
    """Parse JSON text produced by encode_payload back into its variant."""
    return _payload_adapter.validate_json(data)


# =============================================================================
# Records
# =============================================================================

class ChatDropMessage(BaseModel):
    """
    One message in one conversation.

    A conversation is identified by (contact_id, identity_id). ``created_on``
    is a caller-supplied epoch timestamp in milliseconds and is the only
    ordering key used by the repository. ``id`` stays None until the message
    is persisted.
    """
    id: Optional[int] = None
    contact_id: int
    identity_id: int
    direction: Direction
    status: Status
    message_type: MessageType
    payload: MessagePayload
    created_on: int

    @model_validator(mode="after")
    def check_payload_matches_type(self) -> "ChatDropMessage":
        check_payload_type(self.message_type, self.payload)
        return self


T = TypeVar("T")


class PagingResult(BaseModel, Generic[T]):
    """A window of a listing together with the total size of the listing."""
    result: list[T] = Field(default_factory=list)
    available_range: int = Field(default=0, ge=0)
