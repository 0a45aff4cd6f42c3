"""
Message data model and storage interfaces.

A message lives in exactly one of two stores at any time. The live store
('LiveMessageDatabase') holds the most recent window of a conversation and is
the only place where delivery/read receipts, edits and per-user tombstones
change. The archive store ('ArchiveMessageDatabase') is append-only and holds
messages evicted from the live window by the archival coordinator.

Receipts are merged, never overwritten: 'DeliveryReceipt.merge' keeps the
higher state and the original timestamp for equal states, so applying the same
receipt twice, or two receipts in either order, converges to the same value.

Concrete implementations live in 'conversation_database.in_memory'.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel, Field

from messaging_toolkit.utils.database import generate_uid


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    ACTION_ITEM = "actionItem"
    SYSTEM = "system"


class DeliveryState(StrEnum):
    """Per-recipient delivery state. 'FAILED' and 'PENDING' rank lowest and can be superseded by any later state."""

    PENDING = "pending"
    FAILED = "failed"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]


_STATE_RANK = {
    DeliveryState.PENDING: 0,
    DeliveryState.FAILED: 0,
    DeliveryState.SENT: 1,
    DeliveryState.DELIVERED: 2,
    DeliveryState.READ: 3,
}


class DeliveryReceipt(BaseModel):
    state: DeliveryState
    timestamp: int

    def merge(self, other: "DeliveryReceipt") -> "DeliveryReceipt":
        if other.state.rank > self.state.rank:
            return other
        return self


class Message(BaseModel):
    """
    A single chat message.

    'id' is generated by the sending client and kept unchanged end to end; it is
    the only identity used to reconcile optimistic local copies with the
    committed record. 'delivery_status' and 'read_by' are keyed by member id
    and seeded at creation time from the conversation membership.
    """

    id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    text: str
    create_timestamp: int
    type: MessageType = MessageType.TEXT
    media_url: str | None = None
    reply_to_message_id: str | None = None
    delivery_status: dict[str, DeliveryReceipt] = Field(default_factory=dict)
    read_by: dict[str, int] = Field(default_factory=dict)
    is_deleted: bool = False
    is_edited: bool = False
    edited_at: int | None = None
    deleted_for: set[str] = Field(default_factory=set)
    embedding_id: str | None = None
    translated_text: str | None = None
    detected_language: str | None = None
    translated_to: str | None = None

    def sort_key(self) -> tuple[int, str]:
        return self.create_timestamp, self.id

    def identity_key(self) -> tuple[object, ...]:
        """The immutable part of a message. Two copies with the same key are the same message."""
        return (
            self.id,
            self.conversation_id,
            self.sender_id,
            self.text,
            self.create_timestamp,
            self.type,
            self.media_url,
            self.reply_to_message_id,
        )

    def is_visible_to(self, user_id: str | None) -> bool:
        return user_id is None or user_id not in self.deleted_for


class MessageDraft(BaseModel):
    """
    A message as submitted by a client.

    'id' is generated client-side for optimistic sends and must be passed
    through unchanged; retrying a failed send reuses the same draft.
    """

    id: str = Field(default_factory=generate_uid)
    text: str = ""
    type: MessageType = MessageType.TEXT
    media_url: str | None = None
    reply_to_message_id: str | None = None

    def matches(self, message: Message) -> bool:
        """True if 'message' is the committed form of this draft."""
        return (
            self.id == message.id
            and self.text == message.text
            and self.type == message.type
            and self.media_url == message.media_url
            and self.reply_to_message_id == message.reply_to_message_id
        )


def order_messages(messages: list[Message]) -> list[Message]:
    """createdAt ascending, ties broken by message id. Never depends on arrival order."""
    return sorted(messages, key=Message.sort_key)


class LiveMessageDatabase(ABC):
    """
    Abstract repository for the live message window and typing indicators.

    Every write is scoped to a single message (or a single typing entry) so
    concurrent senders never contend on a shared record. Receipt writes must be
    applied atomically with 'DeliveryReceipt.merge' semantics.
    """

    @abstractmethod
    async def create_message(self, message: Message) -> Message:
        """Insert a new message. Never overwrites: an existing id raises 'DuplicateMessageId'."""
        pass

    @abstractmethod
    async def get_message(self, conversation_id: str, message_id: str) -> Message | None:
        pass

    @abstractmethod
    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        pass

    @abstractmethod
    async def update_message(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def merge_delivery_receipt(
        self, conversation_id: str, message_id: str, user_id: str, receipt: DeliveryReceipt
    ) -> Message | None:
        """Merge 'receipt' into the message's receipt for 'user_id'. Returns None if the message is not live."""
        pass

    @abstractmethod
    async def add_read_receipt(
        self, conversation_id: str, message_id: str, user_id: str, timestamp: int
    ) -> Message | None:
        """Record the first read time of 'user_id'. Later calls keep the original timestamp."""
        pass

    @abstractmethod
    async def add_deleted_for(self, conversation_id: str, message_id: str, user_id: str) -> Message | None:
        pass

    @abstractmethod
    async def delete_messages(self, conversation_id: str, message_ids: list[str]) -> int:
        pass

    @abstractmethod
    async def count_messages(self, conversation_id: str) -> int:
        pass

    @abstractmethod
    async def set_typing(self, conversation_id: str, user_id: str, expires_at: int) -> None:
        pass

    @abstractmethod
    async def clear_typing(self, conversation_id: str, user_id: str) -> bool:
        pass

    @abstractmethod
    async def get_typing(self, conversation_id: str) -> dict[str, int]:
        """Return 'user_id -> expires_at' for all stored typing entries, expired or not."""
        pass

    @abstractmethod
    async def delete_expired_typing(self, now: int) -> set[str]:
        """Drop entries with 'expires_at <= now' and return the affected conversation ids."""
        pass


class ArchiveMessageDatabase(ABC):
    """Abstract append-only repository for archived messages."""

    @abstractmethod
    async def insert_messages(self, conversation_id: str, messages: list[Message]) -> None:
        pass

    @abstractmethod
    async def get_messages_by_ids(self, conversation_id: str, message_ids: list[str]) -> dict[str, Message]:
        pass

    @abstractmethod
    async def get_message(self, conversation_id: str, message_id: str) -> Message | None:
        pass

    @abstractmethod
    async def get_page(self, conversation_id: str, before_timestamp: int | None, limit: int) -> list[Message]:
        """Messages strictly older than 'before_timestamp', newest first ('create_timestamp', then id, descending)."""
        pass

    @abstractmethod
    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        pass

    @abstractmethod
    async def count_messages(self, conversation_id: str) -> int:
        pass
