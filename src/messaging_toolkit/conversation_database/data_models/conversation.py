"""
Conversation data model and storage interface.

The conversation record carries membership plus a denormalized preview of the
last message so list views need no extra lookup. The preview is written with
last-write-wins by (timestamp, message id): 'set_last_message_if_newer' compares the
stored preview explicitly instead of trusting arrival order.

Concrete implementation: 'InMemoryConversationDatabase'.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel, Field

from messaging_toolkit.conversation_database.data_models.message import MessageType


class ConversationType(StrEnum):
    DIRECT = "direct"
    GROUP = "group"


class MemberDetail(BaseModel):
    display_name: str
    photo_url: str | None = None
    joined_at: int


class LastMessagePreview(BaseModel):
    message_id: str | None = None
    text: str
    sender_id: str
    sender_name: str
    timestamp: int
    type: MessageType = MessageType.TEXT


class ConversationMetadata(BaseModel):
    total_messages: int = 0
    image_url: str | None = None


class Conversation(BaseModel):
    """
    A direct or group conversation.

    'member_ids' is ordered, non-empty and unique. 'member_details' may keep
    entries for members that left so that history still renders their names.
    """

    id: str
    type: ConversationType
    name: str | None = None
    created_by: str
    member_ids: list[str]
    member_details: dict[str, MemberDetail] = Field(default_factory=dict)
    last_message: LastMessagePreview | None = None
    metadata: ConversationMetadata = Field(default_factory=ConversationMetadata)
    create_timestamp: int
    update_timestamp: int

    @property
    def is_group_chat(self) -> bool:
        return self.type == ConversationType.GROUP

    def has_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    def display_name_for(self, viewer_id: str) -> str:
        """Group name, or the other member's display name for direct chats."""
        if self.name:
            return self.name
        others = [member_id for member_id in self.member_ids if member_id != viewer_id]
        names = [self.member_details[m].display_name if m in self.member_details else m for m in others]
        return ", ".join(names) or "Chat"


class ConversationDatabase(ABC):
    """Abstract repository for 'Conversation' records."""

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        pass

    @abstractmethod
    async def get_conversations_by_user_id(self, user_id: str) -> list[Conversation]:
        pass

    @abstractmethod
    async def update_conversation(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def set_last_message_if_newer(self, conversation_id: str, preview: LastMessagePreview) -> bool:
        """Store 'preview' unless the stored one is newer by (timestamp, message id). Returns whether it was written."""
        pass

    @abstractmethod
    async def replace_last_message(self, conversation_id: str, preview: LastMessagePreview | None) -> None:
        """Unconditionally overwrite the preview (used when the previewed message is deleted)."""
        pass

    @abstractmethod
    async def increment_total_messages(self, conversation_id: str, amount: int = 1) -> None:
        pass
