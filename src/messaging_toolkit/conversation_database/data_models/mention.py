"""
Mentioned and starred message records.

A 'MentionedMessage' is a per-user bookmark pointing at a message: created
automatically when someone '@mentions' the user, or explicitly when the user
stars a message. The record copies the text and sender so it renders even
after the message moved to the archive.

Concrete implementation: 'InMemoryMentionDatabase'.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel


class MentionReason(StrEnum):
    MENTIONED = "mentioned"
    STARRED = "starred"


class MentionedMessage(BaseModel):
    id: str
    user_id: str
    message_id: str
    conversation_id: str
    conversation_title: str
    message_text: str
    sender_id: str
    sender_name: str
    reason: MentionReason
    create_timestamp: int
    is_read: bool = False


class MentionDatabase(ABC):
    """Abstract repository for 'MentionedMessage' records."""

    @abstractmethod
    async def create_mention(self, mention: MentionedMessage) -> MentionedMessage:
        pass

    @abstractmethod
    async def get_mentions_by_user_id(self, user_id: str) -> list[MentionedMessage]:
        pass

    @abstractmethod
    async def get_mention(self, user_id: str, mention_id: str) -> MentionedMessage | None:
        pass

    @abstractmethod
    async def update_mention(self, mention: MentionedMessage) -> MentionedMessage:
        pass

    @abstractmethod
    async def delete_mention(self, user_id: str, mention_id: str) -> bool:
        pass
