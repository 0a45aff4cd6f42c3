"""
Per-user, per-conversation status.

Each record is owned by a single user and is never shown to anyone else. The
unread counter is a cache: it can always be recomputed from the messages
created after 'last_read_timestamp', so increments on send are allowed to be
approximate and the directory's 'recompute_unread' restores the exact value.

Concrete implementation: 'InMemoryUserStatusDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field


class UserConversationStatus(BaseModel):
    user_id: str
    conversation_id: str
    last_read_message_id: str | None = None
    last_read_timestamp: int | None = None
    unread_count: int = Field(default=0, ge=0)
    is_pinned: bool = False
    is_muted: bool = False
    is_hidden: bool = False
    last_message_timestamp: int = 0


class UserStatusDatabase(ABC):
    """Abstract repository for 'UserConversationStatus' records."""

    @abstractmethod
    async def create_status(self, status: UserConversationStatus) -> UserConversationStatus:
        pass

    @abstractmethod
    async def get_status(self, user_id: str, conversation_id: str) -> UserConversationStatus | None:
        pass

    @abstractmethod
    async def get_statuses_by_user_id(self, user_id: str) -> list[UserConversationStatus]:
        pass

    @abstractmethod
    async def update_status(self, status: UserConversationStatus) -> UserConversationStatus:
        pass

    @abstractmethod
    async def increment_unread(self, user_id: str, conversation_id: str, last_message_timestamp: int) -> None:
        """Atomically add one to the unread counter and bump 'last_message_timestamp'."""
        pass
