"""
In-memory implementations of every storage interface.

These back the test-suite and single-process deployments. Records are deep
copied on the way in and out so callers never share mutable state with the
store, which mirrors the behaviour of a real database round-trip. Each method
runs without awaiting in the middle, so under asyncio every method is atomic.
"""

from collections import defaultdict

from messaging_toolkit.conversation_database.data_models.conversation import (
    Conversation,
    ConversationDatabase,
    LastMessagePreview,
)
from messaging_toolkit.conversation_database.data_models.mention import MentionDatabase, MentionedMessage
from messaging_toolkit.conversation_database.data_models.message import (
    ArchiveMessageDatabase,
    DeliveryReceipt,
    LiveMessageDatabase,
    Message,
)
from messaging_toolkit.conversation_database.data_models.user_status import (
    UserConversationStatus,
    UserStatusDatabase,
)
from messaging_toolkit.errors import ConversationNotFound, DuplicateMessageId, MessageNotFound


class InMemoryLiveMessageDatabase(LiveMessageDatabase):
    def __init__(self) -> None:
        self._messages: dict[str, dict[str, Message]] = defaultdict(dict)
        self._typing: dict[str, dict[str, int]] = defaultdict(dict)

    async def create_message(self, message: Message) -> Message:
        messages = self._messages[message.conversation_id]
        if message.id in messages:
            raise DuplicateMessageId(message.conversation_id, message.id)
        messages[message.id] = message.model_copy(deep=True)
        return message.model_copy(deep=True)

    async def get_message(self, conversation_id: str, message_id: str) -> Message | None:
        message = self._messages.get(conversation_id, {}).get(message_id)
        return message.model_copy(deep=True) if message else None

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        return [message.model_copy(deep=True) for message in self._messages.get(conversation_id, {}).values()]

    async def update_message(self, message: Message) -> Message:
        messages = self._messages.get(message.conversation_id, {})
        if message.id not in messages:
            raise MessageNotFound(message.conversation_id, message.id)
        messages[message.id] = message.model_copy(deep=True)
        return message.model_copy(deep=True)

    async def merge_delivery_receipt(
        self, conversation_id: str, message_id: str, user_id: str, receipt: DeliveryReceipt
    ) -> Message | None:
        message = self._messages.get(conversation_id, {}).get(message_id)
        if message is None:
            return None
        current = message.delivery_status.get(user_id)
        message.delivery_status[user_id] = current.merge(receipt) if current else receipt
        return message.model_copy(deep=True)

    async def add_read_receipt(
        self, conversation_id: str, message_id: str, user_id: str, timestamp: int
    ) -> Message | None:
        message = self._messages.get(conversation_id, {}).get(message_id)
        if message is None:
            return None
        message.read_by.setdefault(user_id, timestamp)
        return message.model_copy(deep=True)

    async def add_deleted_for(self, conversation_id: str, message_id: str, user_id: str) -> Message | None:
        message = self._messages.get(conversation_id, {}).get(message_id)
        if message is None:
            return None
        message.deleted_for.add(user_id)
        return message.model_copy(deep=True)

    async def delete_messages(self, conversation_id: str, message_ids: list[str]) -> int:
        messages = self._messages.get(conversation_id, {})
        deleted = 0
        for message_id in message_ids:
            if messages.pop(message_id, None) is not None:
                deleted += 1
        return deleted

    async def count_messages(self, conversation_id: str) -> int:
        return len(self._messages.get(conversation_id, {}))

    async def set_typing(self, conversation_id: str, user_id: str, expires_at: int) -> None:
        self._typing[conversation_id][user_id] = expires_at

    async def clear_typing(self, conversation_id: str, user_id: str) -> bool:
        return self._typing.get(conversation_id, {}).pop(user_id, None) is not None

    async def get_typing(self, conversation_id: str) -> dict[str, int]:
        return dict(self._typing.get(conversation_id, {}))

    async def delete_expired_typing(self, now: int) -> set[str]:
        affected: set[str] = set()
        for conversation_id, entries in list(self._typing.items()):
            expired = [user_id for user_id, expires_at in entries.items() if expires_at <= now]
            for user_id in expired:
                del entries[user_id]
            if expired:
                affected.add(conversation_id)
            if not entries:
                del self._typing[conversation_id]
        return affected


class InMemoryArchiveMessageDatabase(ArchiveMessageDatabase):
    def __init__(self) -> None:
        self._messages: dict[str, dict[str, Message]] = defaultdict(dict)

    async def insert_messages(self, conversation_id: str, messages: list[Message]) -> None:
        archive = self._messages[conversation_id]
        for message in messages:
            archive.setdefault(message.id, message.model_copy(deep=True))

    async def get_messages_by_ids(self, conversation_id: str, message_ids: list[str]) -> dict[str, Message]:
        archive = self._messages.get(conversation_id, {})
        return {
            message_id: archive[message_id].model_copy(deep=True) for message_id in message_ids if message_id in archive
        }

    async def get_message(self, conversation_id: str, message_id: str) -> Message | None:
        message = self._messages.get(conversation_id, {}).get(message_id)
        return message.model_copy(deep=True) if message else None

    async def get_page(self, conversation_id: str, before_timestamp: int | None, limit: int) -> list[Message]:
        candidates = [
            message
            for message in self._messages.get(conversation_id, {}).values()
            if before_timestamp is None or message.create_timestamp < before_timestamp
        ]
        candidates.sort(key=Message.sort_key, reverse=True)
        return [message.model_copy(deep=True) for message in candidates[:limit]]

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        return [message.model_copy(deep=True) for message in self._messages.get(conversation_id, {}).values()]

    async def count_messages(self, conversation_id: str) -> int:
        return len(self._messages.get(conversation_id, {}))


class InMemoryConversationDatabase(ConversationDatabase):
    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation.model_copy(deep=True)

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def get_conversations_by_user_id(self, user_id: str) -> list[Conversation]:
        return [
            conversation.model_copy(deep=True)
            for conversation in self._conversations.values()
            if user_id in conversation.member_ids
        ]

    async def update_conversation(self, conversation: Conversation) -> Conversation:
        if conversation.id not in self._conversations:
            raise ConversationNotFound(conversation.id)
        self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation.model_copy(deep=True)

    async def set_last_message_if_newer(self, conversation_id: str, preview: LastMessagePreview) -> bool:
        conversation = self._get(conversation_id)
        current = conversation.last_message
        if current is not None and (current.timestamp, current.message_id or "") > (
            preview.timestamp,
            preview.message_id or "",
        ):
            return False
        conversation.last_message = preview.model_copy()
        conversation.update_timestamp = max(conversation.update_timestamp, preview.timestamp)
        return True

    async def replace_last_message(self, conversation_id: str, preview: LastMessagePreview | None) -> None:
        self._get(conversation_id).last_message = preview.model_copy() if preview else None

    async def increment_total_messages(self, conversation_id: str, amount: int = 1) -> None:
        self._get(conversation_id).metadata.total_messages += amount

    def _get(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation


class InMemoryUserStatusDatabase(UserStatusDatabase):
    def __init__(self) -> None:
        self._statuses: dict[tuple[str, str], UserConversationStatus] = {}

    async def create_status(self, status: UserConversationStatus) -> UserConversationStatus:
        self._statuses.setdefault((status.user_id, status.conversation_id), status.model_copy())
        return self._statuses[(status.user_id, status.conversation_id)].model_copy()

    async def get_status(self, user_id: str, conversation_id: str) -> UserConversationStatus | None:
        status = self._statuses.get((user_id, conversation_id))
        return status.model_copy() if status else None

    async def get_statuses_by_user_id(self, user_id: str) -> list[UserConversationStatus]:
        return [status.model_copy() for (owner, _), status in self._statuses.items() if owner == user_id]

    async def update_status(self, status: UserConversationStatus) -> UserConversationStatus:
        self._statuses[(status.user_id, status.conversation_id)] = status.model_copy()
        return status.model_copy()

    async def increment_unread(self, user_id: str, conversation_id: str, last_message_timestamp: int) -> None:
        status = self._statuses.setdefault(
            (user_id, conversation_id), UserConversationStatus(user_id=user_id, conversation_id=conversation_id)
        )
        status.unread_count += 1
        status.last_message_timestamp = max(status.last_message_timestamp, last_message_timestamp)


class InMemoryMentionDatabase(MentionDatabase):
    def __init__(self) -> None:
        self._mentions: dict[str, dict[str, MentionedMessage]] = defaultdict(dict)

    async def create_mention(self, mention: MentionedMessage) -> MentionedMessage:
        self._mentions[mention.user_id][mention.id] = mention.model_copy()
        return mention.model_copy()

    async def get_mentions_by_user_id(self, user_id: str) -> list[MentionedMessage]:
        mentions = self._mentions.get(user_id, {}).values()
        return [mention.model_copy() for mention in sorted(mentions, key=lambda m: m.create_timestamp, reverse=True)]

    async def get_mention(self, user_id: str, mention_id: str) -> MentionedMessage | None:
        mention = self._mentions.get(user_id, {}).get(mention_id)
        return mention.model_copy() if mention else None

    async def update_mention(self, mention: MentionedMessage) -> MentionedMessage:
        self._mentions[mention.user_id][mention.id] = mention.model_copy()
        return mention.model_copy()

    async def delete_mention(self, user_id: str, mention_id: str) -> bool:
        return self._mentions.get(user_id, {}).pop(mention_id, None) is not None
