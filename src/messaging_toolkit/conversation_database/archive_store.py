"""
Archive message store.

Append-only, paginated storage for messages evicted from the live window.
Writes are idempotent per batch: messages already archived with identical
immutable content are skipped, so the archival coordinator can retry a batch
after a partial failure. An id that is already archived with different content
is an integrity error and aborts the whole batch before anything is written.
"""

from loguru import logger

from messaging_toolkit.conversation_database.data_models.message import (
    ArchiveMessageDatabase,
    Message,
    order_messages,
)
from messaging_toolkit.errors import DuplicateMessageId, ValidationError

MAX_PAGE_SIZE = 200


class ArchiveMessageStore:
    def __init__(self, archive_db: ArchiveMessageDatabase):
        self.archive_db = archive_db

    async def archive(self, conversation_id: str, messages: list[Message]) -> int:
        """Archive an ordered batch and return how many messages were newly written."""
        if not messages:
            return 0
        for message in messages:
            if message.conversation_id != conversation_id:
                raise ValidationError(
                    f"Message {message.id} belongs to {message.conversation_id}, not {conversation_id}"
                )

        existing = await self.archive_db.get_messages_by_ids(conversation_id, [message.id for message in messages])
        fresh = []
        for message in messages:
            archived = existing.get(message.id)
            if archived is None:
                fresh.append(message)
            elif archived.identity_key() != message.identity_key():
                logger.error(f"Archive id collision for message {message.id} in conversation {conversation_id}")
                raise DuplicateMessageId(conversation_id, message.id)

        if not fresh:
            logger.debug(f"Batch of {len(messages)} already archived for conversation {conversation_id}")
            return 0

        await self.archive_db.insert_messages(conversation_id, order_messages(fresh))
        if len(fresh) < len(messages):
            logger.info(
                f"Archived {len(fresh)} of {len(messages)} messages for {conversation_id}, rest already present"
            )
        return len(fresh)

    async def page(self, conversation_id: str, before_timestamp: int | None = None, limit: int = 50) -> list[Message]:
        """Messages strictly older than 'before_timestamp', newest first. 'None' starts at the newest."""
        if limit <= 0 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
        return await self.archive_db.get_page(conversation_id, before_timestamp, limit)

    async def get(self, conversation_id: str, message_id: str) -> Message | None:
        return await self.archive_db.get_message(conversation_id, message_id)

    async def contains(self, conversation_id: str, message_id: str) -> bool:
        return await self.archive_db.get_message(conversation_id, message_id) is not None

    async def count(self, conversation_id: str) -> int:
        return await self.archive_db.count_messages(conversation_id)

    async def all_messages(self, conversation_id: str) -> list[Message]:
        return order_messages(await self.archive_db.get_messages_by_conversation_id(conversation_id))
