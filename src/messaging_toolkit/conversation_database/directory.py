"""
Conversation directory: membership, denormalized preview and unread counters.

The directory owns the conversation records and every user's per-conversation
status. Both message stores call into it: the live store after each append and
read receipt, the controller when a message is deleted. Unread counters are
incremented optimistically on send and recomputed exactly from message history
whenever a user's read cursor moves.
"""

from collections.abc import Callable

from loguru import logger

from messaging_toolkit.conversation_database.data_models.conversation import (
    Conversation,
    ConversationDatabase,
    ConversationType,
    LastMessagePreview,
    MemberDetail,
)
from messaging_toolkit.conversation_database.data_models.message import (
    ArchiveMessageDatabase,
    LiveMessageDatabase,
    Message,
)
from messaging_toolkit.conversation_database.data_models.user_status import (
    UserConversationStatus,
    UserStatusDatabase,
)
from messaging_toolkit.errors import ConversationNotFound, InvalidMembership, NotAMember, ValidationError
from messaging_toolkit.utils.database import generate_uid
from messaging_toolkit.utils.time import get_current_timestamp


def preview_from_message(message: Message) -> LastMessagePreview:
    return LastMessagePreview(
        message_id=message.id,
        text=message.text,
        sender_id=message.sender_id,
        sender_name=message.sender_name,
        timestamp=message.create_timestamp,
        type=message.type,
    )


class ConversationDirectory:
    def __init__(
        self,
        conversation_db: ConversationDatabase,
        status_db: UserStatusDatabase,
        live_db: LiveMessageDatabase,
        archive_db: ArchiveMessageDatabase,
        clock: Callable[[], int] = get_current_timestamp,
    ):
        self.conversation_db = conversation_db
        self.status_db = status_db
        self.live_db = live_db
        self.archive_db = archive_db
        self._clock = clock

    async def create_conversation(
        self,
        type: ConversationType,
        member_ids: list[str],
        created_by: str,
        name: str | None = None,
        member_details: dict[str, MemberDetail] | None = None,
    ) -> Conversation:
        if not member_ids:
            raise InvalidMembership("A conversation needs at least one member")
        if len(set(member_ids)) != len(member_ids):
            raise InvalidMembership(f"Duplicate member ids in {member_ids}")
        if created_by not in member_ids:
            raise InvalidMembership(f"Creator {created_by} must be a member of the conversation")
        if type == ConversationType.GROUP and not (name and name.strip()):
            raise ValidationError("Group conversations require a name")
        if type == ConversationType.GROUP and len(member_ids) < 3:
            logger.warning(f"Group conversation created with only {len(member_ids)} members")

        now = self._clock()
        details = dict(member_details or {})
        for member_id in member_ids:
            details.setdefault(member_id, MemberDetail(display_name=member_id, joined_at=now))

        conversation = await self.conversation_db.create_conversation(
            Conversation(
                id=generate_uid(),
                type=type,
                name=name.strip() if name else None,
                created_by=created_by,
                member_ids=list(member_ids),
                member_details=details,
                create_timestamp=now,
                update_timestamp=now,
            )
        )
        for member_id in member_ids:
            await self.status_db.create_status(
                UserConversationStatus(user_id=member_id, conversation_id=conversation.id, last_message_timestamp=now)
            )
        logger.info(f"Created {type} conversation {conversation.id} with {len(member_ids)} members")
        return conversation

    async def find_by_participants(self, member_ids: list[str]) -> Conversation | None:
        """Return the conversation whose membership equals 'member_ids' as an unordered set."""
        if not member_ids:
            return None
        wanted = set(member_ids)
        candidates = await self.conversation_db.get_conversations_by_user_id(member_ids[0])
        matches = [conversation for conversation in candidates if set(conversation.member_ids) == wanted]
        if not matches:
            return None
        return min(matches, key=lambda c: (c.create_timestamp, c.id))

    async def get_or_create_conversation(
        self,
        type: ConversationType,
        member_ids: list[str],
        created_by: str,
        name: str | None = None,
        member_details: dict[str, MemberDetail] | None = None,
    ) -> tuple[Conversation, bool]:
        existing = await self.find_by_participants(member_ids)
        if existing is not None:
            return existing, False
        return await self.create_conversation(type, member_ids, created_by, name, member_details), True

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.conversation_db.get_conversation_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    async def require_member(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if not conversation.has_member(user_id):
            raise NotAMember(user_id, conversation_id)
        return conversation

    async def list_conversations(
        self, user_id: str, include_hidden: bool = False
    ) -> list[tuple[Conversation, UserConversationStatus]]:
        """Conversations of 'user_id' with their status, most recent activity first."""
        result = []
        for conversation in await self.conversation_db.get_conversations_by_user_id(user_id):
            status = await self._get_or_create_status(user_id, conversation.id)
            if status.is_hidden and not include_hidden:
                continue
            result.append((conversation, status))
        return sorted(result, key=lambda pair: pair[1].last_message_timestamp, reverse=True)

    async def get_status(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        await self.require_member(conversation_id, user_id)
        return await self._get_or_create_status(user_id, conversation_id)

    async def update_last_message(self, conversation_id: str, preview: LastMessagePreview) -> bool:
        written = await self.conversation_db.set_last_message_if_newer(conversation_id, preview)
        if not written:
            logger.debug(f"Ignored stale preview for conversation {conversation_id} (ts={preview.timestamp})")
        return written

    async def record_message(self, conversation: Conversation, message: Message) -> None:
        """Fan-out after a message is committed: preview, totals and recipients' unread counters."""
        await self.update_last_message(conversation.id, preview_from_message(message))
        await self.conversation_db.increment_total_messages(conversation.id)
        for member_id in conversation.member_ids:
            if member_id == message.sender_id:
                status = await self._get_or_create_status(member_id, conversation.id)
                status.last_message_timestamp = max(status.last_message_timestamp, message.create_timestamp)
                await self.status_db.update_status(status)
            else:
                await self.status_db.increment_unread(member_id, conversation.id, message.create_timestamp)

    async def refresh_last_message(self, conversation_id: str) -> LastMessagePreview | None:
        """Rebuild the preview from the newest non-deleted message visible to at least one member."""
        conversation = await self.get_conversation(conversation_id)
        members = set(conversation.member_ids)
        messages = await self._all_messages(conversation_id)
        visible = [m for m in messages if not m.is_deleted and not members.issubset(m.deleted_for)]
        preview = preview_from_message(max(visible, key=Message.sort_key)) if visible else None
        await self.conversation_db.replace_last_message(conversation_id, preview)
        return preview

    async def recompute_unread(self, conversation_id: str, user_id: str) -> int:
        """Count messages from others, created after the read cursor, not deleted for 'user_id'."""
        status = await self._get_or_create_status(user_id, conversation_id)
        cursor = status.last_read_timestamp
        unread = sum(
            1
            for message in await self._all_messages(conversation_id)
            if message.sender_id != user_id
            and user_id not in message.deleted_for
            and (cursor is None or message.create_timestamp > cursor)
        )
        if unread != status.unread_count:
            status.unread_count = unread
            await self.status_db.update_status(status)
        return unread

    async def mark_read(self, conversation_id: str, user_id: str, message: Message) -> UserConversationStatus:
        """Advance the read cursor to 'message' (never backwards) and recompute the unread count."""
        status = await self._get_or_create_status(user_id, conversation_id)
        if status.last_read_timestamp is None or message.create_timestamp > status.last_read_timestamp:
            status.last_read_timestamp = message.create_timestamp
            status.last_read_message_id = message.id
            await self.status_db.update_status(status)
        await self.recompute_unread(conversation_id, user_id)
        return await self._get_or_create_status(user_id, conversation_id)

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        await self.require_member(conversation_id, user_id)
        status = await self._get_or_create_status(user_id, conversation_id)
        status.last_read_timestamp = max(status.last_read_timestamp or 0, self._clock())
        await self.status_db.update_status(status)
        await self.recompute_unread(conversation_id, user_id)
        return await self._get_or_create_status(user_id, conversation_id)

    async def hide_for_user(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        return await self._set_flag(conversation_id, user_id, is_hidden=True)

    async def unhide_for_user(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        return await self._set_flag(conversation_id, user_id, is_hidden=False)

    async def set_pinned(self, conversation_id: str, user_id: str, pinned: bool) -> UserConversationStatus:
        return await self._set_flag(conversation_id, user_id, is_pinned=pinned)

    async def set_muted(self, conversation_id: str, user_id: str, muted: bool) -> UserConversationStatus:
        return await self._set_flag(conversation_id, user_id, is_muted=muted)

    async def _set_flag(self, conversation_id: str, user_id: str, **flags: bool) -> UserConversationStatus:
        await self.require_member(conversation_id, user_id)
        status = await self._get_or_create_status(user_id, conversation_id)
        return await self.status_db.update_status(status.model_copy(update=flags))

    async def _get_or_create_status(self, user_id: str, conversation_id: str) -> UserConversationStatus:
        status = await self.status_db.get_status(user_id, conversation_id)
        if status is None:
            status = await self.status_db.create_status(
                UserConversationStatus(user_id=user_id, conversation_id=conversation_id)
            )
        return status

    async def _all_messages(self, conversation_id: str) -> list[Message]:
        # A message can sit in both stores between archive-write and live-delete.
        live = await self.live_db.get_messages_by_conversation_id(conversation_id)
        live_ids = {message.id for message in live}
        archived = await self.archive_db.get_messages_by_conversation_id(conversation_id)
        return live + [message for message in archived if message.id not in live_ids]
