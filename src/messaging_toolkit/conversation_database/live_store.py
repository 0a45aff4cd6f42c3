"""
Live message store.

'LiveMessageStore' is the authoritative record of the most recent messages of
each conversation. It assigns the server timestamp on append, seeds per-member
delivery receipts, tracks delivered/read state monotonically, keeps typing
indicators with a server-side expiry and pushes the ordered window to every
observer after each mutation.

Appends are independent inserts keyed by the client-generated message id, so
concurrent senders never overwrite each other. The only writer allowed to
remove live messages is the archival coordinator, through 'evict'.
"""

import asyncio
from collections.abc import Callable

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.config import DEFAULT_TYPING_TTL_SECONDS, MESSAGE_TEXT_MAX_CHARS
from messaging_toolkit.conversation_database.data_models.message import (
    DeliveryReceipt,
    DeliveryState,
    LiveMessageDatabase,
    Message,
    MessageDraft,
    MessageType,
    order_messages,
)
from messaging_toolkit.conversation_database.directory import ConversationDirectory
from messaging_toolkit.errors import (
    EmptyMessageText,
    DuplicateMessageId,
    MessageNotFound,
    NotAMember,
    PermissionDenied,
)
from messaging_toolkit.utils.pubsub import Subscription, SubscriptionRegistry
from messaging_toolkit.utils.text import normalize_message_text, sanitize_text
from messaging_toolkit.utils.time import get_current_timestamp


class AppendResult(BaseModel):
    """'created' is False when the draft had already been committed (idempotent re-send)."""

    message: Message
    created: bool


class LiveMessageStore:
    def __init__(
        self,
        live_db: LiveMessageDatabase,
        directory: ConversationDirectory,
        typing_ttl_seconds: float = DEFAULT_TYPING_TTL_SECONDS,
        message_text_max_chars: int = MESSAGE_TEXT_MAX_CHARS,
        clock: Callable[[], int] = get_current_timestamp,
    ):
        self.live_db = live_db
        self.directory = directory
        self.typing_ttl_ms = int(typing_ttl_seconds * 1000)
        self.message_text_max_chars = message_text_max_chars
        self._clock = clock
        self._message_subscriptions: SubscriptionRegistry[list[Message]] = SubscriptionRegistry()
        self._typing_subscriptions: SubscriptionRegistry[list[str]] = SubscriptionRegistry()

    async def append(
        self, conversation_id: str, sender_id: str, draft: MessageDraft, sender_name: str | None = None
    ) -> AppendResult:
        conversation = await self.directory.require_member(conversation_id, sender_id)

        draft = self.normalize_draft(draft)
        if not sanitize_text(draft.text) and (draft.type == MessageType.TEXT or not draft.media_url):
            raise EmptyMessageText()

        existing = await self.live_db.get_message(conversation_id, draft.id)
        if existing is not None:
            if existing.sender_id == sender_id and draft.matches(existing):
                logger.debug(f"Message {draft.id} already committed, returning existing record")
                return AppendResult(message=existing, created=False)
            logger.error(f"Message id {draft.id} reused with different content in {conversation_id}")
            raise DuplicateMessageId(conversation_id, draft.id)

        if sender_name is None:
            detail = conversation.member_details.get(sender_id)
            sender_name = detail.display_name if detail else "User"

        now = self._clock()
        message = await self.live_db.create_message(
            Message(
                id=draft.id,
                conversation_id=conversation_id,
                sender_id=sender_id,
                sender_name=sender_name,
                text=draft.text,
                create_timestamp=now,
                type=draft.type,
                media_url=draft.media_url,
                reply_to_message_id=draft.reply_to_message_id,
                delivery_status={
                    member_id: DeliveryReceipt(
                        state=DeliveryState.SENT if member_id == sender_id else DeliveryState.PENDING,
                        timestamp=now,
                    )
                    for member_id in conversation.member_ids
                },
                read_by={sender_id: now},
            )
        )

        await self.directory.record_message(conversation, message)
        if await self.live_db.clear_typing(conversation_id, sender_id):
            await self._publish_typing(conversation_id)
        await self._publish(conversation_id)
        return AppendResult(message=message, created=True)

    def normalize_draft(self, draft: MessageDraft) -> MessageDraft:
        """The draft as it will be stored: text trimmed and capped, line breaks kept."""
        return draft.model_copy(update={"text": normalize_message_text(draft.text, self.message_text_max_chars)})

    async def get(self, conversation_id: str, message_id: str) -> Message | None:
        return await self.live_db.get_message(conversation_id, message_id)

    async def window(self, conversation_id: str, viewer_id: str | None = None) -> list[Message]:
        """The current live window in display order, without messages deleted for 'viewer_id'."""
        messages = await self.live_db.get_messages_by_conversation_id(conversation_id)
        return order_messages([message for message in messages if message.is_visible_to(viewer_id)])

    async def count(self, conversation_id: str) -> int:
        return await self.live_db.count_messages(conversation_id)

    async def mark_delivered(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        return await self._apply_receipt(conversation_id, message_id, user_id, DeliveryState.DELIVERED)

    async def mark_read(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        message = await self._apply_receipt(conversation_id, message_id, user_id, DeliveryState.READ)
        await self.directory.mark_read(conversation_id, user_id, message)
        return message

    async def _apply_receipt(
        self, conversation_id: str, message_id: str, user_id: str, state: DeliveryState
    ) -> Message:
        message = await self.live_db.get_message(conversation_id, message_id)
        if message is None:
            raise MessageNotFound(conversation_id, message_id)
        if user_id not in message.delivery_status:
            raise NotAMember(user_id, conversation_id)
        if user_id == message.sender_id:
            return message

        current = message.delivery_status[user_id]
        if current.state.rank >= state.rank and (state != DeliveryState.READ or user_id in message.read_by):
            logger.debug(f"Receipt {state} for {user_id} on {message_id} is a no-op (current {current.state})")
            return message

        now = self._clock()
        updated = await self.live_db.merge_delivery_receipt(
            conversation_id, message_id, user_id, DeliveryReceipt(state=state, timestamp=now)
        )
        if updated is not None and state == DeliveryState.READ:
            updated = await self.live_db.add_read_receipt(conversation_id, message_id, user_id, now)
        if updated is None:
            raise MessageNotFound(conversation_id, message_id)

        await self._publish(conversation_id)
        return updated

    async def delete_for_user(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        message = await self.live_db.add_deleted_for(conversation_id, message_id, user_id)
        if message is None:
            raise MessageNotFound(conversation_id, message_id)
        await self._publish(conversation_id)
        return message

    async def edit(self, conversation_id: str, message_id: str, user_id: str, text: str) -> Message:
        message = await self._require_own_message(conversation_id, message_id, user_id)
        text = normalize_message_text(text, self.message_text_max_chars)
        if not sanitize_text(text):
            raise EmptyMessageText()
        message.text = text
        message.is_edited = True
        message.edited_at = self._clock()
        message.translated_text = message.detected_language = message.translated_to = None
        updated = await self.live_db.update_message(message)
        await self._publish(conversation_id)
        return updated

    async def soft_delete(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        message = await self._require_own_message(conversation_id, message_id, user_id)
        message.is_deleted = True
        updated = await self.live_db.update_message(message)
        await self._publish(conversation_id)
        return updated

    async def set_embedding_id(self, conversation_id: str, message_id: str, embedding_id: str) -> Message | None:
        message = await self.live_db.get_message(conversation_id, message_id)
        if message is None:
            return None
        message.embedding_id = embedding_id
        return await self.live_db.update_message(message)

    async def set_translation(
        self, conversation_id: str, message_id: str, translated_text: str, detected_language: str, translated_to: str
    ) -> Message | None:
        message = await self.live_db.get_message(conversation_id, message_id)
        if message is None:
            return None
        message.translated_text = translated_text
        message.detected_language = detected_language
        message.translated_to = translated_to
        return await self.live_db.update_message(message)

    async def evict(self, conversation_id: str, message_ids: list[str]) -> int:
        """Remove messages from the live window. Reserved for the archival coordinator."""
        deleted = await self.live_db.delete_messages(conversation_id, message_ids)
        if deleted:
            await self._publish(conversation_id)
        return deleted

    async def _require_own_message(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        message = await self.live_db.get_message(conversation_id, message_id)
        if message is None:
            raise MessageNotFound(conversation_id, message_id)
        if message.sender_id != user_id:
            raise PermissionDenied(f"User {user_id} cannot modify message {message_id} sent by {message.sender_id}")
        return message

    # Observation

    async def observe(self, conversation_id: str, viewer_id: str | None = None) -> Subscription[list[Message]]:
        """Subscribe to the ordered live window. The current window is delivered immediately."""
        subscription = self._message_subscriptions.subscribe(conversation_id, viewer_id)
        subscription.push(await self.window(conversation_id, viewer_id))
        return subscription

    async def _publish(self, conversation_id: str) -> None:
        subscriptions = self._message_subscriptions.subscribers(conversation_id)
        if not subscriptions:
            return
        messages = order_messages(await self.live_db.get_messages_by_conversation_id(conversation_id))
        for subscription in subscriptions:
            subscription.push([message for message in messages if message.is_visible_to(subscription.viewer_id)])

    # Typing indicators

    async def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        await self.directory.require_member(conversation_id, user_id)
        if is_typing:
            await self.live_db.set_typing(conversation_id, user_id, self._clock() + self.typing_ttl_ms)
        elif not await self.live_db.clear_typing(conversation_id, user_id):
            return
        await self._publish_typing(conversation_id)

    async def typing_users(self, conversation_id: str) -> list[str]:
        """Users currently typing. Entries past their expiry are ignored even before a sweep removes them."""
        now = self._clock()
        entries = await self.live_db.get_typing(conversation_id)
        return sorted(user_id for user_id, expires_at in entries.items() if expires_at > now)

    async def observe_typing(self, conversation_id: str) -> Subscription[list[str]]:
        subscription = self._typing_subscriptions.subscribe(conversation_id)
        subscription.push(await self.typing_users(conversation_id))
        return subscription

    async def sweep_typing(self) -> set[str]:
        """Drop expired typing entries and notify observers of the affected conversations."""
        affected = await self.live_db.delete_expired_typing(self._clock())
        for conversation_id in affected:
            await self._publish_typing(conversation_id)
        if affected:
            logger.debug(f"Expired typing indicators in {len(affected)} conversation(s)")
        return affected

    async def run_typing_sweeper(self, interval_seconds: float = 1.0) -> None:
        """Sweep forever until cancelled. Meant to run as a background task."""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.sweep_typing()

    async def _publish_typing(self, conversation_id: str) -> None:
        subscriptions = self._typing_subscriptions.subscribers(conversation_id)
        if not subscriptions:
            return
        users = await self.typing_users(conversation_id)
        for subscription in subscriptions:
            subscription.push(users)
