"""
Messaging controller (Facade).

'MessagingController' is the single entry point for application logic. It
takes an already authenticated user id on every call, checks membership, and
coordinates the conversation directory, the live and archive message stores,
the archival coordinator, the embedding pipeline, translation and RAG.

Sending a message runs in this order:

    1. reject ids that already live in the archive with different content
    2. append to the live store (fan-out to directory counters and observers)
    3. enforce the live-window bound through the archival coordinator
    4. publish 'MessageCommittedEvent', record '@mentions'
    5. schedule embedding in the background

Once step 2 succeeded the message is committed; later steps log their
failures instead of failing the send. A send that fails with a transient
error is kept in a per-user failed-send registry until 'retry_send' succeeds,
so a user-authored message is never silently dropped.
"""

import asyncio
from collections import defaultdict
from collections.abc import Coroutine
from typing import Any

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.agents.rag import ConversationRAG, InsightAnswer, SupportingMessage
from messaging_toolkit.conversation_database.archival import ArchivalCoordinator
from messaging_toolkit.conversation_database.archive_store import ArchiveMessageStore
from messaging_toolkit.conversation_database.data_models.conversation import (
    Conversation,
    ConversationType,
    MemberDetail,
)
from messaging_toolkit.conversation_database.data_models.mention import (
    MentionDatabase,
    MentionedMessage,
    MentionReason,
)
from messaging_toolkit.conversation_database.data_models.message import Message, MessageDraft
from messaging_toolkit.conversation_database.data_models.user_status import UserConversationStatus
from messaging_toolkit.conversation_database.directory import ConversationDirectory
from messaging_toolkit.conversation_database.live_store import LiveMessageStore
from messaging_toolkit.embeddings.indexer import MessageEmbedder
from messaging_toolkit.errors import (
    DuplicateMessageId,
    IntegrityError,
    MessageNotFound,
    MessagingError,
    NotFoundError,
    TransientError,
)
from messaging_toolkit.events import EventPublisher, MessageCommittedEvent
from messaging_toolkit.generation.translation import TranslationResult, TranslationService
from messaging_toolkit.utils.database import generate_uid
from messaging_toolkit.utils.pubsub import Subscription
from messaging_toolkit.utils.rate_limit import RateLimiter
from messaging_toolkit.utils.retry import retry_with_backoff
from messaging_toolkit.utils.text import extract_mentions, sanitize_text
from messaging_toolkit.utils.time import get_current_timestamp

EMBEDDING_ACTION = "embedding"
INSIGHTS_ACTION = "insights"


class FailedSend(BaseModel):
    conversation_id: str
    sender_id: str
    sender_name: str | None
    draft: MessageDraft
    error: str
    failed_at: int


class MessagingController:
    def __init__(
        self,
        directory: ConversationDirectory,
        live_store: LiveMessageStore,
        archive_store: ArchiveMessageStore,
        coordinator: ArchivalCoordinator,
        mention_db: MentionDatabase,
        embedder: MessageEmbedder,
        rag: ConversationRAG,
        translation_service: TranslationService,
        rate_limiter: RateLimiter,
        event_publisher: EventPublisher,
        auto_embed: bool = True,
        archival_retry_attempts: int = 3,
        archival_retry_base_delay: float = 0.1,
    ):
        self.directory = directory
        self.live_store = live_store
        self.archive_store = archive_store
        self.coordinator = coordinator
        self.mention_db = mention_db
        self.embedder = embedder
        self.rag = rag
        self.translation_service = translation_service
        self.rate_limiter = rate_limiter
        self.event_publisher = event_publisher
        self.auto_embed = auto_embed
        self.archival_retry_attempts = archival_retry_attempts
        self.archival_retry_base_delay = archival_retry_base_delay
        self._failed_sends: dict[str, dict[str, FailedSend]] = defaultdict(dict)
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._embedding_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # Conversations

    async def create_conversation(
        self,
        user_id: str,
        type: ConversationType,
        member_ids: list[str],
        name: str | None = None,
        member_details: dict[str, MemberDetail] | None = None,
    ) -> Conversation:
        """Return the existing conversation for this exact member set, or create it."""
        conversation, created = await self.directory.get_or_create_conversation(
            type, member_ids, user_id, name, member_details
        )
        if not created:
            logger.debug(f"Reusing conversation {conversation.id} for members {sorted(member_ids)}")
        return conversation

    async def create_conversation_and_send(
        self,
        user_id: str,
        type: ConversationType,
        member_ids: list[str],
        draft: MessageDraft,
        name: str | None = None,
        member_details: dict[str, MemberDetail] | None = None,
        sender_name: str | None = None,
    ) -> tuple[Conversation, Message]:
        conversation = await self.create_conversation(user_id, type, member_ids, name, member_details)
        message = await self.send_message(conversation.id, user_id, draft, sender_name)
        return await self.directory.get_conversation(conversation.id), message

    async def find_conversation(self, user_id: str, member_ids: list[str]) -> Conversation | None:
        conversation = await self.directory.find_by_participants(member_ids)
        if conversation is None or not conversation.has_member(user_id):
            return None
        return conversation

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        return await self.directory.require_member(conversation_id, user_id)

    async def list_conversations(
        self, user_id: str, include_hidden: bool = False
    ) -> list[tuple[Conversation, UserConversationStatus]]:
        return await self.directory.list_conversations(user_id, include_hidden)

    async def get_status(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        return await self.directory.get_status(conversation_id, user_id)

    async def hide_conversation(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        return await self.directory.hide_for_user(conversation_id, user_id)

    async def unhide_conversation(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        return await self.directory.unhide_for_user(conversation_id, user_id)

    async def set_pinned(self, conversation_id: str, user_id: str, pinned: bool) -> UserConversationStatus:
        return await self.directory.set_pinned(conversation_id, user_id, pinned)

    async def set_muted(self, conversation_id: str, user_id: str, muted: bool) -> UserConversationStatus:
        return await self.directory.set_muted(conversation_id, user_id, muted)

    # Sending

    async def send_message(
        self, conversation_id: str, user_id: str, draft: MessageDraft, sender_name: str | None = None
    ) -> Message:
        archived = await self.archive_store.get(conversation_id, draft.id)
        if archived is not None:
            normalized = self.live_store.normalize_draft(draft)
            if archived.sender_id == user_id and normalized.matches(archived):
                self._failed_sends[user_id].pop(draft.id, None)
                return archived
            logger.error(f"Message id {draft.id} reused for a different message in {conversation_id}")
            raise DuplicateMessageId(conversation_id, draft.id)

        try:
            result = await self.live_store.append(conversation_id, user_id, draft, sender_name)
        except TransientError as e:
            logger.warning(f"Send of {draft.id} to {conversation_id} failed: {e}")
            self._failed_sends[user_id][draft.id] = FailedSend(
                conversation_id=conversation_id,
                sender_id=user_id,
                sender_name=sender_name,
                draft=draft,
                error=str(e),
                failed_at=get_current_timestamp(),
            )
            raise

        self._failed_sends[user_id].pop(draft.id, None)
        if result.created:
            await self._enforce_archival(conversation_id)
            conversation = await self.directory.get_conversation(conversation_id)
            await self._publish_committed(conversation, result.message)
            await self._create_mentions(conversation, result.message)
            if self.auto_embed:
                self._spawn(self._embed_in_background(conversation_id, result.message.id))
        return result.message

    def failed_sends(self, user_id: str) -> list[FailedSend]:
        return sorted(self._failed_sends.get(user_id, {}).values(), key=lambda failed: failed.failed_at)

    async def retry_send(self, user_id: str, message_id: str) -> Message:
        """Re-send a previously failed message with the same client-generated id."""
        failed = self._failed_sends.get(user_id, {}).get(message_id)
        if failed is None:
            raise NotFoundError(f"No failed send {message_id} for user {user_id}")
        return await self.send_message(failed.conversation_id, user_id, failed.draft, failed.sender_name)

    async def discard_failed_send(self, user_id: str, message_id: str) -> bool:
        return self._failed_sends.get(user_id, {}).pop(message_id, None) is not None

    async def _enforce_archival(self, conversation_id: str) -> None:
        try:
            await retry_with_backoff(
                lambda: self.coordinator.enforce(conversation_id),
                attempts=self.archival_retry_attempts,
                base_delay=self.archival_retry_base_delay,
            )
        except IntegrityError as e:
            logger.error(f"Archival of {conversation_id} needs manual reconciliation: {e}")
        except MessagingError as e:
            logger.warning(f"Archival of {conversation_id} deferred to the next append: {e}")

    async def _publish_committed(self, conversation: Conversation, message: Message) -> None:
        event = MessageCommittedEvent(
            conversation_id=conversation.id,
            message_id=message.id,
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            text=message.text,
            is_group_chat=conversation.is_group_chat,
            recipient_ids=[member_id for member_id in conversation.member_ids if member_id != message.sender_id],
        )
        try:
            await self.event_publisher.publish(event)
        except Exception as e:
            logger.opt(exception=e).warning(f"Publishing commit event for {message.id} failed")

    async def _create_mentions(self, conversation: Conversation, message: Message) -> None:
        handles = {handle.lower() for handle in extract_mentions(message.text)}
        if not handles:
            return
        for member_id in conversation.member_ids:
            if member_id == message.sender_id:
                continue
            detail = conversation.member_details.get(member_id)
            names = {member_id.lower()}
            if detail is not None:
                names.add(detail.display_name.lower())
                names.add(detail.display_name.replace(" ", "").lower())
            if names & handles:
                await self._create_mention_record(conversation, message, member_id, MentionReason.MENTIONED)

    async def _create_mention_record(
        self, conversation: Conversation, message: Message, user_id: str, reason: MentionReason
    ) -> MentionedMessage:
        return await self.mention_db.create_mention(
            MentionedMessage(
                id=generate_uid(),
                user_id=user_id,
                message_id=message.id,
                conversation_id=conversation.id,
                conversation_title=conversation.display_name_for(user_id),
                message_text=message.text,
                sender_id=message.sender_id,
                sender_name=message.sender_name,
                reason=reason,
                create_timestamp=get_current_timestamp(),
            )
        )

    async def _embed_in_background(self, conversation_id: str, message_id: str) -> None:
        # Serialized with deletion per conversation; always embeds the stored text.
        async with self._embedding_locks[conversation_id]:
            message = await self.live_store.get(conversation_id, message_id)
            if message is None:
                message = await self.archive_store.get(conversation_id, message_id)
            if message is None or message.is_deleted or not sanitize_text(message.text):
                logger.debug(f"Skipping background embedding of {message_id} in {conversation_id}")
                return
            try:
                vector_id = await self.embedder.embed_message(message)
            except MessagingError as e:
                logger.warning(f"Background embedding of {message_id} failed: {e}")
                return
            await self.live_store.set_embedding_id(conversation_id, message_id, vector_id)

    def _spawn(self, coroutine: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coroutine)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def drain_background_tasks(self) -> None:
        """Wait for scheduled background work (embeddings) to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))

    # Receipts

    async def mark_delivered(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        await self.directory.require_member(conversation_id, user_id)
        if await self.live_store.get(conversation_id, message_id) is not None:
            return await self.live_store.mark_delivered(conversation_id, message_id, user_id)
        return await self._require_archived(conversation_id, message_id)

    async def mark_read(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        await self.directory.require_member(conversation_id, user_id)
        if await self.live_store.get(conversation_id, message_id) is not None:
            return await self.live_store.mark_read(conversation_id, message_id, user_id)
        archived = await self._require_archived(conversation_id, message_id)
        await self.directory.mark_read(conversation_id, user_id, archived)
        return archived

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> UserConversationStatus:
        return await self.directory.mark_conversation_read(conversation_id, user_id)

    # Reading

    async def observe(self, conversation_id: str, user_id: str) -> Subscription[list[Message]]:
        await self.directory.require_member(conversation_id, user_id)
        return await self.live_store.observe(conversation_id, user_id)

    async def get_live_messages(self, conversation_id: str, user_id: str) -> list[Message]:
        await self.directory.require_member(conversation_id, user_id)
        return await self.live_store.window(conversation_id, user_id)

    async def load_older_messages(
        self, conversation_id: str, user_id: str, before_timestamp: int | None = None, limit: int = 50
    ) -> list[Message]:
        """One archive page, newest first, without messages the user deleted for themselves."""
        await self.directory.require_member(conversation_id, user_id)
        page = await self.archive_store.page(conversation_id, before_timestamp, limit)
        return [message for message in page if message.is_visible_to(user_id)]

    async def get_message(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        await self.directory.require_member(conversation_id, user_id)
        message = await self._find_message(conversation_id, message_id)
        if not message.is_visible_to(user_id):
            raise MessageNotFound(conversation_id, message_id)
        return message

    # Typing

    async def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        await self.live_store.set_typing(conversation_id, user_id, is_typing)

    async def typing_users(self, conversation_id: str, user_id: str) -> list[str]:
        await self.directory.require_member(conversation_id, user_id)
        return [typing for typing in await self.live_store.typing_users(conversation_id) if typing != user_id]

    async def observe_typing(self, conversation_id: str, user_id: str) -> Subscription[list[str]]:
        await self.directory.require_member(conversation_id, user_id)
        return await self.live_store.observe_typing(conversation_id)

    # Edits and deletion

    async def delete_message_for_user(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        conversation = await self.directory.require_member(conversation_id, user_id)
        message = await self.live_store.delete_for_user(conversation_id, message_id, user_id)
        await self.directory.recompute_unread(conversation_id, user_id)
        if conversation.last_message is not None and conversation.last_message.message_id == message_id:
            await self.directory.refresh_last_message(conversation_id)
        return message

    async def edit_message(self, conversation_id: str, message_id: str, user_id: str, text: str) -> Message:
        conversation = await self.directory.require_member(conversation_id, user_id)
        message = await self.live_store.edit(conversation_id, message_id, user_id, text)
        if conversation.last_message is not None and conversation.last_message.message_id == message_id:
            await self.directory.refresh_last_message(conversation_id)
        if self.auto_embed or message.embedding_id is not None:
            self._spawn(self._embed_in_background(conversation_id, message_id))
        return message

    async def delete_message(self, conversation_id: str, message_id: str, user_id: str) -> Message:
        conversation = await self.directory.require_member(conversation_id, user_id)
        message = await self.live_store.soft_delete(conversation_id, message_id, user_id)
        if conversation.last_message is not None and conversation.last_message.message_id == message_id:
            await self.directory.refresh_last_message(conversation_id)
        async with self._embedding_locks[conversation_id]:
            await self.embedder.delete_message_embedding(conversation_id, message_id)
        return message

    # Mentions and stars

    async def list_mentions(self, user_id: str) -> list[MentionedMessage]:
        return await self.mention_db.get_mentions_by_user_id(user_id)

    async def star_message(self, conversation_id: str, message_id: str, user_id: str) -> MentionedMessage:
        conversation = await self.directory.require_member(conversation_id, user_id)
        message = await self.get_message(conversation_id, message_id, user_id)
        return await self._create_mention_record(conversation, message, user_id, MentionReason.STARRED)

    async def mark_mention_read(self, user_id: str, mention_id: str) -> MentionedMessage:
        mention = await self.mention_db.get_mention(user_id, mention_id)
        if mention is None:
            raise NotFoundError(f"Mention {mention_id} not found for user {user_id}")
        mention.is_read = True
        return await self.mention_db.update_mention(mention)

    async def delete_mention(self, user_id: str, mention_id: str) -> None:
        if not await self.mention_db.delete_mention(user_id, mention_id):
            raise NotFoundError(f"Mention {mention_id} not found for user {user_id}")

    # AI features

    async def translate_message(
        self, conversation_id: str, message_id: str, user_id: str, target_language: str
    ) -> TranslationResult:
        message = await self.get_message(conversation_id, message_id, user_id)
        result = await self.translation_service.translate(user_id, message.id, message.text, target_language)
        if await self.live_store.get(conversation_id, message_id) is not None:
            await self.live_store.set_translation(
                conversation_id, message_id, result.translated_text, result.detected_language, target_language
            )
        return result

    async def embed_message(self, conversation_id: str, message_id: str, user_id: str) -> str:
        message = await self.get_message(conversation_id, message_id, user_id)
        if message.is_deleted:
            raise MessageNotFound(conversation_id, message_id)
        await self.rate_limiter.check(user_id, EMBEDDING_ACTION)
        async with self._embedding_locks[conversation_id]:
            vector_id = await self.embedder.embed_message(message)
            await self.live_store.set_embedding_id(conversation_id, message_id, vector_id)
        return vector_id

    async def search(
        self, conversation_id: str, user_id: str, query: str, top_k: int | None = None
    ) -> list[SupportingMessage]:
        await self.directory.require_member(conversation_id, user_id)
        return await self.rag.search(conversation_id, query, top_k)

    async def generate_insights(
        self, conversation_id: str, user_id: str, query: str, top_k: int | None = None
    ) -> InsightAnswer:
        await self.directory.require_member(conversation_id, user_id)
        await self.rate_limiter.check(user_id, INSIGHTS_ACTION)
        return await self.rag.answer(conversation_id, query, top_k)

    async def delete_conversation_embeddings(self, conversation_id: str, user_id: str) -> int:
        await self.directory.require_member(conversation_id, user_id)
        return await self.embedder.delete_conversation_embeddings(conversation_id)

    async def _find_message(self, conversation_id: str, message_id: str) -> Message:
        message = await self.live_store.get(conversation_id, message_id)
        if message is None:
            message = await self.archive_store.get(conversation_id, message_id)
        if message is None:
            raise MessageNotFound(conversation_id, message_id)
        return message

    async def _require_archived(self, conversation_id: str, message_id: str) -> Message:
        archived = await self.archive_store.get(conversation_id, message_id)
        if archived is None:
            raise MessageNotFound(conversation_id, message_id)
        return archived
