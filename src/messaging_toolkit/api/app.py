"""
HTTP surface over 'MessagingController'.

'create_app' builds a FastAPI application around an already wired controller.
The current user comes from the 'AuthProvider' dependency; every route is a
thin translation from request models to one controller call. Toolkit errors
are mapped to status codes in a single exception handler:

    ValidationError            400 (NotAMember, PermissionDenied: 403)
    NotFoundError              404
    IntegrityError             409
    RateLimited                429 with 'Retry-After'
    model / generation errors  502
    store or model unavailable 503
    ModelTimeout               504

The app's lifespan runs the typing-indicator sweeper in the background.
"""

import asyncio
import contextlib
import math
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from messaging_toolkit.agents.rag import InsightAnswer, SupportingMessage
from messaging_toolkit.api.auth.base import AuthProvider, HeaderAuthProvider
from messaging_toolkit.config import DEFAULT_TOP_K, MAX_TOP_K, Settings, get_settings
from messaging_toolkit.conversation_database.controller import MessagingController
from messaging_toolkit.conversation_database.data_models.conversation import (
    Conversation,
    ConversationType,
    MemberDetail,
)
from messaging_toolkit.conversation_database.data_models.mention import MentionedMessage
from messaging_toolkit.conversation_database.data_models.message import Message, MessageDraft, MessageType
from messaging_toolkit.conversation_database.data_models.user_status import UserConversationStatus
from messaging_toolkit.errors import (
    EmbeddingFailed,
    InsightGenerationFailed,
    IntegrityError,
    MalformedModelResponse,
    MessagingError,
    ModelTimeout,
    NotAMember,
    NotFoundError,
    PermissionDenied,
    RateLimited,
    TranslationFailed,
    TransientError,
    ValidationError,
)
from messaging_toolkit.factory import build_controller
from messaging_toolkit.generation.translation import TranslationResult
from messaging_toolkit.utils.database import generate_uid


class MessageInput(BaseModel):
    message_id: str | None = None
    text: str = ""
    type: MessageType = MessageType.TEXT
    media_url: str | None = None
    reply_to_message_id: str | None = None
    sender_name: str | None = None

    def to_draft(self) -> MessageDraft:
        return MessageDraft(
            id=self.message_id or generate_uid(),
            text=self.text,
            type=self.type,
            media_url=self.media_url,
            reply_to_message_id=self.reply_to_message_id,
        )


class ConversationInput(BaseModel):
    type: ConversationType
    member_ids: list[str]
    name: str | None = None
    member_details: dict[str, MemberDetail] | None = None
    first_message: MessageInput | None = None


class ConversationCreated(BaseModel):
    conversation: Conversation
    message: Message | None = None


class ConversationSummary(BaseModel):
    conversation: Conversation
    status: UserConversationStatus


class EditInput(BaseModel):
    text: str


class TypingInput(BaseModel):
    is_typing: bool


class TranslateInput(BaseModel):
    target_language: str


class QueryInput(BaseModel):
    query: str
    top_k: int = Field(default=DEFAULT_TOP_K, gt=0, le=MAX_TOP_K)


def status_for(error: MessagingError) -> int:
    if isinstance(error, (NotAMember, PermissionDenied)):
        return 403
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, IntegrityError):
        return 409
    if isinstance(error, RateLimited) or getattr(error, "retry_after", None):
        return 429
    if isinstance(error, ModelTimeout):
        return 504
    if isinstance(error, TransientError) or error.retryable:
        return 503
    if isinstance(error, (InsightGenerationFailed, TranslationFailed, EmbeddingFailed, MalformedModelResponse)):
        return 502
    return 500


async def handle_messaging_error(request: Request, exc: MessagingError) -> JSONResponse:
    status = status_for(exc)
    body: dict[str, object] = {"error": str(exc)}
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if status == 429 and retry_after is not None:
        body["retryAfter"] = retry_after
        headers["Retry-After"] = str(math.ceil(retry_after))
    if status >= 500:
        logger.warning(f"{request.method} {request.url.path} failed with {status}: {exc}")
    return JSONResponse(status_code=status, content=body, headers=headers)


def create_app(
    controller: MessagingController,
    auth_provider: AuthProvider | None = None,
    typing_sweep_interval_seconds: float = 1.0,
) -> FastAPI:
    auth_provider = auth_provider or HeaderAuthProvider()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper = asyncio.create_task(controller.live_store.run_typing_sweeper(typing_sweep_interval_seconds))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await controller.drain_background_tasks()

    app = FastAPI(title="Messaging Toolkit", lifespan=lifespan)
    app.add_exception_handler(MessagingError, handle_messaging_error)
    auth_provider.bind_to_app(app)

    current_user = Depends(auth_provider.get_current_user_id)
    router = APIRouter()

    @router.post("/conversations", status_code=201)
    async def create_conversation(body: ConversationInput, user_id: str = current_user) -> ConversationCreated:
        if body.first_message is None:
            conversation = await controller.create_conversation(
                user_id, body.type, body.member_ids, body.name, body.member_details
            )
            return ConversationCreated(conversation=conversation)
        conversation, message = await controller.create_conversation_and_send(
            user_id,
            body.type,
            body.member_ids,
            body.first_message.to_draft(),
            body.name,
            body.member_details,
            body.first_message.sender_name,
        )
        return ConversationCreated(conversation=conversation, message=message)

    @router.get("/conversations")
    async def list_conversations(
        include_hidden: bool = False, user_id: str = current_user
    ) -> list[ConversationSummary]:
        pairs = await controller.list_conversations(user_id, include_hidden)
        return [ConversationSummary(conversation=conversation, status=status) for conversation, status in pairs]

    @router.get("/conversations/{conversation_id}")
    async def get_conversation(conversation_id: str, user_id: str = current_user) -> Conversation:
        return await controller.get_conversation(conversation_id, user_id)

    @router.post("/conversations/{conversation_id}/hide")
    async def hide_conversation(conversation_id: str, user_id: str = current_user) -> UserConversationStatus:
        return await controller.hide_conversation(conversation_id, user_id)

    @router.post("/conversations/{conversation_id}/unhide")
    async def unhide_conversation(conversation_id: str, user_id: str = current_user) -> UserConversationStatus:
        return await controller.unhide_conversation(conversation_id, user_id)

    @router.post("/conversations/{conversation_id}/read")
    async def mark_conversation_read(conversation_id: str, user_id: str = current_user) -> UserConversationStatus:
        return await controller.mark_conversation_read(conversation_id, user_id)

    @router.post("/conversations/{conversation_id}/messages", status_code=201)
    async def send_message(conversation_id: str, body: MessageInput, user_id: str = current_user) -> Message:
        return await controller.send_message(conversation_id, user_id, body.to_draft(), body.sender_name)

    @router.get("/conversations/{conversation_id}/messages")
    async def get_live_messages(conversation_id: str, user_id: str = current_user) -> list[Message]:
        return await controller.get_live_messages(conversation_id, user_id)

    @router.get("/conversations/{conversation_id}/messages/history")
    async def load_older_messages(
        conversation_id: str,
        before: int | None = None,
        limit: int = Query(50, ge=1, le=200),
        user_id: str = current_user,
    ) -> list[Message]:
        return await controller.load_older_messages(conversation_id, user_id, before, limit)

    @router.patch("/conversations/{conversation_id}/messages/{message_id}")
    async def edit_message(
        conversation_id: str, message_id: str, body: EditInput, user_id: str = current_user
    ) -> Message:
        return await controller.edit_message(conversation_id, message_id, user_id, body.text)

    @router.delete("/conversations/{conversation_id}/messages/{message_id}")
    async def delete_message(
        conversation_id: str, message_id: str, for_everyone: bool = False, user_id: str = current_user
    ) -> Message:
        if for_everyone:
            return await controller.delete_message(conversation_id, message_id, user_id)
        return await controller.delete_message_for_user(conversation_id, message_id, user_id)

    @router.post("/conversations/{conversation_id}/messages/{message_id}/delivered")
    async def mark_delivered(conversation_id: str, message_id: str, user_id: str = current_user) -> Message:
        return await controller.mark_delivered(conversation_id, message_id, user_id)

    @router.post("/conversations/{conversation_id}/messages/{message_id}/read")
    async def mark_read(conversation_id: str, message_id: str, user_id: str = current_user) -> Message:
        return await controller.mark_read(conversation_id, message_id, user_id)

    @router.post("/conversations/{conversation_id}/messages/{message_id}/star", status_code=201)
    async def star_message(conversation_id: str, message_id: str, user_id: str = current_user) -> MentionedMessage:
        return await controller.star_message(conversation_id, message_id, user_id)

    @router.post("/conversations/{conversation_id}/messages/{message_id}/translate")
    async def translate_message(
        conversation_id: str, message_id: str, body: TranslateInput, user_id: str = current_user
    ) -> TranslationResult:
        return await controller.translate_message(conversation_id, message_id, user_id, body.target_language)

    @router.post("/conversations/{conversation_id}/messages/{message_id}/embed")
    async def embed_message(conversation_id: str, message_id: str, user_id: str = current_user) -> dict[str, str]:
        return {"vectorId": await controller.embed_message(conversation_id, message_id, user_id)}

    @router.post("/conversations/{conversation_id}/typing", status_code=204)
    async def set_typing(conversation_id: str, body: TypingInput, user_id: str = current_user) -> None:
        await controller.set_typing(conversation_id, user_id, body.is_typing)

    @router.get("/conversations/{conversation_id}/typing")
    async def typing_users(conversation_id: str, user_id: str = current_user) -> list[str]:
        return await controller.typing_users(conversation_id, user_id)

    @router.post("/conversations/{conversation_id}/search")
    async def search(conversation_id: str, body: QueryInput, user_id: str = current_user) -> list[SupportingMessage]:
        return await controller.search(conversation_id, user_id, body.query, body.top_k)

    @router.post("/conversations/{conversation_id}/insights")
    async def generate_insights(conversation_id: str, body: QueryInput, user_id: str = current_user) -> InsightAnswer:
        return await controller.generate_insights(conversation_id, user_id, body.query, body.top_k)

    @router.delete("/conversations/{conversation_id}/embeddings")
    async def delete_conversation_embeddings(conversation_id: str, user_id: str = current_user) -> dict[str, int]:
        return {"deleted": await controller.delete_conversation_embeddings(conversation_id, user_id)}

    @router.post("/messages/{message_id}/retry", status_code=201)
    async def retry_send(message_id: str, user_id: str = current_user) -> Message:
        return await controller.retry_send(user_id, message_id)

    @router.get("/mentions")
    async def list_mentions(user_id: str = current_user) -> list[MentionedMessage]:
        return await controller.list_mentions(user_id)

    @router.post("/mentions/{mention_id}/read")
    async def mark_mention_read(mention_id: str, user_id: str = current_user) -> MentionedMessage:
        return await controller.mark_mention_read(user_id, mention_id)

    @router.delete("/mentions/{mention_id}", status_code=204)
    async def delete_mention(mention_id: str, user_id: str = current_user) -> None:
        await controller.delete_mention(user_id, mention_id)

    app.include_router(router)
    return app


def build_app(settings: Settings | None = None) -> FastAPI:
    """Application factory for 'uvicorn --factory messaging_toolkit.api.app:build_app'."""
    settings = settings or get_settings()
    return create_app(build_controller(settings), typing_sweep_interval_seconds=settings.typing_sweep_interval_seconds)
