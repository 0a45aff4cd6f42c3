"""
Message embedding pipeline.

'MessageEmbedder' turns a committed message into one vector in the index,
keyed by 'conversationId_messageId'. Text is sanitized and truncated before
the model call and before it is stored as metadata; the index never truncates
on its own. Re-embedding a message replaces its vector. A vector id that is
already taken by a record describing a different message is an integrity error.
"""

from loguru import logger

from messaging_toolkit.config import EMBEDDING_TEXT_MAX_CHARS
from messaging_toolkit.conversation_database.data_models.message import Message
from messaging_toolkit.embeddings.base import EmbeddingsModel
from messaging_toolkit.errors import EmbeddingConflict, EmptyMessageText, MessagingError
from messaging_toolkit.utils.model_errors import call_with_timeout
from messaging_toolkit.utils.text import sanitize_text, truncate
from messaging_toolkit.vectorstores.base import EmbeddingMetadata, EmbeddingRecord, VectorIndex, make_vector_id


class MessageEmbedder:
    def __init__(
        self,
        embeddings_model: EmbeddingsModel,
        vector_index: VectorIndex,
        text_max_chars: int = EMBEDDING_TEXT_MAX_CHARS,
        timeout_seconds: float = 30.0,
    ):
        self.embeddings_model = embeddings_model
        self.vector_index = vector_index
        self.text_max_chars = text_max_chars
        self.timeout_seconds = timeout_seconds

    async def embed_message(self, message: Message) -> str:
        """Embed 'message' and upsert its vector. Returns the vector id."""
        text = truncate(sanitize_text(message.text), self.text_max_chars)
        if not text:
            raise EmptyMessageText()

        vector_id = make_vector_id(message.conversation_id, message.id)
        metadata = EmbeddingMetadata(
            message_id=message.id,
            conversation_id=message.conversation_id,
            text=text,
            timestamp=message.create_timestamp,
            user_id=message.sender_id,
        )

        existing = (await self.vector_index.fetch([vector_id])).get(vector_id)
        if existing is not None and _identity(existing.metadata) != _identity(metadata):
            logger.error(f"Vector id {vector_id} already holds message {existing.metadata.message_id}")
            raise EmbeddingConflict(vector_id)

        embedding = await call_with_timeout(
            self.embeddings_model.get_embeddings(text), self.timeout_seconds, "Embedding generation"
        )
        await self.vector_index.upsert([EmbeddingRecord(id=vector_id, values=embedding[0].tolist(), metadata=metadata)])
        logger.info(f"Upserted vector {vector_id}")
        return vector_id

    async def delete_message_embedding(self, conversation_id: str, message_id: str) -> bool:
        """Best-effort removal of one message's vector."""
        vector_id = make_vector_id(conversation_id, message_id)
        try:
            await self.vector_index.delete_many([vector_id])
        except MessagingError as e:
            logger.warning(f"Could not delete vector {vector_id}: {e}")
            return False
        return True

    async def delete_conversation_embeddings(self, conversation_id: str) -> int:
        """Best-effort cleanup. Failures are logged and reported as zero deletions."""
        try:
            ids = await self.vector_index.list_ids({"conversation_id": conversation_id})
            await self.vector_index.delete_many(ids)
        except MessagingError as e:
            logger.warning(f"Could not delete embeddings of conversation {conversation_id}: {e}")
            return 0
        logger.info(f"Deleted {len(ids)} embedding(s) of conversation {conversation_id}")
        return len(ids)


def _identity(metadata: EmbeddingMetadata) -> tuple[str, str, str, int]:
    return metadata.message_id, metadata.conversation_id, metadata.user_id, metadata.timestamp
