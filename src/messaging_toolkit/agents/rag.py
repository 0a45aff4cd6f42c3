"""
Retrieval-Augmented Generation over a conversation's history.

'ConversationRAG' embeds the question, asks the vector index for twice the
requested number of neighbours restricted to one conversation, drops anything
under the similarity threshold and keeps the best 'top_k'. The surviving
messages (text and timestamp) become the context of a single insight call.

An empty match set is not an error: the answer is a fixed "nothing relevant"
message with no supporting messages. Any other failure on the way (embedding,
index, generation) is reported as 'InsightGenerationFailed', which keeps the
retry semantics of the underlying error.
"""

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.config import DEFAULT_SIMILARITY_THRESHOLD, DEFAULT_TOP_K
from messaging_toolkit.embeddings.base import EmbeddingsModel
from messaging_toolkit.errors import InsightGenerationFailed, InvalidTopK, MessagingError, ValidationError
from messaging_toolkit.generation.text_generator import ContextMessage, TextGenerator
from messaging_toolkit.utils.model_errors import call_with_timeout
from messaging_toolkit.utils.text import sanitize_text
from messaging_toolkit.vectorstores.base import VectorIndex

NO_RELEVANT_HISTORY_ANSWER = "I couldn't find any relevant messages to answer your question."


class SupportingMessage(BaseModel):
    message_id: str
    conversation_id: str
    text: str
    timestamp: int
    sender_id: str
    score: float


class InsightAnswer(BaseModel):
    answer_text: str
    supporting_messages: list[SupportingMessage]


class ConversationRAG:
    """
    Attributes:
        similarity_threshold: Minimum cosine similarity for a message to count as relevant.
        default_top_k: Number of messages used when the caller does not pass 'top_k'.
    """

    def __init__(
        self,
        embeddings_model: EmbeddingsModel,
        vector_index: VectorIndex,
        text_generator: TextGenerator,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        default_top_k: int = DEFAULT_TOP_K,
        timeout_seconds: float = 30.0,
    ):
        self.embeddings_model = embeddings_model
        self.vector_index = vector_index
        self.text_generator = text_generator
        self.similarity_threshold = similarity_threshold
        self.default_top_k = default_top_k
        self.timeout_seconds = timeout_seconds

    async def search(self, conversation_id: str, query: str, top_k: int | None = None) -> list[SupportingMessage]:
        top_k = self.default_top_k if top_k is None else top_k
        if top_k <= 0:
            raise InvalidTopK(top_k)
        query = sanitize_text(query)
        if not query:
            raise ValidationError("Query must not be empty")

        embedding = await call_with_timeout(
            self.embeddings_model.get_embeddings(query), self.timeout_seconds, "Query embedding"
        )
        matches = await self.vector_index.query(embedding[0], top_k * 2, {"conversation_id": conversation_id})

        relevant = [
            match
            for match in matches
            if match.score >= self.similarity_threshold and match.metadata.conversation_id == conversation_id
        ]
        relevant.sort(key=lambda match: (-match.score, match.id))
        logger.debug(
            f"Search in {conversation_id}: {len(matches)} candidate(s), {len(relevant)} above {self.similarity_threshold}"
        )
        return [
            SupportingMessage(
                message_id=match.metadata.message_id,
                conversation_id=match.metadata.conversation_id,
                text=match.metadata.text,
                timestamp=match.metadata.timestamp,
                sender_id=match.metadata.user_id,
                score=match.score,
            )
            for match in relevant[:top_k]
        ]

    async def answer(self, conversation_id: str, query: str, top_k: int | None = None) -> InsightAnswer:
        try:
            supporting = await self.search(conversation_id, query, top_k)
            if not supporting:
                logger.info(f"No relevant history in {conversation_id} for insight query")
                return InsightAnswer(answer_text=NO_RELEVANT_HISTORY_ANSWER, supporting_messages=[])

            answer_text = await self.text_generator.generate_insight(
                query, [ContextMessage(text=message.text, timestamp=message.timestamp) for message in supporting]
            )
        except (ValidationError, InsightGenerationFailed):
            raise
        except MessagingError as e:
            logger.warning(f"Insight generation for {conversation_id} failed: {e}")
            raise InsightGenerationFailed(f"Insight generation failed: {e}", cause=e) from e

        return InsightAnswer(answer_text=answer_text, supporting_messages=supporting)
