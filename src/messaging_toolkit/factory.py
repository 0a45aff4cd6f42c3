"""
Composition root.

Builds a fully wired 'MessagingController' from 'Settings'. Storage defaults
to the in-memory repositories; the model backends default to OpenAI and read
'OPENAI_API_KEY' through 'get_secret' only when they are actually built, so a
caller that injects its own models never needs a key.

Usage:
    controller = build_controller(get_settings())
"""

from collections.abc import Callable

from loguru import logger

from messaging_toolkit.agents.rag import ConversationRAG
from messaging_toolkit.config import Settings, get_secret
from messaging_toolkit.conversation_database.archival import ArchivalCoordinator
from messaging_toolkit.conversation_database.archive_store import ArchiveMessageStore
from messaging_toolkit.conversation_database.controller import MessagingController
from messaging_toolkit.conversation_database.directory import ConversationDirectory
from messaging_toolkit.conversation_database.in_memory import (
    InMemoryArchiveMessageDatabase,
    InMemoryConversationDatabase,
    InMemoryLiveMessageDatabase,
    InMemoryMentionDatabase,
    InMemoryUserStatusDatabase,
)
from messaging_toolkit.conversation_database.live_store import LiveMessageStore
from messaging_toolkit.embeddings.base import EmbeddingsModel
from messaging_toolkit.embeddings.indexer import MessageEmbedder
from messaging_toolkit.embeddings.openai import OpenAIEmbeddings
from messaging_toolkit.errors import InsightGenerationFailed, TranslationFailed
from messaging_toolkit.events import EventPublisher, InMemoryEventPublisher
from messaging_toolkit.generation.text_generator import TextGenerator
from messaging_toolkit.generation.translation import InMemoryTranslationCache, TranslationCache, TranslationService
from messaging_toolkit.llms.base import LLM
from messaging_toolkit.llms.openai import OpenAILLM
from messaging_toolkit.log import configure_logging
from messaging_toolkit.utils.rate_limit import RateLimiter
from messaging_toolkit.utils.time import get_current_timestamp
from messaging_toolkit.vectorstores.base import VectorIndex
from messaging_toolkit.vectorstores.chromadb import ChromaDBVectorIndex
from messaging_toolkit.vectorstores.in_memory import InMemoryVectorIndex


def build_llm(settings: Settings, purpose: str) -> LLM:
    """Instantiate the chat model for 'translation' or 'insights'."""
    match purpose:
        case "translation":
            logger.info(f"Translation LLM: OpenAI ({settings.chat_model})")
            return OpenAILLM(
                model_name=settings.chat_model,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                response_format={"type": "json_object"},
                openai_api_key=get_secret("OPENAI_API_KEY"),
                timeout=settings.model_timeout_seconds,
                failure=TranslationFailed,
            )
        case "insights":
            logger.info(f"Insight LLM: OpenAI ({settings.chat_model})")
            return OpenAILLM(
                model_name=settings.chat_model,
                temperature=settings.insight_temperature,
                max_tokens=settings.insight_max_tokens,
                openai_api_key=get_secret("OPENAI_API_KEY"),
                timeout=settings.model_timeout_seconds,
                failure=InsightGenerationFailed,
            )
        case _:
            raise ValueError(f"Unsupported LLM purpose {purpose!r}. Choose 'translation' or 'insights'.")


def build_embeddings_model(settings: Settings) -> EmbeddingsModel:
    logger.info(f"Embeddings: OpenAI ({settings.embedding_model}, {settings.embedding_dimensions} dims)")
    return OpenAIEmbeddings(
        model_name=settings.embedding_model,
        embedding_size=settings.embedding_dimensions,
        openai_api_key=get_secret("OPENAI_API_KEY"),
        timeout=settings.model_timeout_seconds,
    )


def build_vector_index(settings: Settings) -> VectorIndex:
    match settings.vector_backend:
        case "memory":
            return InMemoryVectorIndex(dimensions=settings.embedding_dimensions)
        case "chromadb":
            return ChromaDBVectorIndex(
                db_path=settings.chroma_path,
                collection_name=settings.chroma_collection,
                dimensions=settings.embedding_dimensions,
            )
        case _:
            raise ValueError(f"Unsupported vector backend {settings.vector_backend!r}. Choose 'memory' or 'chromadb'.")


def build_controller(
    settings: Settings,
    translation_llm: LLM | None = None,
    insight_llm: LLM | None = None,
    embeddings_model: EmbeddingsModel | None = None,
    vector_index: VectorIndex | None = None,
    translation_cache: TranslationCache | None = None,
    event_publisher: EventPublisher | None = None,
    clock: Callable[[], int] = get_current_timestamp,
    auto_embed: bool = True,
) -> MessagingController:
    configure_logging(settings.log_level)

    live_db = InMemoryLiveMessageDatabase()
    archive_db = InMemoryArchiveMessageDatabase()
    directory = ConversationDirectory(
        conversation_db=InMemoryConversationDatabase(),
        status_db=InMemoryUserStatusDatabase(),
        live_db=live_db,
        archive_db=archive_db,
        clock=clock,
    )
    live_store = LiveMessageStore(
        live_db,
        directory,
        typing_ttl_seconds=settings.typing_ttl_seconds,
        message_text_max_chars=settings.message_text_max_chars,
        clock=clock,
    )
    archive_store = ArchiveMessageStore(archive_db)
    coordinator = ArchivalCoordinator(live_store, archive_store, threshold=settings.archive_threshold)

    embeddings_model = embeddings_model or build_embeddings_model(settings)
    vector_index = vector_index or build_vector_index(settings)
    text_generator = TextGenerator(
        translation_llm=translation_llm or build_llm(settings, "translation"),
        insight_llm=insight_llm or build_llm(settings, "insights"),
        timeout_seconds=settings.model_timeout_seconds,
    )
    rate_limiter = RateLimiter(
        limits={
            "translation": settings.translation_per_minute,
            "embedding": settings.embedding_per_minute,
            "insights": settings.insights_per_minute,
        },
        window_seconds=settings.rate_limit_window_seconds,
    )

    return MessagingController(
        directory=directory,
        live_store=live_store,
        archive_store=archive_store,
        coordinator=coordinator,
        mention_db=InMemoryMentionDatabase(),
        embedder=MessageEmbedder(
            embeddings_model,
            vector_index,
            text_max_chars=settings.embedding_text_max_chars,
            timeout_seconds=settings.model_timeout_seconds,
        ),
        rag=ConversationRAG(
            embeddings_model,
            vector_index,
            text_generator,
            similarity_threshold=settings.similarity_threshold,
            default_top_k=settings.default_top_k,
            timeout_seconds=settings.model_timeout_seconds,
        ),
        translation_service=TranslationService(
            text_generator,
            translation_cache or InMemoryTranslationCache(),
            rate_limiter,
            cache_ttl_seconds=settings.translation_cache_ttl_seconds,
            clock=clock,
        ),
        rate_limiter=rate_limiter,
        event_publisher=event_publisher or InMemoryEventPublisher(),
        auto_embed=auto_embed,
    )
