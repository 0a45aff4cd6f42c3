import pytest
from fakes import EMBEDDING_DIMENSIONS, FakeClock, FakeEmbeddings, FakeLLM

from messaging_toolkit.config import Settings
from messaging_toolkit.conversation_database.archive_store import ArchiveMessageStore
from messaging_toolkit.conversation_database.controller import MessagingController
from messaging_toolkit.conversation_database.directory import ConversationDirectory
from messaging_toolkit.conversation_database.in_memory import (
    InMemoryArchiveMessageDatabase,
    InMemoryConversationDatabase,
    InMemoryLiveMessageDatabase,
    InMemoryUserStatusDatabase,
)
from messaging_toolkit.conversation_database.live_store import LiveMessageStore
from messaging_toolkit.factory import build_controller
from messaging_toolkit.vectorstores.in_memory import InMemoryVectorIndex

TRANSLATION_REPLY = '{"detectedLanguage": "en", "translatedText": "hola"}'
INSIGHT_REPLY = "Dinner is planned for Friday at 7pm."


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        archive_threshold=50,
        embedding_dimensions=EMBEDDING_DIMENSIONS,
        typing_ttl_seconds=5.0,
        similarity_threshold=0.75,
        vector_backend="memory",
    )


@pytest.fixture
def translation_llm() -> FakeLLM:
    return FakeLLM([TRANSLATION_REPLY])


@pytest.fixture
def insight_llm() -> FakeLLM:
    return FakeLLM([INSIGHT_REPLY])


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex(dimensions=EMBEDDING_DIMENSIONS)


@pytest.fixture
def controller(settings, clock, translation_llm, insight_llm, embeddings, vector_index) -> MessagingController:
    return build_controller(
        settings,
        translation_llm=translation_llm,
        insight_llm=insight_llm,
        embeddings_model=embeddings,
        vector_index=vector_index,
        clock=clock,
        auto_embed=False,
    )


@pytest.fixture
def live_db() -> InMemoryLiveMessageDatabase:
    return InMemoryLiveMessageDatabase()


@pytest.fixture
def archive_db() -> InMemoryArchiveMessageDatabase:
    return InMemoryArchiveMessageDatabase()


@pytest.fixture
def directory(live_db, archive_db, clock) -> ConversationDirectory:
    return ConversationDirectory(
        InMemoryConversationDatabase(), InMemoryUserStatusDatabase(), live_db, archive_db, clock=clock
    )


@pytest.fixture
def live_store(live_db, directory, clock) -> LiveMessageStore:
    return LiveMessageStore(live_db, directory, typing_ttl_seconds=5.0, clock=clock)


@pytest.fixture
def archive_store(archive_db) -> ArchiveMessageStore:
    return ArchiveMessageStore(archive_db)

