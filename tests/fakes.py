"""Deterministic stand-ins for the external collaborators used across the test-suite."""

import asyncio
import zlib

import numpy as np
from numpy.typing import NDArray

from messaging_toolkit.conversation_database.data_models.conversation import Conversation, ConversationType
from messaging_toolkit.conversation_database.data_models.message import Message
from messaging_toolkit.conversation_database.directory import ConversationDirectory
from messaging_toolkit.conversation_database.in_memory import (
    InMemoryArchiveMessageDatabase,
    InMemoryLiveMessageDatabase,
)
from messaging_toolkit.embeddings.base import EmbeddingsModel
from messaging_toolkit.errors import StoreUnavailable
from messaging_toolkit.llms.base import LLM, LLMMessage, Roles

EMBEDDING_DIMENSIONS = 8


class FakeClock:
    """Millisecond clock that advances by 'tick' on every read, so timestamps are unique and ordered."""

    def __init__(self, start: int = 1_700_000_000_000, tick: int = 1):
        self.now = start
        self.tick = tick

    def __call__(self) -> int:
        self.now += self.tick
        return self.now

    def advance(self, milliseconds: int) -> None:
        self.now += milliseconds


class FakeEmbeddings(EmbeddingsModel):
    """
    Bag-of-words hashing embeddings. Texts listed in 'vectors' get that exact
    vector, which lets tests pin similarity scores.
    When 'gate' is set, calls block until the event fires.
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimensions: int = EMBEDDING_DIMENSIONS):
        self.model_name = "fake-embeddings"
        self.embedding_size = dimensions
        self.vectors = vectors or {}
        self.calls: list[list[str]] = []
        self.fail_with: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def get_embeddings(self, texts: str | list[str]) -> NDArray[np.float64]:
        if isinstance(texts, str):
            texts = [texts]
        self.calls.append(texts)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return np.array([self._embed(text) for text in texts], dtype=np.float64)

    def _embed(self, text: str) -> list[float]:
        if text in self.vectors:
            return self.vectors[text]
        vector = [0.0] * self.embedding_size
        for word in text.lower().split():
            vector[zlib.crc32(word.encode()) % self.embedding_size] += 1.0
        return vector


class FakeLLM(LLM):
    """Replies with the scripted 'responses' in order; the last one repeats."""

    def __init__(self, responses: list[str] | None = None, delay: float = 0.0):
        self.responses = responses or [""]
        self.delay = delay
        self.calls: list[list[LLMMessage]] = []
        self.fail_with: Exception | None = None

    async def generate(self, conversation: list[LLMMessage]) -> LLMMessage:
        self.calls.append(conversation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        return LLMMessage(role=Roles.ASSISTANT, content=self.responses[index])


class FlakyArchiveDatabase(InMemoryArchiveMessageDatabase):
    """Fails the next 'failures' inserts with 'StoreUnavailable'."""

    def __init__(self, failures: int = 0):
        super().__init__()
        self.failures = failures
        self.insert_calls = 0

    async def insert_messages(self, conversation_id: str, messages: list[Message]) -> None:
        self.insert_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailable("archive offline")
        await super().insert_messages(conversation_id, messages)


class FlakyLiveDatabase(InMemoryLiveMessageDatabase):
    """Fails the next 'delete_failures' deletes and 'create_failures' inserts with 'StoreUnavailable'."""

    def __init__(self, delete_failures: int = 0, create_failures: int = 0):
        super().__init__()
        self.delete_failures = delete_failures
        self.create_failures = create_failures

    async def create_message(self, message: Message) -> Message:
        if self.create_failures > 0:
            self.create_failures -= 1
            raise StoreUnavailable("live store offline")
        return await super().create_message(message)

    async def delete_messages(self, conversation_id: str, message_ids: list[str]) -> int:
        if self.delete_failures > 0:
            self.delete_failures -= 1
            raise StoreUnavailable("live store offline")
        return await super().delete_messages(conversation_id, message_ids)


async def create_direct(directory: ConversationDirectory, first: str = "alice", second: str = "bob") -> Conversation:
    return await directory.create_conversation(ConversationType.DIRECT, [first, second], created_by=first)


async def create_group(
    directory: ConversationDirectory, members: tuple[str, ...] = ("alice", "bob", "carol"), name: str = "Friends"
) -> Conversation:
    return await directory.create_conversation(ConversationType.GROUP, list(members), created_by=members[0], name=name)


def make_message(
    conversation_id: str, message_id: str, timestamp: int, text: str | None = None, sender_id: str = "alice"
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        sender_name=sender_id.title(),
        text=text if text is not None else f"message {message_id}",
        create_timestamp=timestamp,
    )
