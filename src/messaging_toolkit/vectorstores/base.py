"""
Vector index abstractions and embedding record data models.

'EmbeddingMetadata' is what the index stores next to each vector: enough to
show a search hit without a round-trip to the message stores. 'EmbeddingRecord'
adds the vector id and the values, representing a message as it exists in the
index. 'VectorMatch' is returned from a similarity query with its score.

One vector per message, keyed by 'make_vector_id'. 'upsert' is idempotent on
the vector id.

Concrete implementations: 'InMemoryVectorIndex', 'ChromaDBVectorIndex'.
"""

from abc import ABC, abstractmethod
from typing import Any

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel

from messaging_toolkit.errors import ValidationError


def make_vector_id(conversation_id: str, message_id: str) -> str:
    return f"{conversation_id}_{message_id}"


class EmbeddingMetadata(BaseModel):
    message_id: str
    conversation_id: str
    text: str
    timestamp: int
    user_id: str


class EmbeddingRecord(BaseModel):
    """A message embedding as stored in the index."""

    id: str
    values: list[float]
    metadata: EmbeddingMetadata


class VectorMatch(BaseModel):
    """A record returned from a similarity query. 'score' is cosine similarity, higher is closer."""

    id: str
    score: float
    metadata: EmbeddingMetadata


class VectorIndex(ABC):
    """
    Abstract base class for vector index backends.

    Attributes:
        dimensions: Length every stored and queried vector must have.

    'filters' are exact-match constraints on metadata fields, e.g.
    '{"conversation_id": "c1"}'.
    """

    dimensions: int

    @abstractmethod
    async def upsert(self, records: list[EmbeddingRecord]) -> None:
        """Insert or replace records by id."""
        pass

    @abstractmethod
    async def query(
        self, vector: NDArray[np.float64], top_k: int, filters: dict[str, Any] | None = None
    ) -> list[VectorMatch]:
        """Return up to 'top_k' nearest records, best first."""
        pass

    @abstractmethod
    async def fetch(self, ids: list[str]) -> dict[str, EmbeddingRecord]:
        pass

    @abstractmethod
    async def delete_many(self, ids: list[str]) -> None:
        pass

    @abstractmethod
    async def list_ids(self, filters: dict[str, Any] | None = None) -> list[str]:
        pass

    def _check_dimensions(self, values: list[float] | NDArray[np.float64]) -> None:
        if len(values) != self.dimensions:
            raise ValidationError(f"Expected a vector of dimension {self.dimensions}, got {len(values)}")
