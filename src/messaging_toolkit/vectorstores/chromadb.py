"""
ChromaDB-backed vector index.

Uses a persistent local client and a single collection configured for cosine
distance; scores are reported as similarity ('1 - distance'). The chromadb
client is synchronous, so every call runs in a worker thread to keep the event
loop free for other conversations. Any backend failure is surfaced as
'StoreUnavailable'.
"""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import chromadb
import numpy as np
from loguru import logger
from numpy.typing import NDArray

from messaging_toolkit.errors import StoreUnavailable
from messaging_toolkit.vectorstores.base import EmbeddingMetadata, EmbeddingRecord, VectorIndex, VectorMatch

T = TypeVar("T")


class ChromaDBVectorIndex(VectorIndex):
    def __init__(self, db_path: str, collection_name: str, dimensions: int):
        self.dimensions = dimensions
        self.client = chromadb.PersistentClient(path=db_path)
        self.collection = self.client.get_or_create_collection(
            name=collection_name, metadata={"hnsw:space": "cosine"}
        )
        logger.info(f"Opened ChromaDB collection '{collection_name}' at {db_path}")

    async def upsert(self, records: list[EmbeddingRecord]) -> None:
        if not records:
            return
        for record in records:
            self._check_dimensions(record.values)
        await self._run(
            lambda: self.collection.upsert(
                ids=[record.id for record in records],
                embeddings=[record.values for record in records],
                metadatas=[record.metadata.model_dump() for record in records],
                documents=[record.metadata.text for record in records],
            )
        )

    async def query(
        self, vector: NDArray[np.float64], top_k: int, filters: dict[str, Any] | None = None
    ) -> list[VectorMatch]:
        self._check_dimensions(vector)
        count = await self._run(self.collection.count)
        n_results = min(top_k, count)
        if n_results <= 0:
            return []

        results = await self._run(
            lambda: self.collection.query(
                query_embeddings=[np.asarray(vector, dtype=np.float64).tolist()],
                n_results=n_results,
                where=_where(filters),
                include=["metadatas", "distances"],
            )
        )
        ids = results["ids"][0]
        metadatas = results["metadatas"][0]
        distances = results["distances"][0]
        return [
            VectorMatch(id=id, score=1.0 - float(distance), metadata=EmbeddingMetadata(**metadata))
            for id, metadata, distance in zip(ids, metadatas, distances)
        ]

    async def fetch(self, ids: list[str]) -> dict[str, EmbeddingRecord]:
        if not ids:
            return {}
        results = await self._run(lambda: self.collection.get(ids=ids, include=["embeddings", "metadatas"]))
        return {
            id: EmbeddingRecord(
                id=id,
                values=[float(value) for value in embedding],
                metadata=EmbeddingMetadata(**metadata),
            )
            for id, embedding, metadata in zip(results["ids"], results["embeddings"], results["metadatas"])
        }

    async def delete_many(self, ids: list[str]) -> None:
        if ids:
            await self._run(lambda: self.collection.delete(ids=ids))

    async def list_ids(self, filters: dict[str, Any] | None = None) -> list[str]:
        results = await self._run(lambda: self.collection.get(where=_where(filters), include=[]))
        return sorted(results["ids"])

    async def _run(self, call: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(call)
        except Exception as e:
            raise StoreUnavailable(f"ChromaDB call failed: {e}") from e


def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}
