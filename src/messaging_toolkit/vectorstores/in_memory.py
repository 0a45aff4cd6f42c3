"""In-process vector index using brute-force cosine similarity over numpy arrays."""

from typing import Any

import numpy as np
from numpy.typing import NDArray

from messaging_toolkit.vectorstores.base import EmbeddingRecord, VectorIndex, VectorMatch


class InMemoryVectorIndex(VectorIndex):
    def __init__(self, dimensions: int):
        self.dimensions = dimensions
        self._records: dict[str, EmbeddingRecord] = {}

    async def upsert(self, records: list[EmbeddingRecord]) -> None:
        for record in records:
            self._check_dimensions(record.values)
        for record in records:
            self._records[record.id] = record.model_copy(deep=True)

    async def query(
        self, vector: NDArray[np.float64], top_k: int, filters: dict[str, Any] | None = None
    ) -> list[VectorMatch]:
        self._check_dimensions(vector)
        candidates = [record for record in self._records.values() if _matches(record, filters)]
        if not candidates or top_k <= 0:
            return []

        matrix = np.array([record.values for record in candidates], dtype=np.float64)
        query = np.asarray(vector, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        scores = np.divide(matrix @ query, norms, out=np.zeros(len(candidates)), where=norms > 0)

        order = sorted(range(len(candidates)), key=lambda i: (-scores[i], candidates[i].id))[:top_k]
        return [
            VectorMatch(id=candidates[i].id, score=float(scores[i]), metadata=candidates[i].metadata.model_copy())
            for i in order
        ]

    async def fetch(self, ids: list[str]) -> dict[str, EmbeddingRecord]:
        return {id: self._records[id].model_copy(deep=True) for id in ids if id in self._records}

    async def delete_many(self, ids: list[str]) -> None:
        for id in ids:
            self._records.pop(id, None)

    async def list_ids(self, filters: dict[str, Any] | None = None) -> list[str]:
        return sorted(record.id for record in self._records.values() if _matches(record, filters))


def _matches(record: EmbeddingRecord, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    metadata = record.metadata.model_dump()
    return all(metadata.get(key) == value for key, value in filters.items())
