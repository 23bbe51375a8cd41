"""
In-memory vector index over knowledge chunks.

Cosine similarity over L2-normalized vectors held in a numpy matrix.
The index is saved to / loaded from a single JSON file produced by
``urman_bot.knowledge.upload``.
"""

import json
import threading
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np

from .base import KnowledgeChunk

INDEX_FORMAT_VERSION = 1


def _normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class VectorIndex:
    """Upsert-by-id vector store with top-k cosine search."""

    def __init__(self):
        self._chunks: List[KnowledgeChunk] = []
        self._positions: Dict[str, int] = {}
        self._vectors = np.zeros((0, 0), dtype=np.float32)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def dimension(self) -> int:
        return self._vectors.shape[1] if len(self._chunks) else 0

    @property
    def chunks(self) -> List[KnowledgeChunk]:
        return list(self._chunks)

    def upsert(self, chunks: Sequence[KnowledgeChunk], vectors: np.ndarray) -> None:
        """Add chunks or replace the ones with the same id."""
        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[0] != len(chunks):
            raise ValueError(
                f"Expected {len(chunks)} vectors, got array of shape {vectors.shape}"
            )
        if len(chunks) == 0:
            return

        with self._lock:
            if len(self._chunks) and vectors.shape[1] != self._vectors.shape[1]:
                raise ValueError(
                    f"Vector dimension {vectors.shape[1]} does not match index dimension {self._vectors.shape[1]}"
                )
            vectors = _normalize(vectors)
            # Last occurrence wins for ids repeated within one batch
            new_rows: Dict[str, Tuple[KnowledgeChunk, np.ndarray]] = {}
            for chunk, vector in zip(chunks, vectors):
                position = self._positions.get(chunk.id)
                if position is not None:
                    self._chunks[position] = chunk
                    self._vectors[position] = vector
                else:
                    new_rows[chunk.id] = (chunk, vector)

            if new_rows:
                for chunk_id in new_rows:
                    self._positions[chunk_id] = len(self._chunks)
                    self._chunks.append(new_rows[chunk_id][0])
                stacked = np.vstack([vector for _, vector in new_rows.values()])
                if self._vectors.size:
                    self._vectors = np.vstack([self._vectors, stacked])
                else:
                    self._vectors = stacked

    def search(
        self,
        vector: Union[np.ndarray, Sequence[float]],
        top_k: int = 3,
        min_score: float = 0.0,
    ) -> List[Tuple[KnowledgeChunk, float]]:
        """Return up to ``top_k`` (chunk, score) pairs, best first."""
        if not self._chunks or top_k <= 0:
            return []

        query = np.asarray(vector, dtype=np.float32).reshape(-1)
        if query.shape[0] != self.dimension:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match index dimension {self.dimension}"
            )
        norm = np.linalg.norm(query)
        if norm == 0:
            return []

        scores = self._vectors @ (query / norm)
        order = np.argsort(-scores)[:top_k]
        return [
            (self._chunks[i], float(scores[i]))
            for i in order
            if scores[i] >= min_score
        ]

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": INDEX_FORMAT_VERSION,
            "dimension": self.dimension,
            "items": [
                {**chunk.to_dict(), "vector": self._vectors[i].tolist()}
                for i, chunk in enumerate(self._chunks)
            ],
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False)
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "VectorIndex":
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)

        index = cls()
        items = payload.get("items", [])
        if items:
            chunks = [KnowledgeChunk.from_dict(item) for item in items]
            vectors = np.array([item["vector"] for item in items], dtype=np.float32)
            index.upsert(chunks, vectors)
        return index
