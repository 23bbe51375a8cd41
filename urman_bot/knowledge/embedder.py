"""
Text embeddings using sentence-transformers.

The model is loaded lazily on first use. E5-family models expect "query: "
and "passage: " prefixes; other models can be used with empty prefixes.
"""

import threading
from typing import List, Optional, Sequence

import numpy as np

from urman_bot.logger import logger
from urman_bot.settings import settings


class SentenceEmbedder:
    """Generate normalized embeddings for queries and knowledge passages."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        query_prefix: str = "query: ",
        passage_prefix: str = "passage: ",
        batch_size: int = 32,
    ):
        self.model_name = model_name or settings.retriever.embedder_model
        self.query_prefix = query_prefix
        self.passage_prefix = passage_prefix
        self.batch_size = batch_size
        self._model = None
        self._lock = threading.Lock()

    def _ensure_model(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading embedding model", model=self.model_name)
                self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, texts: List[str]) -> np.ndarray:
        model = self._ensure_model()
        vectors = model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return np.asarray(vectors, dtype=np.float32)

    def embed(self, text: str) -> np.ndarray:
        """Embed a search query."""
        return self._encode([f"{self.query_prefix}{text}"])[0]

    def embed_passages(self, texts: Sequence[str]) -> np.ndarray:
        """Embed knowledge chunks, one row per text."""
        if not texts:
            return np.zeros((0, 0), dtype=np.float32)
        return self._encode([f"{self.passage_prefix}{t}" for t in texts])
