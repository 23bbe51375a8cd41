"""
Knowledge Retriever: запрос → до 3 релевантных фрагментов.

Этапы:
1. Эмбеддинг запроса (SentenceEmbedder)
2. Cosine-поиск по VectorIndex
3. Отсев фрагментов ниже min_score

Любой сбой эмбеддера или индекса поднимается как RetrievalError;
вызывающий код трактует его как «контекста нет».
"""

import threading
import time
from pathlib import Path
from typing import List, Optional

from urman_bot.logger import logger
from urman_bot.settings import settings

from .base import Snippet
from .embedder import SentenceEmbedder
from .index import VectorIndex

MAX_SNIPPETS = 3


class RetrievalError(Exception):
    """Embedding or vector search failure."""


class KnowledgeRetriever:
    """Поиск фрагментов базы знаний по смыслу запроса."""

    def __init__(
        self,
        index: VectorIndex,
        embedder: Optional[SentenceEmbedder] = None,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
    ):
        """
        Args:
            index: Векторный индекс базы знаний
            embedder: Эмбеддер запросов (по умолчанию модель из settings)
            top_k: Сколько фрагментов вернуть (не больше 3)
            min_score: Минимальный cosine score фрагмента
        """
        self.index = index
        self.embedder = embedder or SentenceEmbedder()
        top_k = top_k if top_k is not None else settings.retriever.top_k
        self.top_k = max(0, min(top_k, MAX_SNIPPETS))
        self.min_score = min_score if min_score is not None else settings.retriever.min_score

    def query(self, text: str) -> List[Snippet]:
        """
        Найти фрагменты для запроса.

        Returns:
            До top_k фрагментов по убыванию релевантности; пустой список
            если запрос пустой, индекс пуст или ничего не прошло порог.

        Raises:
            RetrievalError: ошибка эмбеддинга или поиска
        """
        if not text or not text.strip() or len(self.index) == 0:
            return []

        start = time.perf_counter()
        try:
            vector = self.embedder.embed(text)
            matches = self.index.search(vector, top_k=self.top_k, min_score=self.min_score)
        except Exception as e:
            raise RetrievalError(str(e)) from e

        if settings.get_nested("logging.log_retriever_results", False):
            logger.debug(
                "Retriever results",
                matches=[(chunk.id, round(score, 3)) for chunk, score in matches],
            )
        logger.metric(
            "retrieval_time_ms",
            round((time.perf_counter() - start) * 1000, 1),
            found=len(matches),
        )
        return [
            Snippet(text=chunk.text, score=score, source=chunk.source)
            for chunk, score in matches
        ]


# =============================================================================
# Singleton
# =============================================================================

_retriever: Optional[KnowledgeRetriever] = None
_retriever_lock = threading.Lock()


def load_index(path: Optional[str] = None) -> VectorIndex:
    """Загрузить индекс; отсутствующий файл даёт пустой индекс."""
    path = Path(path or settings.retriever.index_path)
    if not path.exists():
        logger.warning("Knowledge index not found, retrieval disabled", path=str(path))
        return VectorIndex()
    index = VectorIndex.load(path)
    logger.info("Knowledge index loaded", path=str(path), chunks=len(index))
    return index


def get_retriever() -> KnowledgeRetriever:
    """Получить глобальный retriever (ленивая загрузка индекса)"""
    global _retriever
    with _retriever_lock:
        if _retriever is None:
            _retriever = KnowledgeRetriever(load_index())
        return _retriever


def reset_retriever() -> None:
    global _retriever
    with _retriever_lock:
        _retriever = None
