"""
Модуль базы знаний URMAN.

Использование:
    from urman_bot.knowledge import get_retriever

    snippets = get_retriever().query("Сколько стоит межевание участка?")
"""

from .base import KnowledgeChunk, Snippet
from .chunking import chunk_text
from .embedder import SentenceEmbedder
from .index import VectorIndex
from .loader import load_chunks
from .retriever import (
    KnowledgeRetriever,
    RetrievalError,
    get_retriever,
    load_index,
    reset_retriever,
)

__all__ = [
    "KnowledgeChunk",
    "Snippet",
    "chunk_text",
    "SentenceEmbedder",
    "VectorIndex",
    "load_chunks",
    "KnowledgeRetriever",
    "RetrievalError",
    "get_retriever",
    "load_index",
    "reset_retriever",
]
