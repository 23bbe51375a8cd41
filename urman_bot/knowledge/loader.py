"""
Загрузчик документов базы знаний.

Использование:
    from urman_bot.knowledge.loader import load_chunks
    chunks = load_chunks(Path("knowledge"))
"""

from pathlib import Path
from typing import Iterator, List, Tuple

from .base import KnowledgeChunk
from .chunking import chunk_text

SUPPORTED_SUFFIXES = {".md", ".txt"}


def iter_documents(directory: Path) -> Iterator[Tuple[str, str]]:
    """(имя файла, текст) для каждой статьи в директории, по алфавиту"""
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.suffix.lower() in SUPPORTED_SUFFIXES:
            yield path.name, path.read_text(encoding="utf-8")


def load_chunks(directory: Path = None, max_chunk_length: int = 2500) -> List[KnowledgeChunk]:
    """
    Разбить все статьи директории на чанки.

    Returns:
        Список KnowledgeChunk с id вида "{файл}-chunk-{номер}"
    """
    directory = directory or Path.cwd() / "knowledge"
    if not directory.is_dir():
        raise FileNotFoundError(f"Директория базы знаний не найдена: {directory}")

    chunks = []
    for filename, content in iter_documents(directory):
        for i, text in enumerate(chunk_text(content, max_chunk_length)):
            chunks.append(KnowledgeChunk(
                id=f"{filename}-chunk-{i}",
                text=text,
                source=filename,
                chunk_index=i,
            ))
    return chunks
