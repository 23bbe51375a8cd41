"""
Загрузка базы знаний в векторный индекс.

Сканирует директорию со статьями (.md, .txt), режет их на чанки,
вычисляет эмбеддинги и сохраняет индекс в JSON.

Запуск:
    urman-upload-knowledge --knowledge-dir knowledge --output data/knowledge_index.json
    python -m urman_bot.knowledge.upload
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from urman_bot.logger import logger
from urman_bot.settings import settings

from .embedder import SentenceEmbedder
from .index import VectorIndex
from .loader import load_chunks


def build_index(
    knowledge_dir: Path,
    output: Path,
    embedder: Optional[SentenceEmbedder] = None,
    max_chunk_length: Optional[int] = None,
    append: bool = False,
) -> VectorIndex:
    """
    Построить индекс из статей и сохранить его.

    Args:
        knowledge_dir: Директория со статьями
        output: Путь к JSON файлу индекса
        embedder: Эмбеддер (по умолчанию модель из settings)
        max_chunk_length: Максимальная длина чанка
        append: Дописать в существующий индекс (чанки с тем же id заменяются)
    """
    embedder = embedder or SentenceEmbedder()
    max_chunk_length = max_chunk_length or settings.retriever.chunk_size

    index = VectorIndex.load(output) if append and output.exists() else VectorIndex()

    chunks = load_chunks(knowledge_dir, max_chunk_length)
    if not chunks:
        logger.warning("No knowledge documents found", directory=str(knowledge_dir))
        index.save(output)
        return index

    for source in sorted({c.source for c in chunks}):
        file_chunks = [c for c in chunks if c.source == source]
        vectors = embedder.embed_passages([c.text for c in file_chunks])
        index.upsert(file_chunks, vectors)
        logger.info("Knowledge file indexed", source=source, chunks=len(file_chunks))

    index.save(output)
    logger.info("Knowledge index saved", path=str(output), chunks=len(index))
    return index


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Upload knowledge articles into the vector index")
    parser.add_argument("--knowledge-dir", type=Path, default=Path("knowledge"),
                        help="Directory with .md/.txt articles")
    parser.add_argument("--output", type=Path, default=Path(settings.retriever.index_path),
                        help="Where to write the JSON index")
    parser.add_argument("--chunk-size", type=int, default=None,
                        help="Max chunk length in characters")
    parser.add_argument("--append", action="store_true",
                        help="Update an existing index instead of rebuilding it")
    args = parser.parse_args(argv)

    try:
        build_index(args.knowledge_dir, args.output,
                    max_chunk_length=args.chunk_size, append=args.append)
    except FileNotFoundError as e:
        logger.error("Knowledge upload failed", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
