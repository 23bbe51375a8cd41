"""Split knowledge documents into chunks for embedding."""

import re
from typing import List

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+')


def _split_long_paragraph(paragraph: str, max_chunk_length: int) -> List[str]:
    """Pack sentences of an oversized paragraph into chunks."""
    chunks = []
    current = ""
    for sentence in SENTENCE_BOUNDARY.split(paragraph):
        if len(current) + len(sentence) + (1 if current else 0) <= max_chunk_length:
            current = f"{current} {sentence}" if current else sentence
        else:
            if current:
                chunks.append(current)
            current = sentence
    if current:
        chunks.append(current)
    return chunks


def chunk_text(text: str, max_chunk_length: int = 2500) -> List[str]:
    """
    Split text into chunks of at most ``max_chunk_length`` characters.

    Paragraphs (blank-line separated) are packed together while they fit.
    A paragraph longer than the limit is flushed on its own and split on
    sentence boundaries. A single sentence longer than the limit is kept
    whole.
    """
    chunks: List[str] = []
    current = ""

    for paragraph in text.split(PARAGRAPH_SEPARATOR):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        if len(paragraph) > max_chunk_length:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_long_paragraph(paragraph, max_chunk_length))
        elif current and len(current) + len(PARAGRAPH_SEPARATOR) + len(paragraph) > max_chunk_length:
            chunks.append(current)
            current = paragraph
        else:
            current = f"{current}{PARAGRAPH_SEPARATOR}{paragraph}" if current else paragraph

    if current:
        chunks.append(current)
    return chunks
