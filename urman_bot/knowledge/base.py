"""
Структура базы знаний.

Каждый чанк (KnowledgeChunk) содержит:
- id: "{файл}-chunk-{номер}", стабильный между загрузками
- text: текст фрагмента (передаётся в LLM)
- source: имя исходного файла
- chunk_index: номер чанка в файле
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class KnowledgeChunk:
    """Один фрагмент базы знаний"""
    id: str
    text: str
    source: str = ""
    chunk_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "source": self.source,
            "chunk_index": self.chunk_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeChunk":
        return cls(
            id=data["id"],
            text=data["text"],
            source=data.get("source", ""),
            chunk_index=data.get("chunk_index", 0),
        )


@dataclass
class Snippet:
    """Найденный фрагмент с оценкой релевантности"""
    text: str
    score: float = 0.0
    source: str = ""
