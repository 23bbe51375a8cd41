"""
Response Generator: retrieval-then-generate.

Пайплайн одного ответа:
1. Фрагменты базы знаний по тексту пользователя (до 3)
2. Сводка собранных данных (стадия + заполненные поля)
3. Системная инструкция: персона, сводка, правила поведения
4. Последние N реплик истории + финальная реплика пользователя с контекстом
5. Один вызов LLM; при GenerationError фиксированное извинение,
   состояние не меняется
6. Если в ответе нет вопроса и диалог не завершён, добавляется резервный вопрос стадии
7. Последний вопрос ответа сохраняется в state.last_question
8. Реплики пользователя и ассистента добавляются в историю (не более 10)
"""

import re
import time
from dataclasses import dataclass, field
from typing import List, Optional

from urman_bot.knowledge import RetrievalError, Snippet
from urman_bot.llm import GenerationError
from urman_bot.logger import logger
from urman_bot.settings import settings
from urman_bot.stages import StageMachine
from urman_bot.state import ConversationState, Role, Turn
from urman_bot.yaml_config.constants import (
    APOLOGY_TEXT,
    BEHAVIOR_RULES,
    FIELD_LABELS,
    PERSONA_TEXT,
)

# Кратчайший отрезок без терминальных знаков, заканчивающийся . ! или ?
SENTENCE_PATTERN = re.compile(r'[^.!?]+[.!?]')

CONTEXT_HEADER = "Контекст из базы знаний:"


@dataclass
class GenerationResult:
    """Ответ генератора для одного хода."""
    text: str
    ok: bool = True
    snippets: List[Snippet] = field(default_factory=list)


def build_context_block(snippets: List[Snippet]) -> str:
    """Фрагменты в формате 'Фрагмент N:\\n<текст>' через пустую строку."""
    block = ""
    for i, snippet in enumerate(snippets, start=1):
        if snippet.text:
            block += f"Фрагмент {i}:\n{snippet.text}\n\n"
    return block


def extract_last_question(text: str) -> Optional[str]:
    """Последнее предложение ответа, заканчивающееся '?'."""
    questions = [s.strip() for s in SENTENCE_PATTERN.findall(text or "") if s.endswith("?")]
    return questions[-1] if questions else None


class ResponseGenerator:
    """Генерация ответа с контекстом из базы знаний."""

    def __init__(
        self,
        llm,
        retriever,
        stage_machine: Optional[StageMachine] = None,
        history_window: Optional[int] = None,
    ):
        """
        Args:
            llm: Клиент с методом complete(system_prompt, turns) -> str
            retriever: Объект с методом query(text) -> List[Snippet]
            stage_machine: Источник резервных вопросов стадий
            history_window: Сколько последних реплик истории отправлять в LLM
        """
        self.llm = llm
        self.retriever = retriever
        self.stage_machine = stage_machine or StageMachine()
        self.history_window = (
            settings.generator.history_window if history_window is None else history_window
        )

    # =========================================================================
    # PROMPT
    # =========================================================================

    def retrieve(self, utterance: str) -> List[Snippet]:
        try:
            return list(self.retriever.query(utterance))[:3]
        except RetrievalError as e:
            logger.warning("Retrieval failed, answering without context", error=str(e)[:100])
            return []

    def build_state_summary(self, state: ConversationState) -> str:
        lines = [f"Стадия: {self.stage_machine.label(state.stage)} ({state.stage.value})"]
        for name, value in state.collected_fields.filled().items():
            lines.append(f"{FIELD_LABELS.get(name, name)}: {value}")
        return "\n".join(lines)

    def build_system_prompt(self, state: ConversationState) -> str:
        rules = "\n".join(f"- {rule}" for rule in BEHAVIOR_RULES)
        return (
            f"{PERSONA_TEXT}\n\n"
            f"Собранные данные:\n{self.build_state_summary(state)}\n\n"
            f"Правила:\n{rules}"
        )

    def build_turns(
        self,
        state: ConversationState,
        utterance: str,
        context_block: str,
    ) -> List[Turn]:
        turns = state.recent_history(self.history_window)
        content = f"{CONTEXT_HEADER}\n{context_block}\n\nВопрос пользователя: {utterance}"
        turns.append(Turn(Role.USER, content))
        return turns

    # =========================================================================
    # GENERATION
    # =========================================================================

    def generate(self, state: ConversationState, utterance: str) -> GenerationResult:
        """
        Сгенерировать ответ и записать обмен репликами в state.history.

        При ошибке генерации state не изменяется, ok=False.
        """
        snippets = self.retrieve(utterance)
        system_prompt = self.build_system_prompt(state)
        turns = self.build_turns(state, utterance, build_context_block(snippets))

        if settings.get_nested("logging.log_prompts", False):
            logger.debug("Generation prompt", system_prompt=system_prompt, turns=len(turns))

        start = time.perf_counter()
        try:
            text = (self.llm.complete(system_prompt, turns) or "").strip()
            if not text:
                raise GenerationError("empty completion")
        except GenerationError as e:
            logger.error("Generation failed, replying with apology", error=str(e)[:100])
            return GenerationResult(APOLOGY_TEXT, ok=False, snippets=snippets)

        logger.metric(
            "generation_time_ms",
            round((time.perf_counter() - start) * 1000, 1),
            stage=state.stage.value,
        )

        question = self.stage_machine.fallback_question(state.stage)
        if question and "?" not in text:
            text = f"{text}\n\n{question}"

        state.last_question = extract_last_question(text) or state.last_question
        state.record_exchange(utterance, text)
        return GenerationResult(text, ok=True, snippets=snippets)
