"""
LeadBot: оркестратор одного хода диалога.

Ход:
1. Блокировка состояния пользователя (DialogStateStore.session)
2. Черновик состояния: извлечение полей + переход стадии
3. Генерация ответа с контекстом из базы знаний
4. Hand-off (однократно): флаг в черновике и подтверждение клиенту
5. Фиксация черновика в хранилище
6. Создание задачи в таск-трекере (по умолчанию в фоне)

Сбой генерации → фиксированное извинение, черновик отбрасывается,
состояние пользователя остаётся как до хода.
"""

import uuid
from typing import Any, Dict, Optional

from urman_bot.extractors import FieldExtractor
from urman_bot.generator import ResponseGenerator, extract_last_question
from urman_bot.handoff import HandOffTrigger, TaskTrackerClient
from urman_bot.logger import logger
from urman_bot.session_store import DialogStateStore, UserId
from urman_bot.stages import StageMachine
from urman_bot.state import ConversationState
from urman_bot.yaml_config.constants import GREETING_TEXT


class LeadBot:
    """
    Ассистент квалификации лидов URMAN.

    Все ошибки внешних сервисов обрабатываются без падения:
    retrieval → ответ без контекста, generation → извинение,
    hand-off → запись в лог.
    """

    def __init__(
        self,
        llm,
        retriever,
        task_tracker: Optional[TaskTrackerClient] = None,
        store: Optional[DialogStateStore] = None,
        extractor: Optional[FieldExtractor] = None,
        stage_machine: Optional[StageMachine] = None,
        hand_off: Optional[HandOffTrigger] = None,
        history_window: Optional[int] = None,
    ):
        """
        Args:
            llm: Клиент генерации (VLLMClient или совместимый)
            retriever: Поиск по базе знаний (KnowledgeRetriever или совместимый)
            task_tracker: Клиент таск-трекера для hand-off
            store: Хранилище состояний (по умолчанию новое, in-memory)
            extractor: Извлечение полей из реплик
            stage_machine: Переходы стадий и резервные вопросы
            hand_off: Готовый HandOffTrigger (иначе создаётся из task_tracker)
            history_window: Сколько реплик истории передавать в LLM
        """
        self.store = store or DialogStateStore()
        self.extractor = extractor or FieldExtractor()
        self.stage_machine = stage_machine or StageMachine()
        self.generator = ResponseGenerator(
            llm,
            retriever,
            stage_machine=self.stage_machine,
            history_window=history_window,
        )
        self.hand_off = hand_off or HandOffTrigger(task_tracker)

    @classmethod
    def from_settings(cls) -> "LeadBot":
        """Бот с клиентами из settings.yaml / окружения."""
        from urman_bot.knowledge import get_retriever
        from urman_bot.llm import VLLMClient

        return cls(VLLMClient(), get_retriever(), TaskTrackerClient())

    @staticmethod
    def greeting_message() -> str:
        return GREETING_TEXT

    def get_state(self, user_id: UserId) -> Optional[ConversationState]:
        return self.store.get(user_id)

    def process(self, user_id: UserId, user_message: str) -> Dict[str, Any]:
        """
        Обработать сообщение пользователя.

        Returns:
            {response, stage, fields, hand_off_fired, hand_off_this_turn,
             generation_ok, last_question, user_id, turn}
        """
        text = (user_message or "").strip()
        if not text:
            raise ValueError("user_message must not be empty")

        with logger.turn(user_id), self.store.session(user_id) as state:
            draft = state.copy()
            previous_stage = draft.stage
            logger.bind(stage=previous_stage.value)

            update = self.extractor.extract(draft.stage, text, draft.collected_fields)
            written = update.apply(draft.collected_fields)
            draft.stage = self.stage_machine.next_stage(draft.stage, update)

            result = self.generator.generate(draft, text)
            if not result.ok:
                return self._build_result(state, result.text, generation_ok=False)

            response = result.text
            payload = self.hand_off.claim(draft)
            fired = payload is not None
            if fired:
                response = self.hand_off.apply_override(response, draft)
                if response != result.text:
                    draft.replace_last_assistant(response)
                    draft.last_question = extract_last_question(response) or draft.last_question

            if draft.stage is not previous_stage:
                logger.event(
                    "stage_transition",
                    from_stage=previous_stage.value,
                    to_stage=draft.stage.value,
                    fields=written,
                )
                logger.bind(stage=draft.stage.value)

            # флаг сохранён до вызова трекера
            self.store.save(user_id, draft)
            if fired:
                self.hand_off.submit(payload)
            return self._build_result(draft, response, hand_off_this_turn=fired)

    @staticmethod
    def _build_result(
        state: ConversationState,
        response: str,
        generation_ok: bool = True,
        hand_off_this_turn: bool = False,
    ) -> Dict[str, Any]:
        return {
            "response": response,
            "user_id": state.user_id,
            "stage": state.stage.value,
            "fields": state.collected_fields.to_dict(),
            "hand_off_fired": state.hand_off_fired,
            "hand_off_this_turn": hand_off_this_turn,
            "generation_ok": generation_ok,
            "last_question": state.last_question,
            "turn": state.turn_count,
            "is_final": state.stage.is_terminal,
        }


def run_interactive(bot: LeadBot, user_id: Optional[str] = None) -> None:
    """Интерактивный режим для тестирования."""
    user_id = user_id or f"cli-{uuid.uuid4().hex[:8]}"

    print("\n" + "=" * 60)
    print("URMAN Lead Bot")
    print("Команды: /status /new /quit")
    print("=" * 60 + "\n")
    print(f"Бот: {bot.greeting_message()}\n")

    while True:
        try:
            user_input = input("Клиент: ").strip()

            if not user_input:
                continue

            if user_input == "/quit":
                break

            if user_input == "/new":
                user_id = f"cli-{uuid.uuid4().hex[:8]}"
                print(f"[Новый диалог: {user_id}]\n")
                print(f"Бот: {bot.greeting_message()}\n")
                continue

            if user_input == "/status":
                state = bot.get_state(user_id)
                if state is None:
                    print("\n[Диалог ещё не начат]\n")
                else:
                    print(f"\nСтадия: {state.stage.value}")
                    print(f"Данные: {state.collected_fields.filled()}")
                    print(f"Hand-off: {state.hand_off_fired}\n")
                continue

            result = bot.process(user_id, user_input)
            print(f"Бот: {result['response']}")
            print(f"  [{result['stage']}]"
                  + (" | hand-off" if result["hand_off_this_turn"] else "")
                  + ("" if result["generation_ok"] else " | generation failed")
                  + "\n")

        except (KeyboardInterrupt, EOFError):
            print("\n\nПока!")
            break


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="URMAN Lead Bot interactive mode")
    parser.add_argument("--user-id", type=str, default=None,
                        help="Conversation id to use (random by default)")
    args = parser.parse_args()

    run_interactive(LeadBot.from_settings(), user_id=args.user_id)


if __name__ == "__main__":
    main()
