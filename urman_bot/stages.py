"""
Stage State Machine: порядок стадий квалификации лида.

    greeting → collecting_area → collecting_region → collecting_purpose
             → collecting_stage → collecting_contact → completed

Правила:
- стадия никогда не откатывается назад;
- на collecting_contact переход в completed только если реплика похожа на
  телефон (10–11 цифр подряд без учёта форматирования), иначе стадия
  остаётся прежней;
- completed: терминальная стадия.
"""

from typing import Dict, Optional

from urman_bot.extractors import FieldUpdate
from urman_bot.state import STAGE_FIELDS, STAGE_ORDER, Stage
from urman_bot.yaml_config.constants import STAGE_LABELS, STAGE_QUESTIONS


class StageMachine:
    """Чистые функции переходов между стадиями и резервные вопросы."""

    def __init__(self, questions: Optional[Dict[str, str]] = None):
        self.questions = dict(STAGE_QUESTIONS if questions is None else questions)

    def next_stage(self, current: Stage, update: FieldUpdate) -> Stage:
        if current.is_terminal:
            return current

        if current is Stage.COLLECTING_CONTACT:
            return Stage.COMPLETED if update.contact_is_phone else current

        return STAGE_ORDER[current.order + 1]

    def fallback_question(self, stage: Stage) -> Optional[str]:
        """Резервный вопрос стадии (None для completed)."""
        if stage.is_terminal:
            return None
        return self.questions.get(stage.value)

    @staticmethod
    def field_for(stage: Stage) -> Optional[str]:
        return STAGE_FIELDS.get(stage)

    @staticmethod
    def label(stage: Stage) -> str:
        return STAGE_LABELS.get(stage.value, stage.value)
