"""
Hand-off: однократная передача заявки во внешний таск-трекер.

Срабатывает, когда после хода:
- стадия completed,
- контакт не пустой,
- передача ещё не выполнялась.

Флаг hand_off_fired выставляется ДО вызова трекера: повторной отправки
не будет ни при успехе, ни при ошибке. Ошибка трекера логируется и не
влияет на ответ пользователю.
"""

from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, Field

from urman_bot.extractors import normalize_phone
from urman_bot.logger import logger
from urman_bot.settings import settings
from urman_bot.state import ConversationState, Role, Stage
from urman_bot.yaml_config.constants import (
    COMPANY_EMAIL,
    COMPANY_TELEGRAM,
    CONTACT_REQUEST_KEYWORDS,
    FIELD_LABELS,
    HANDOFF_CONFIRMATION_TEMPLATE,
    HANDOFF_NOTES,
    HANDOFF_TITLE_TEMPLATE,
)

SPEAKER_LABELS = {
    Role.USER: "Клиент",
    Role.ASSISTANT: "Ассистент",
}

UNKNOWN_VALUE = "не указано"


class HandOffError(Exception):
    """Task tracker rejected or could not receive the task."""


class ContactRecord(BaseModel):
    name: str = ""
    phone: str = ""
    notes: str = ""


class TaskPayload(BaseModel):
    title: str
    body: str
    contact: ContactRecord = Field(default_factory=ContactRecord)
    user_id: str = ""


class TaskTrackerClient:
    """REST клиент таск-трекера: POST {base_url}{tasks_path} с JSON задачи."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        tasks_path: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.base_url = settings.handoff.base_url if base_url is None else base_url
        self.token = settings.handoff.token if token is None else token
        self.tasks_path = tasks_path or settings.handoff.tasks_path
        self.timeout = timeout or settings.handoff.timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def create_task(self, payload: TaskPayload) -> Dict[str, Any]:
        """
        Создать задачу.

        Raises:
            HandOffError: трекер не настроен, недоступен или вернул ошибку
        """
        if not self.is_configured:
            raise HandOffError("task tracker URL is not configured")

        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        url = f"{self.base_url.rstrip('/')}/{self.tasks_path.lstrip('/')}"
        try:
            response = requests.post(
                url,
                json=payload.model_dump(),
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise HandOffError(str(e)) from e

        try:
            return response.json()
        except ValueError:
            return {}


def render_history(state: ConversationState) -> str:
    return "\n".join(
        f"{SPEAKER_LABELS[turn.role]}: {turn.content}" for turn in state.history
    )


def build_payload(state: ConversationState) -> TaskPayload:
    fields = state.collected_fields
    name = fields.name or UNKNOWN_VALUE
    phone = normalize_phone(fields.contact or "") or (fields.contact or "")

    field_lines = [
        f"{FIELD_LABELS.get(key, key)}: {value or UNKNOWN_VALUE}"
        for key, value in fields.to_dict().items()
    ]
    body = (
        "Собранные данные:\n"
        + "\n".join(field_lines)
        + "\n\nИстория диалога:\n"
        + render_history(state)
    )

    return TaskPayload(
        title=HANDOFF_TITLE_TEMPLATE.format(
            name=name,
            region=fields.region or UNKNOWN_VALUE,
        ),
        body=body,
        contact=ContactRecord(name=fields.name or "", phone=phone, notes=HANDOFF_NOTES),
        user_id=state.user_id,
    )


class HandOffTrigger:
    """Однократная передача лида в трекер + подтверждение клиенту."""

    def __init__(
        self,
        client: Optional[TaskTrackerClient] = None,
        executor: Optional[Executor] = None,
        background: Optional[bool] = None,
    ):
        """
        Args:
            client: Клиент трекера с методом create_task(payload)
            executor: Пул для фоновой отправки (включает фоновый режим)
            background: Отправлять в фоне (по умолчанию из settings)
        """
        self.client = client or TaskTrackerClient()
        background = settings.handoff.background if background is None else background
        if background and executor is None:
            executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="handoff")
        self.executor = executor

    @staticmethod
    def should_fire(state: ConversationState) -> bool:
        return (
            state.stage is Stage.COMPLETED
            and bool(state.collected_fields.contact)
            and not state.hand_off_fired
        )

    def claim(self, state: ConversationState) -> Optional[TaskPayload]:
        """Пометить заявку отправленной и собрать payload (None если рано или уже было)."""
        if not self.should_fire(state):
            return None

        payload = build_payload(state)
        state.hand_off_fired = True
        logger.event("hand_off_fired", user_id=state.user_id, phone=payload.contact.phone)
        return payload

    def submit(self, payload: TaskPayload) -> None:
        """Создать задачу в трекере: в фоне или синхронно. Не бросает исключений."""
        if self.executor is not None:
            self.executor.submit(self._deliver, payload)
        else:
            self._deliver(payload)

    def fire(self, state: ConversationState) -> bool:
        """claim() + submit(). Returns: была ли отправка."""
        payload = self.claim(state)
        if payload is None:
            return False
        self.submit(payload)
        return True

    def _deliver(self, payload: TaskPayload) -> None:
        try:
            result = self.client.create_task(payload)
        except HandOffError as e:
            logger.error("Hand-off failed, not retrying", user_id=payload.user_id, error=str(e)[:200])
            return
        except Exception:
            logger.exception("Hand-off failed unexpectedly, not retrying", user_id=payload.user_id)
            return
        logger.info("Hand-off task created", user_id=payload.user_id, task=result)

    # =========================================================================
    # CONFIRMATION OVERRIDE
    # =========================================================================

    @staticmethod
    def asks_for_contact(text: str) -> bool:
        lowered = (text or "").lower()
        return any(keyword in lowered for keyword in CONTACT_REQUEST_KEYWORDS)

    def apply_override(self, reply: str, state: ConversationState) -> str:
        """Заменить просьбу о контакте подтверждением с номером телефона."""
        if not self.asks_for_contact(reply):
            return reply
        contact = state.collected_fields.contact or ""
        return HANDOFF_CONFIRMATION_TEMPLATE.format(
            phone=normalize_phone(contact) or contact,
            email=COMPANY_EMAIL,
            telegram=COMPANY_TELEGRAM,
        )

    def shutdown(self) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=True)
