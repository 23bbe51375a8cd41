"""
Structured Logging для URMAN Lead Bot.

JSON-логи для production (LOG_FORMAT=json), readable для dev.
Записи внутри хода диалога помечаются user_id и стадией.

Использование:
    from urman_bot.logger import logger

    with logger.turn("42", stage="greeting"):
        logger.info("User message received")
        logger.bind(stage="collecting_area")
        logger.event("stage_transition", from_stage="greeting", to_stage="collecting_area")

Номера телефонов в полях записи маскируются (видны последние 4 цифры).
"""

import json
import logging
import os
import re
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from urman_bot.settings import settings


# Поля текущего хода (user_id, stage, ...); свои для каждого потока threadpool
_turn_fields_var: ContextVar[Dict[str, Any]] = ContextVar("turn_fields", default={})

# 10-11 цифр подряд, допускаются пробелы, скобки, дефисы и +
_PHONE_IN_TEXT = re.compile(r'\+?\d[\d\s\-\(\)]{8,}\d')


def mask_phone(value: str) -> str:
    """'+7 (999) 123-45-67' -> '***4567'"""
    def _mask(match: "re.Match[str]") -> str:
        digits = re.sub(r'\D', '', match.group(0))
        if not 10 <= len(digits) <= 11:
            return match.group(0)
        return "***" + digits[-4:]
    return _PHONE_IN_TEXT.sub(_mask, value)


def _masked(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: mask_phone(v) if isinstance(v, str) else v for k, v in fields.items()}


class StructuredLogger:
    """
    Структурированный логгер с контекстом хода диалога.

    - turn(user_id, **fields): контекст хода, снимается на выходе
    - bind(**fields): дополнить контекст текущего хода (например стадию)
    - metric() / event(): записи для аналитики
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

        if not self.logger.handlers:
            self._setup_logger()

    def _setup_logger(self) -> None:
        level_name = settings.get_nested("logging.level", "INFO")
        level = getattr(logging, str(level_name).upper(), logging.INFO)
        self.logger.setLevel(level)

        handler = logging.StreamHandler()
        handler.setLevel(level)
        if self._json_enabled():
            handler.setFormatter(logging.Formatter("%(message)s"))
        else:
            handler.setFormatter(logging.Formatter(
                "[%(asctime)s] %(levelname)s - %(message)s",
                datefmt="%H:%M:%S",
            ))
        self.logger.addHandler(handler)
        self.logger.propagate = False

    @staticmethod
    def _json_enabled() -> bool:
        return os.environ.get("LOG_FORMAT", "readable") == "json"

    # =========================================================================
    # TURN CONTEXT
    # =========================================================================

    @property
    def context(self) -> Dict[str, Any]:
        return dict(_turn_fields_var.get())

    @contextmanager
    def turn(self, user_id: str, **fields: Any) -> Iterator[None]:
        token = _turn_fields_var.set({"user_id": str(user_id), **fields})
        try:
            yield
        finally:
            _turn_fields_var.reset(token)

    def bind(self, **fields: Any) -> None:
        _turn_fields_var.set({**_turn_fields_var.get(), **fields})

    # =========================================================================
    # FORMATTING
    # =========================================================================

    def _format_structured(self, level: str, message: str, **kwargs: Any) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "logger": self.name,
            "message": message,
            **_masked(_turn_fields_var.get()),
            **_masked(kwargs),
        }

    def _format_readable(self, message: str, **kwargs: Any) -> str:
        if kwargs:
            extras = ", ".join(f"{k}={v}" for k, v in _masked(kwargs).items())
            message = f"{message} [{extras}]"
        context = _turn_fields_var.get()
        if "user_id" in context:
            prefix = context["user_id"]
            if context.get("stage"):
                prefix = f"{prefix}/{context['stage']}"
            message = f"[{prefix}] {message}"
        return message

    def _log(self, level: str, message: str, log_method, **kwargs: Any) -> None:
        if self._json_enabled():
            log_method(json.dumps(
                self._format_structured(level, message, **kwargs),
                ensure_ascii=False,
                default=str,
            ))
        else:
            log_method(self._format_readable(message, **kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("DEBUG", message, self.logger.debug, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("INFO", message, self.logger.info, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("WARNING", message, self.logger.warning, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("ERROR", message, self.logger.error, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Error with the active exception's traceback."""
        if self._json_enabled():
            kwargs["traceback"] = traceback.format_exc()
            self._log("ERROR", message, self.logger.error, **kwargs)
        else:
            self.logger.exception(self._format_readable(message, **kwargs))

    def metric(self, name: str, value: Any, **kwargs: Any) -> None:
        """
        Числовая метрика.

        Example:
            logger.metric("generation_time_ms", 812.4, stage="collecting_region")
        """
        self._log("METRIC", name, self.logger.info, value=value, **kwargs)

    def event(self, event_type: str, **kwargs: Any) -> None:
        """
        Бизнес-событие диалога.

        Example:
            logger.event("hand_off_fired", phone="89991234567")
        """
        self._log("EVENT", event_type, self.logger.info, **kwargs)


logger = StructuredLogger("urman_bot")


def create_test_logger(name: str = "test") -> StructuredLogger:
    """Изолированный логгер для тестов"""
    return StructuredLogger(f"urman_bot.{name}")
