"""
REST API обёртка для URMAN Lead Bot.

Транспорт:
  - POST /api/v1/process          один ход диалога (Bearer API_KEY)
  - POST /telegram/webhook        обновления Telegram Bot API
  - GET  /api/v1/users/{id}/state диагностика состояния диалога
  - GET  /health

Запуск: API_KEY=<secret> uvicorn urman_bot.api:app --host 127.0.0.1 --port 8000

Состояние диалогов хранится только в памяти процесса: запускайте один
worker, иначе сообщения одного пользователя попадут в разные процессы.
"""

import hmac
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from urman_bot.bot import LeadBot
from urman_bot.settings import settings
from urman_bot.telegram import START_COMMAND, TelegramClient, TelegramError, parse_text_update

logger = logging.getLogger(__name__)

API_KEY = os.environ.get("API_KEY", "change-me-in-production")

_bot: Optional[LeadBot] = None
_telegram: Optional[TelegramClient] = None


# ── Error helpers ──────────────────────────────────────

class APIError(Exception):
    """Structured API exception with HTTP status code."""

    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(message)


def _error_payload(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


# ── Auth ──────────────────────────────────────────────

def verify_api_key(authorization: str = Header(...)):
    """Проверка Bearer-токена."""
    if not authorization.startswith("Bearer "):
        raise APIError(401, "UNAUTHORIZED", "Missing Bearer token")
    token = authorization[7:]
    if not hmac.compare_digest(token, API_KEY):
        raise APIError(401, "UNAUTHORIZED", "Invalid API key")


def verify_telegram_secret(
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    """Проверка секрета вебхука (если задан в настройках)."""
    secret = settings.telegram.webhook_secret
    if not secret:
        return
    if not x_telegram_bot_api_secret_token or not hmac.compare_digest(
        x_telegram_bot_api_secret_token, secret
    ):
        raise APIError(401, "UNAUTHORIZED", "Invalid webhook secret")


# ── App ───────────────────────────────────────────────

def _create_bot() -> LeadBot:
    return LeadBot.from_settings()


def _get_bot() -> LeadBot:
    if _bot is None:
        raise APIError(503, "UNAVAILABLE", "Bot is not initialized")
    return _bot


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _bot, _telegram
    if API_KEY == "change-me-in-production":
        logger.warning("API_KEY is set to insecure default value")
    _bot = _create_bot()
    _telegram = TelegramClient()
    logger.info("Lead bot initialized")
    yield
    _bot.hand_off.shutdown()
    _bot = None
    _telegram = None


app = FastAPI(title="URMAN Lead Bot API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(APIError)
async def api_error_handler(_: Request, exc: APIError):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(exc.code, exc.message),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(_: Request, exc: RequestValidationError):
    errors = exc.errors()
    first_error = errors[0].get("msg") if errors else "Invalid request payload"
    return JSONResponse(
        status_code=400,
        content=_error_payload("BAD_REQUEST", first_error),
    )


# ── Models ────────────────────────────────────────────

class MessagePayload(BaseModel):
    text: str
    timestamp_ms: int = 0


class ProcessRequest(BaseModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    channel: str = "api"
    user_id: str
    message: MessagePayload


# ── Endpoints ─────────────────────────────────────────

@app.get("/health")
def health():
    return {"status": "ok", "model": settings.llm.model}


@app.post("/api/v1/process", dependencies=[Depends(verify_api_key)])
def process_message(req: ProcessRequest):
    """
    Обработка одного хода диалога.

    NOTE: `def` (не `async def`): bot.process() синхронный (HTTP к vLLM).
    FastAPI запустит его в threadpool, разные пользователи обрабатываются
    параллельно.
    """
    if not req.message.text.strip():
        raise APIError(400, "BAD_REQUEST", "message.text must not be empty")

    bot = _get_bot()
    try:
        start = time.time()
        result = bot.process(req.user_id, req.message.text)
        processing_ms = int((time.time() - start) * 1000)
    except Exception as err:
        logger.exception("Error processing message")
        raise APIError(500, "INTERNAL", "Internal server error") from err

    return {
        "answer": result["response"],
        "meta": {
            "request_id": req.request_id,
            "stage": result["stage"],
            "generation_ok": result["generation_ok"],
            "hand_off_fired": result["hand_off_fired"],
            "processing_ms": processing_ms,
        },
    }


@app.post("/telegram/webhook", dependencies=[Depends(verify_telegram_secret)])
def telegram_webhook(update: dict):
    """
    Обновление Telegram. /start отвечает приветствием без изменения
    состояния, остальные тексты идут в bot.process().

    Ошибка отправки ответа логируется, вебхук всё равно отвечает 200:
    иначе Telegram повторит доставку и ход обработается дважды.
    """
    parsed = parse_text_update(update)
    if parsed is None or not parsed[2].strip():
        return {"ok": True, "handled": False}

    chat_id, user_id, text = parsed
    bot = _get_bot()

    if text.split()[0].split("@")[0] == START_COMMAND:
        reply = bot.greeting_message()
    else:
        try:
            reply = bot.process(user_id, text)["response"]
        except Exception as err:
            logger.exception("Error processing Telegram update")
            raise APIError(500, "INTERNAL", "Internal server error") from err

    try:
        _telegram.send_message(chat_id, reply)
    except TelegramError as err:
        logger.error("Failed to send Telegram reply: %s", err)
        return {"ok": False, "handled": True}
    return {"ok": True, "handled": True}


@app.get("/api/v1/users/{user_id}/state", dependencies=[Depends(verify_api_key)])
def get_user_state(user_id: str):
    """Текущее состояние диалога пользователя."""
    state = _get_bot().get_state(user_id)
    if state is None:
        raise APIError(404, "NOT_FOUND", "No conversation for this user")
    return state.to_dict()
