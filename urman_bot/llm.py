"""
vLLM Client для URMAN Lead Bot.

Генерация через OpenAI-compatible API (/chat/completions) vLLM сервера:
    complete(system_prompt, turns) -> text

Сбои сети, таймауты, 429 и 5xx повторяются с exponential backoff.
Остальные 4xx (неверный запрос, ключ, модель) и пустой ответ не
повторяются. Любой итоговый сбой даёт GenerationError.

После CIRCUIT_BREAKER_THRESHOLD неудачных вызовов подряд запросы не
отправляются CIRCUIT_BREAKER_TIMEOUT секунд (сразу GenerationError),
затем пробуется один запрос (half-open).

Запуск vLLM сервера:
    vllm serve Qwen/Qwen3-14B-AWQ --port 8000 --quantization awq
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from urman_bot.logger import logger
from urman_bot.settings import settings
from urman_bot.state import Turn

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class GenerationError(Exception):
    """Transport, quota or response-format failure of the completion model."""


class _RetryableError(Exception):
    """Attempt failed, another attempt may succeed."""


@dataclass
class LLMStats:
    """Счётчики вызовов генерации"""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_retries: int = 0
    circuit_breaker_trips: int = 0
    total_response_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 100.0
        return (self.successful_requests / self.total_requests) * 100

    @property
    def average_response_time_ms(self) -> float:
        if self.successful_requests == 0:
            return 0.0
        return self.total_response_time_ms / self.successful_requests


class CircuitBreaker:
    """Размыкается после threshold сбоев подряд на timeout секунд."""

    def __init__(self, threshold: int, timeout: float):
        self.threshold = threshold
        self.timeout = timeout
        self.failures = 0
        self.open_until = 0.0

    @property
    def is_open(self) -> bool:
        return self.open_until > time.time()

    def allow(self) -> bool:
        """False пока цепь разомкнута; по истечении таймаута пропускает запрос."""
        if not self.open_until:
            return True
        if self.is_open:
            return False
        logger.info("Circuit breaker half-open, trying a request")
        return True

    def record_success(self) -> None:
        if self.open_until:
            logger.info("Circuit breaker closed after successful request")
        self.failures = 0
        self.open_until = 0.0

    def record_failure(self) -> bool:
        """Учесть сбой. Returns: True если цепь только что разомкнулась."""
        self.failures += 1
        if self.failures < self.threshold:
            return False
        self.open_until = time.time() + self.timeout
        logger.error("Circuit breaker opened", failures=self.failures, timeout=self.timeout)
        return True


class VLLMClient:
    """Клиент генерации ответов ассистента."""

    INITIAL_DELAY: float = 1.0
    MAX_DELAY: float = 10.0
    BACKOFF_MULTIPLIER: float = 2.0

    CIRCUIT_BREAKER_THRESHOLD: int = 5
    CIRCUIT_BREAKER_TIMEOUT: int = 60

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        enable_circuit_breaker: bool = True,
    ):
        """
        Args:
            model: Название модели (из settings если не указано)
            base_url: URL OpenAI-compatible API, например http://localhost:8000/v1
            api_key: Bearer-токен (локальному vLLM не нужен)
            timeout: Таймаут одного запроса в секундах
            max_retries: Число попыток на один вызов complete()
            enable_circuit_breaker: Включить circuit breaker
        """
        llm = settings.llm
        self.model = model or llm.model
        self.base_url = (base_url or llm.base_url).rstrip("/")
        self.api_key = llm.api_key if api_key is None else api_key
        self.timeout = timeout or llm.timeout
        self.max_retries = max_retries or llm.max_retries
        self.temperature = llm.temperature
        self.max_tokens = llm.max_tokens

        self.breaker = (
            CircuitBreaker(self.CIRCUIT_BREAKER_THRESHOLD, self.CIRCUIT_BREAKER_TIMEOUT)
            if enable_circuit_breaker else None
        )
        self.stats = LLMStats()

    @property
    def is_circuit_open(self) -> bool:
        return self.breaker is not None and self.breaker.is_open

    def reset_circuit_breaker(self) -> None:
        if self.breaker is not None:
            self.breaker.record_success()

    # =========================================================================
    # GENERATION
    # =========================================================================

    def complete(self, system_prompt: str, turns: Sequence[Turn]) -> str:
        """
        Ответ модели на системную инструкцию и реплики диалога.

        Raises:
            GenerationError: сеть, квота, ошибка API, пустой ответ,
                разомкнутый circuit breaker
        """
        self.stats.total_requests += 1

        if self.breaker is not None and not self.breaker.allow():
            self.stats.failed_requests += 1
            raise GenerationError("circuit breaker is open")

        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(turn.to_message() for turn in turns)

        start = time.time()
        delay = self.INITIAL_DELAY
        error: Exception = GenerationError("no attempts made")

        for attempt in range(1, self.max_retries + 1):
            try:
                text = self._call_llm(messages)
            except _RetryableError as e:
                error = e
                logger.warning(
                    "vLLM attempt failed",
                    attempt=f"{attempt}/{self.max_retries}",
                    error=str(e)[:100],
                )
            except GenerationError as e:
                error = e
                break
            else:
                elapsed_ms = (time.time() - start) * 1000
                self.stats.successful_requests += 1
                self.stats.total_response_time_ms += elapsed_ms
                if self.breaker is not None:
                    self.breaker.record_success()
                logger.debug("vLLM completion", attempts=attempt, elapsed_ms=round(elapsed_ms, 1))
                return text

            if attempt < self.max_retries:
                self.stats.total_retries += 1
                time.sleep(delay)
                delay = min(delay * self.BACKOFF_MULTIPLIER, self.MAX_DELAY)

        self.stats.failed_requests += 1
        if self.breaker is not None and self.breaker.record_failure():
            self.stats.circuit_breaker_trips += 1
        logger.error("vLLM generation failed", error=str(error)[:200])

        if isinstance(error, GenerationError):
            raise error
        raise GenerationError(str(error)) from error

    def _call_llm(self, messages: List[Dict[str, str]]) -> str:
        """
        Один HTTP запрос к /chat/completions.

        Raises:
            _RetryableError: сеть, таймаут, 429, 5xx
            GenerationError: прочие ошибки API, ответ без текста
        """
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                json={
                    "model": self.model,
                    "messages": messages,
                    "temperature": self.temperature,
                    "max_tokens": self.max_tokens,
                },
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise _RetryableError(f"{type(e).__name__}: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise _RetryableError(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise GenerationError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            choices = response.json().get("choices") or []
            message = choices[0].get("message") if choices else None
            content = ((message or {}).get("content") or "").strip()
        except (ValueError, AttributeError) as e:
            raise GenerationError(f"malformed completion: {e}") from e

        if not content:
            raise GenerationError("empty completion")
        return content

    # =========================================================================
    # STATS & HEALTH
    # =========================================================================

    def get_stats_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.stats.total_requests,
            "successful_requests": self.stats.successful_requests,
            "failed_requests": self.stats.failed_requests,
            "total_retries": self.stats.total_retries,
            "circuit_breaker_trips": self.stats.circuit_breaker_trips,
            "success_rate": round(self.stats.success_rate, 1),
            "average_response_time_ms": round(self.stats.average_response_time_ms, 1),
            "circuit_breaker_open": self.is_circuit_open,
        }

    def health_check(self) -> bool:
        """GET /health сервера vLLM (без суффикса /v1)."""
        base = self.base_url[:-3] if self.base_url.endswith("/v1") else self.base_url
        try:
            return requests.get(f"{base}/health", timeout=5).status_code == 200
        except requests.exceptions.RequestException:
            return False
