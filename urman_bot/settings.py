"""
Загрузчик настроек из settings.yaml

Использование:
    from urman_bot.settings import settings

    model = settings.llm.model
    window = settings.generator.history_window

Секреты и адреса внешних сервисов можно переопределить через переменные
окружения (или файл .env в корне проекта).
"""

import os
from pathlib import Path
from typing import Any, Dict, List

import yaml
from dotenv import load_dotenv


# Путь к файлу настроек
SETTINGS_FILE = Path(__file__).parent / "settings.yaml"

# Значения по умолчанию (используются если параметр не указан в YAML)
DEFAULTS = {
    "llm": {
        "model": "Qwen/Qwen3-14B-AWQ",
        "base_url": "http://localhost:8000/v1",
        "api_key": "",
        "timeout": 60,
        "temperature": 0.4,
        "max_tokens": 512,
        "max_retries": 2,
    },
    "retriever": {
        "embedder_model": "intfloat/multilingual-e5-small",
        "index_path": "data/knowledge_index.json",
        "top_k": 3,
        "min_score": 0.0,
        "chunk_size": 2500,
    },
    "generator": {
        "history_window": 5,
    },
    "conversation": {
        "history_limit": 10,
    },
    "handoff": {
        "base_url": "",
        "tasks_path": "/tasks",
        "token": "",
        "timeout": 15,
        "background": True,
    },
    "telegram": {
        "bot_token": "",
        "api_url": "https://api.telegram.org",
        "webhook_secret": "",
        "timeout": 10,
    },
    "logging": {
        "level": "INFO",
        "log_prompts": False,
        "log_retriever_results": False,
    },
}

# Переменная окружения -> путь в настройках
ENV_OVERRIDES = {
    "LLM_BASE_URL": "llm.base_url",
    "LLM_MODEL": "llm.model",
    "LLM_API_KEY": "llm.api_key",
    "KNOWLEDGE_INDEX_PATH": "retriever.index_path",
    "EMBEDDER_MODEL": "retriever.embedder_model",
    "TASK_TRACKER_URL": "handoff.base_url",
    "TASK_TRACKER_TOKEN": "handoff.token",
    "TELEGRAM_BOT_TOKEN": "telegram.bot_token",
    "TELEGRAM_WEBHOOK_SECRET": "telegram.webhook_secret",
    "LOG_LEVEL": "logging.level",
}


class DotDict(dict):
    """Словарь с доступом через точку: d.key вместо d['key']"""

    def __getattr__(self, key: str) -> Any:
        try:
            value = self[key]
            if isinstance(value, dict):
                return DotDict(value)
            return value
        except KeyError:
            raise AttributeError(f"Настройка '{key}' не найдена")

    def __setattr__(self, key: str, value: Any) -> None:
        self[key] = value

    def get_nested(self, path: str, default: Any = None) -> Any:
        """Получить значение по пути: 'llm.model'"""
        keys = path.split('.')
        value = self
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value


def _deep_merge(base: dict, override: dict) -> dict:
    """Глубокое слияние словарей (override перезаписывает base)"""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: dict, environ: Dict[str, str]) -> dict:
    """Переопределить значения из переменных окружения"""
    for env_name, path in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        section, key = path.split(".", 1)
        config.setdefault(section, {})
        config[section] = dict(config[section], **{key: value})
    return config


def load_settings(filepath: Path = None, environ: Dict[str, str] = None) -> DotDict:
    """
    Загрузить настройки из YAML файла.

    Порядок приоритета:
    1. Переменные окружения (ENV_OVERRIDES)
    2. Значения из YAML файла
    3. Значения по умолчанию (DEFAULTS)

    Args:
        filepath: Путь к файлу настроек (по умолчанию settings.yaml)
        environ: Окружение (по умолчанию os.environ)

    Returns:
        DotDict с настройками
    """
    filepath = filepath or SETTINGS_FILE
    environ = os.environ if environ is None else environ

    # Начинаем с defaults
    config = _deep_merge({}, DEFAULTS)

    if filepath.exists():
        with open(filepath, "r", encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
        config = _deep_merge(config, yaml_config)

    config = _apply_env_overrides(config, environ)
    return DotDict(config)


def validate_settings(settings: DotDict) -> List[str]:
    """
    Валидация настроек.

    Returns:
        Список ошибок (пустой если всё OK)
    """
    errors = []

    # LLM
    if not settings.llm.model:
        errors.append("llm.model не указан")
    if not settings.llm.base_url:
        errors.append("llm.base_url не указан")
    if settings.llm.timeout <= 0:
        errors.append("llm.timeout должен быть > 0")
    if settings.llm.max_retries < 1:
        errors.append("llm.max_retries должен быть >= 1")

    # Retriever
    if not (1 <= settings.retriever.top_k <= 3):
        errors.append("retriever.top_k должен быть от 1 до 3")
    if settings.retriever.chunk_size < 100:
        errors.append("retriever.chunk_size должен быть >= 100")

    # История
    history_limit = settings.conversation.history_limit
    window = settings.generator.history_window
    if history_limit < 2:
        errors.append("conversation.history_limit должен быть >= 2")
    if window < 0 or window > history_limit:
        errors.append("generator.history_window должен быть от 0 до conversation.history_limit")

    return errors


# Глобальный экземпляр настроек (ленивая загрузка)
_settings = None


def get_settings() -> DotDict:
    """Получить глобальные настройки (singleton)"""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = load_settings()
        errors = validate_settings(_settings)
        if errors:
            print("[settings] Ошибки в настройках:")
            for err in errors:
                print(f"  - {err}")
    return _settings


def reload_settings() -> DotDict:
    """Перезагрузить настройки из файла"""
    global _settings
    _settings = None
    return get_settings()


# Для удобного импорта: from urman_bot.settings import settings
settings = get_settings()

