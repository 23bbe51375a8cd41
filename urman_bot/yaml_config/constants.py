"""
Centralized dialog constants.

Single source of truth for every user-facing text of the bot, loaded from
constants.yaml next to this module.

Usage:
    from urman_bot.yaml_config.constants import (
        APOLOGY_TEXT, STAGE_QUESTIONS, CONTACT_REQUEST_KEYWORDS,
    )
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

logger = logging.getLogger(__name__)


def _load_yaml(file_path: Path) -> Dict[str, Any]:
    """Load YAML file safely."""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load {file_path}: {e}")
        return {}


_config_dir = Path(__file__).parent
_constants = _load_yaml(_config_dir / "constants.yaml")


# =============================================================================
# COMPANY
# =============================================================================

_company = _constants.get("company", {})

COMPANY_NAME: str = _company.get("name", "URMAN")
COMPANY_EMAIL: str = _company.get("email", "")
COMPANY_TELEGRAM: str = _company.get("telegram", "")


# =============================================================================
# FIXED REPLIES
# =============================================================================

GREETING_TEXT: str = _constants.get(
    "greeting",
    "Здравствуйте! Я AI-ассистент компании URMAN. Как к вам обращаться?",
)
APOLOGY_TEXT: str = _constants.get(
    "apology",
    "Извините, произошла ошибка при обработке вашего запроса. Попробуйте позже.",
)


# =============================================================================
# STAGES
# =============================================================================

STAGE_QUESTIONS: Dict[str, str] = _constants.get("stage_questions", {})
STAGE_LABELS: Dict[str, str] = _constants.get("stage_labels", {})
FIELD_LABELS: Dict[str, str] = _constants.get("field_labels", {})


# =============================================================================
# PROMPT
# =============================================================================

PERSONA_TEXT: str = _constants.get("persona", "")
BEHAVIOR_RULES: List[str] = _constants.get("rules", [])


# =============================================================================
# EXTRACTION
# =============================================================================

NAME_STOPWORDS: frozenset = frozenset(_constants.get("name_stopwords", []))


# =============================================================================
# HAND-OFF
# =============================================================================

CONTACT_REQUEST_KEYWORDS: List[str] = [
    kw.lower() for kw in _constants.get("contact_request_keywords", [])
]

_handoff = _constants.get("handoff", {})

HANDOFF_TITLE_TEMPLATE: str = _handoff.get("title", "Заявка: {name} — {region}")
HANDOFF_NOTES: str = _handoff.get("notes", "")
HANDOFF_CONFIRMATION_TEMPLATE: str = _handoff.get(
    "confirmation",
    "Спасибо! Мы записали ваш номер {phone}. Наш специалист свяжется с вами.",
)
