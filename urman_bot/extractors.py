"""
Field extraction from free-text user turns.

Name and phone detection are plain predicate functions so that locale or
format variants can be swapped without touching the stage machine:

    extractor = FieldExtractor(name_extractor=my_name_fn, phone_predicate=my_phone_fn)

Both heuristics are best-effort. They may miss a name or accept a false
positive; they never raise.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from urman_bot.state import CollectedFields, STAGE_FIELDS, Stage
from urman_bot.yaml_config.constants import NAME_STOPWORDS


# Capitalized word in Cyrillic or Latin script (hyphenated surnames allowed)
NAME_TOKEN_PATTERNS = [
    re.compile(r'^[А-ЯЁ][а-яё]+(?:-[А-ЯЁ][а-яё]+)?$'),
    re.compile(r'^[A-Z][a-z]+(?:-[A-Z][a-z]+)?$'),
]

TOKEN_PUNCTUATION = ".,!?;:\"'()«»…"

# Digits with formatting between them: +7 (999) 123-45-67, 8.999.123.45.67
PHONE_SPAN = re.compile(r'\d[\d\s\-\.\(\)]*\d')

MAX_NAME_TOKENS = 2


def is_name_token(token: str) -> bool:
    if token in NAME_STOPWORDS:
        return False
    return any(pattern.match(token) for pattern in NAME_TOKEN_PATTERNS)


def extract_name(text: str) -> Optional[str]:
    """
    Find a personal name in the utterance.

    Scans whitespace-delimited tokens and returns the first run of one or two
    consecutive capitalized words, joined by a space.

    >>> extract_name("Иван Петров")
    'Иван Петров'
    >>> extract_name("меня зовут Анна")
    'Анна'
    """
    if not text:
        return None

    tokens = [t.strip(TOKEN_PUNCTUATION) for t in text.split()]
    for i, token in enumerate(tokens):
        if not is_name_token(token):
            continue
        parts = [token]
        for follower in tokens[i + 1:i + MAX_NAME_TOKENS]:
            if not is_name_token(follower):
                break
            parts.append(follower)
        return " ".join(parts)
    return None


def normalize_phone(text: str) -> Optional[str]:
    """
    Return the 10-11 digits of the first phone number in the utterance, or None.

    Whitespace-separated digit groups are joined only until they reach
    ten digits, so "89991234567 89997654321" yields the first number.
    """
    if not text:
        return None
    for span in PHONE_SPAN.finditer(text):
        groups = [re.sub(r'\D', '', part) for part in span.group(0).split()]
        for start in range(len(groups)):
            digits = ""
            for group in groups[start:]:
                digits += group
                if len(digits) >= 10:
                    break
            if 10 <= len(digits) <= 11:
                return digits
    return None


def looks_like_phone(text: str) -> bool:
    return normalize_phone(text) is not None


@dataclass
class FieldUpdate:
    """Field values derived from one user turn."""
    values: Dict[str, str] = field(default_factory=dict)
    contact_is_phone: bool = False

    def __bool__(self) -> bool:
        return bool(self.values)

    def apply(self, collected: CollectedFields) -> List[str]:
        """
        Write the update into ``collected``.

        Returns the names of fields that actually changed.
        """
        written = []
        for name, value in self.values.items():
            if collected.set_once(name, value):
                written.append(name)
        return written


class FieldExtractor:
    """Derive structured field updates from (stage, utterance)."""

    def __init__(
        self,
        name_extractor: Callable[[str], Optional[str]] = extract_name,
        phone_predicate: Callable[[str], bool] = looks_like_phone,
    ):
        self.name_extractor = name_extractor
        self.phone_predicate = phone_predicate

    def extract(
        self,
        stage: Stage,
        utterance: str,
        collected: Optional[CollectedFields] = None,
    ) -> FieldUpdate:
        text = (utterance or "").strip()
        if not text or stage.is_terminal:
            return FieldUpdate()

        if stage is Stage.GREETING:
            if collected is not None and collected.name:
                return FieldUpdate()
            name = self.name_extractor(text)
            return FieldUpdate({"name": name}) if name else FieldUpdate()

        field_name = STAGE_FIELDS[stage]
        if stage is Stage.COLLECTING_CONTACT:
            return FieldUpdate(
                {field_name: text},
                contact_is_phone=bool(self.phone_predicate(text)),
            )
        return FieldUpdate({field_name: text})
