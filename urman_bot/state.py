"""
Conversation state model.

One ConversationState per user identifier. The orchestrator works on a deep
copy of it during a turn and commits the copy only when the turn succeeds.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from urman_bot.settings import settings


HISTORY_LIMIT: int = settings.conversation.history_limit


class Stage(Enum):
    """Qualification stages in progression order."""
    GREETING = "greeting"
    COLLECTING_AREA = "collecting_area"
    COLLECTING_REGION = "collecting_region"
    COLLECTING_PURPOSE = "collecting_purpose"
    COLLECTING_STAGE = "collecting_stage"
    COLLECTING_CONTACT = "collecting_contact"
    COMPLETED = "completed"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is Stage.COMPLETED


STAGE_ORDER: List[Stage] = list(Stage)

# Stage -> collected field filled by the user reply at that stage
STAGE_FIELDS: Dict[Stage, str] = {
    Stage.COLLECTING_AREA: "area",
    Stage.COLLECTING_REGION: "region",
    Stage.COLLECTING_PURPOSE: "purpose",
    Stage.COLLECTING_STAGE: "stage",
    Stage.COLLECTING_CONTACT: "contact",
}


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Turn:
    """One message of the dialog."""
    role: Role
    content: str

    def to_message(self) -> Dict[str, str]:
        """OpenAI-style chat message."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class CollectedFields:
    """
    Structured data collected during qualification.

    Every field except ``contact`` is write-once: once it holds a non-empty
    value it is never overwritten. ``contact`` keeps the latest tentative
    value until the stage advances past collecting_contact.
    """
    name: Optional[str] = None
    area: Optional[str] = None
    region: Optional[str] = None
    purpose: Optional[str] = None
    stage: Optional[str] = None
    contact: Optional[str] = None

    def set_once(self, field_name: str, value: Optional[str]) -> bool:
        """Set a field only if it is still empty. Returns True when written."""
        if field_name == "contact":
            return self.set_contact(value)
        if not value or getattr(self, field_name):
            return False
        setattr(self, field_name, value)
        return True

    def set_contact(self, value: Optional[str]) -> bool:
        if not value:
            return False
        self.contact = value
        return True

    def filled(self) -> Dict[str, str]:
        """Non-empty fields in declaration order."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name)
        }

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ConversationState:
    """Dialog state of a single user."""
    user_id: str
    stage: Stage = Stage.GREETING
    collected_fields: CollectedFields = field(default_factory=CollectedFields)
    history: List[Turn] = field(default_factory=list)
    hand_off_fired: bool = False
    last_question: Optional[str] = None
    turn_count: int = 0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def copy(self) -> "ConversationState":
        """Deep copy used as the working draft of a turn."""
        return copy.deepcopy(self)

    def record_exchange(self, user_text: str, assistant_text: str) -> None:
        """Append the user turn and the assistant turn, keep the last HISTORY_LIMIT."""
        self.history.append(Turn(Role.USER, user_text))
        self.history.append(Turn(Role.ASSISTANT, assistant_text))
        if len(self.history) > HISTORY_LIMIT:
            del self.history[:-HISTORY_LIMIT]
        self.turn_count += 1
        self.updated_at = time.time()

    def replace_last_assistant(self, text: str) -> None:
        for turn in reversed(self.history):
            if turn.role is Role.ASSISTANT:
                turn.content = text
                return

    def recent_history(self, window: int) -> List[Turn]:
        """Last ``window`` turns, oldest first."""
        if window <= 0:
            return []
        return list(self.history[-window:])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "stage": self.stage.value,
            "collected_fields": self.collected_fields.to_dict(),
            "history": [turn.to_message() for turn in self.history],
            "hand_off_fired": self.hand_off_fired,
            "last_question": self.last_question,
            "turn_count": self.turn_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
