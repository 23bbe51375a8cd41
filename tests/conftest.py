"""
Shared pytest fixtures for URMAN Lead Bot tests.

Provides fixtures for:
- Mock LLM / retriever / task tracker clients
- Bot factory wired with the mocks
- Conversation states positioned at a given stage
"""

from typing import List, Optional
from unittest.mock import MagicMock

import pytest

from urman_bot.bot import LeadBot
from urman_bot.handoff import HandOffTrigger
from urman_bot.knowledge import Snippet
from urman_bot.state import ConversationState, Stage


DEFAULT_REPLY = "Спасибо! Расскажите, пожалуйста, подробнее?"


# =============================================================================
# Mock clients
# =============================================================================

@pytest.fixture
def mock_llm():
    """LLM whose complete() always returns a reply with a question."""
    llm = MagicMock()
    llm.complete.return_value = DEFAULT_REPLY
    llm.model = "mock-model"
    return llm


@pytest.fixture
def mock_retriever():
    """Retriever that finds nothing."""
    retriever = MagicMock()
    retriever.query.return_value = []
    return retriever


@pytest.fixture
def snippet_retriever():
    """Retriever returning a configurable list of snippets."""
    def _create(texts: List[str]):
        retriever = MagicMock()
        retriever.query.return_value = [
            Snippet(text=t, score=1.0 - i * 0.1) for i, t in enumerate(texts)
        ]
        return retriever
    return _create


@pytest.fixture
def mock_tracker():
    """Task tracker client recording create_task calls."""
    tracker = MagicMock()
    tracker.create_task.return_value = {"id": "TASK-1"}
    return tracker


# =============================================================================
# Bot factory
# =============================================================================

@pytest.fixture
def make_bot(mock_llm, mock_retriever, mock_tracker):
    def _create(llm=None, retriever=None, tracker=None, **kwargs) -> LeadBot:
        kwargs.setdefault("hand_off", HandOffTrigger(tracker or mock_tracker, background=False))
        return LeadBot(llm or mock_llm, retriever or mock_retriever, **kwargs)
    return _create


@pytest.fixture
def bot(make_bot):
    return make_bot()


# =============================================================================
# States
# =============================================================================

@pytest.fixture
def make_state():
    def _create(
        stage: Stage = Stage.GREETING,
        user_id: str = "u1",
        contact: Optional[str] = None,
        **fields,
    ) -> ConversationState:
        state = ConversationState(user_id=user_id, stage=stage)
        for name, value in fields.items():
            setattr(state.collected_fields, name, value)
        state.collected_fields.contact = contact
        return state
    return _create
