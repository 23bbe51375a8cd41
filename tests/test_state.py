"""
Tests for ConversationState and CollectedFields.
"""

from urman_bot.state import (
    HISTORY_LIMIT,
    CollectedFields,
    ConversationState,
    Role,
    Stage,
    Turn,
)


class TestCollectedFields:

    def test_set_once_writes_empty_field(self):
        fields = CollectedFields()
        assert fields.set_once("area", "10 соток")
        assert fields.area == "10 соток"

    def test_set_once_never_overwrites(self):
        fields = CollectedFields(name="Иван")
        assert not fields.set_once("name", "Пётр")
        assert fields.name == "Иван"

    def test_set_once_ignores_empty_value(self):
        fields = CollectedFields()
        assert not fields.set_once("region", "")
        assert fields.region is None

    def test_contact_keeps_latest_value(self):
        fields = CollectedFields()
        fields.set_once("contact", "позвоните мне")
        fields.set_once("contact", "89991234567")
        assert fields.contact == "89991234567"

    def test_filled_skips_empty(self):
        fields = CollectedFields(name="Иван", region="Казань")
        assert fields.filled() == {"name": "Иван", "region": "Казань"}

    def test_to_dict_has_all_fields(self):
        assert set(CollectedFields().to_dict()) == {
            "name", "area", "region", "purpose", "stage", "contact",
        }


class TestConversationState:

    def test_defaults(self):
        state = ConversationState(user_id="42")
        assert state.stage is Stage.GREETING
        assert state.history == []
        assert not state.hand_off_fired
        assert state.last_question is None

    def test_record_exchange(self):
        state = ConversationState(user_id="42")
        state.record_exchange("привет", "Здравствуйте! Как вас зовут?")

        assert state.history == [
            Turn(Role.USER, "привет"),
            Turn(Role.ASSISTANT, "Здравствуйте! Как вас зовут?"),
        ]
        assert state.turn_count == 1

    def test_history_is_bounded(self):
        state = ConversationState(user_id="42")
        for i in range(HISTORY_LIMIT):
            state.record_exchange(f"user {i}", f"bot {i}")

        assert len(state.history) == HISTORY_LIMIT
        assert state.history[-1].content == f"bot {HISTORY_LIMIT - 1}"
        assert state.history[0].role is Role.USER

    def test_recent_history(self):
        state = ConversationState(user_id="42")
        for i in range(3):
            state.record_exchange(f"user {i}", f"bot {i}")

        recent = state.recent_history(5)
        assert [t.content for t in recent] == ["bot 0", "user 1", "bot 1", "user 2", "bot 2"]
        assert state.recent_history(0) == []

    def test_copy_is_independent(self):
        state = ConversationState(user_id="42")
        state.record_exchange("привет", "Здравствуйте?")
        draft = state.copy()

        draft.collected_fields.name = "Иван"
        draft.stage = Stage.COLLECTING_AREA
        draft.record_exchange("Иван", "Какая площадь?")

        assert state.collected_fields.name is None
        assert state.stage is Stage.GREETING
        assert len(state.history) == 2

    def test_replace_last_assistant(self):
        state = ConversationState(user_id="42")
        state.record_exchange("a", "first")
        state.record_exchange("b", "second")

        state.replace_last_assistant("replaced")

        assert state.history[-1].content == "replaced"
        assert state.history[1].content == "first"

    def test_to_dict(self):
        state = ConversationState(user_id="42", stage=Stage.COLLECTING_REGION)
        state.record_exchange("10 соток", "В каком регионе?")

        data = state.to_dict()

        assert data["stage"] == "collecting_region"
        assert data["history"][0] == {"role": "user", "content": "10 соток"}
        assert data["turn_count"] == 1
