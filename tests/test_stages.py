"""
Tests for StageMachine transitions and fallback questions.
"""

import pytest

from urman_bot.extractors import FieldUpdate
from urman_bot.stages import StageMachine
from urman_bot.state import STAGE_ORDER, Stage
from urman_bot.yaml_config.constants import STAGE_QUESTIONS


@pytest.fixture
def machine():
    return StageMachine()


class TestTransitions:

    @pytest.mark.parametrize("current,expected", [
        (Stage.GREETING, Stage.COLLECTING_AREA),
        (Stage.COLLECTING_AREA, Stage.COLLECTING_REGION),
        (Stage.COLLECTING_REGION, Stage.COLLECTING_PURPOSE),
        (Stage.COLLECTING_PURPOSE, Stage.COLLECTING_STAGE),
        (Stage.COLLECTING_STAGE, Stage.COLLECTING_CONTACT),
    ])
    def test_advances_one_step(self, machine, current, expected):
        assert machine.next_stage(current, FieldUpdate({"x": "y"})) is expected

    def test_greeting_advances_without_name(self, machine):
        assert machine.next_stage(Stage.GREETING, FieldUpdate()) is Stage.COLLECTING_AREA

    def test_contact_requires_phone(self, machine):
        update = FieldUpdate({"contact": "позвоните мне"}, contact_is_phone=False)
        assert machine.next_stage(Stage.COLLECTING_CONTACT, update) is Stage.COLLECTING_CONTACT

    def test_contact_with_phone_completes(self, machine):
        update = FieldUpdate({"contact": "89991234567"}, contact_is_phone=True)
        assert machine.next_stage(Stage.COLLECTING_CONTACT, update) is Stage.COMPLETED

    def test_completed_is_absorbing(self, machine):
        update = FieldUpdate({"contact": "89991234567"}, contact_is_phone=True)
        assert machine.next_stage(Stage.COMPLETED, update) is Stage.COMPLETED

    @pytest.mark.parametrize("current", list(Stage))
    def test_never_moves_backwards(self, machine, current):
        for update in (FieldUpdate(), FieldUpdate({"contact": "1"}, contact_is_phone=True)):
            assert machine.next_stage(current, update).order >= current.order


class TestFallbackQuestions:

    @pytest.mark.parametrize("stage", [s for s in Stage if not s.is_terminal])
    def test_every_open_stage_has_question(self, machine, stage):
        question = machine.fallback_question(stage)
        assert question
        assert question.endswith("?")

    def test_completed_has_no_question(self, machine):
        assert machine.fallback_question(Stage.COMPLETED) is None

    def test_custom_questions(self):
        machine = StageMachine(questions={"collecting_area": "Сколько соток?"})
        assert machine.fallback_question(Stage.COLLECTING_AREA) == "Сколько соток?"
        assert machine.fallback_question(Stage.GREETING) is None

    def test_questions_loaded_from_constants(self):
        assert set(STAGE_QUESTIONS) == {s.value for s in STAGE_ORDER if not s.is_terminal}


def test_field_for_stage():
    assert StageMachine.field_for(Stage.COLLECTING_REGION) == "region"
    assert StageMachine.field_for(Stage.GREETING) is None


def test_stage_label():
    assert StageMachine.label(Stage.COMPLETED) == "Завершено"
