"""
Tests for StructuredLogger.
"""

import json
import logging

import pytest

from urman_bot.logger import create_test_logger, mask_phone


class CaptureHandler(logging.Handler):

    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.fixture
def test_logger():
    return create_test_logger("unit")


@pytest.fixture
def captured(test_logger):
    handler = CaptureHandler()
    test_logger.logger.addHandler(handler)
    test_logger.logger.setLevel(logging.DEBUG)
    yield handler
    test_logger.logger.removeHandler(handler)


class TestTurnContext:

    def test_name(self, test_logger):
        assert test_logger.name == "urman_bot.unit"

    def test_turn_fields_in_entry(self, test_logger):
        with test_logger.turn("42", stage="greeting"):
            entry = test_logger._format_structured("INFO", "hello", channel="telegram")

        assert entry["user_id"] == "42"
        assert entry["stage"] == "greeting"
        assert entry["channel"] == "telegram"
        assert entry["level"] == "INFO"

    def test_context_reset_after_turn(self, test_logger):
        with test_logger.turn("42"):
            test_logger.bind(stage="collecting_area")
            assert test_logger.context == {"user_id": "42", "stage": "collecting_area"}

        assert test_logger.context == {}


class TestOutput:

    def test_readable_format(self, test_logger, captured, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "readable")

        with test_logger.turn("7", stage="collecting_area"):
            test_logger.info("Turn processed", written="area")

        assert captured.messages == ["[7/collecting_area] Turn processed [written=area]"]

    def test_json_format(self, test_logger, captured, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")

        test_logger.event("hand_off_fired", phone="89991234567")
        test_logger.metric("generation_time_ms", 12.5)

        event, metric = [json.loads(m) for m in captured.messages]
        assert event["level"] == "EVENT"
        assert event["message"] == "hand_off_fired"
        assert event["phone"] == "***4567"
        assert metric["value"] == 12.5


@pytest.mark.parametrize("text,expected", [
    ("89991234567", "***4567"),
    ("+7 (999) 123-45-67", "***4567"),
    ("звоните 8 999 123 45 67 вечером", "звоните ***4567 вечером"),
    ("10 соток", "10 соток"),
    ("12345", "12345"),
])
def test_mask_phone(text, expected):
    assert mask_phone(text) == expected
