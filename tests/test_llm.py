"""
Tests for VLLMClient: request format, retry policy, circuit breaker, stats.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from urman_bot.llm import CircuitBreaker, GenerationError, LLMStats, VLLMClient
from urman_bot.state import Role, Turn


def make_response(content="ответ", status_code=200, choices=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = ""
    if choices is None:
        choices = [{"message": {"content": content}}]
    response.json.return_value = {"choices": choices}
    return response


@pytest.fixture
def client():
    return VLLMClient(model="test-model", base_url="http://vllm.local/v1/", api_key="", max_retries=3)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("urman_bot.llm.time.sleep") as sleep:
        yield sleep


@pytest.fixture
def post():
    with patch("urman_bot.llm.requests.post") as mock_post:
        yield mock_post


class TestRequest:

    def test_messages_start_with_system_prompt(self, client, post):
        post.return_value = make_response("  ответ  ")
        turns = [Turn(Role.USER, "привет"), Turn(Role.ASSISTANT, "Здравствуйте?"), Turn(Role.USER, "вопрос")]

        assert client.complete("системная инструкция", turns) == "ответ"

        args, kwargs = post.call_args
        assert args[0] == "http://vllm.local/v1/chat/completions"
        messages = kwargs["json"]["messages"]
        assert messages[0] == {"role": "system", "content": "системная инструкция"}
        assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
        assert kwargs["json"]["model"] == "test-model"
        assert "Authorization" not in kwargs["headers"]

    def test_api_key_sent_as_bearer(self, post):
        post.return_value = make_response("ok")
        client = VLLMClient(base_url="http://vllm.local/v1", api_key="sk-test", max_retries=1)

        client.complete("sys", [])

        assert post.call_args[1]["headers"] == {"Authorization": "Bearer sk-test"}

    @pytest.mark.parametrize("response", [
        make_response(choices=[]),
        make_response(content=""),
        make_response(content=None),
    ])
    def test_empty_completion_not_retried(self, client, post, response):
        post.return_value = response

        with pytest.raises(GenerationError):
            client.complete("sys", [])

        assert post.call_count == 1

    def test_malformed_json(self, client, post):
        response = make_response()
        response.json.side_effect = ValueError("not json")
        post.return_value = response

        with pytest.raises(GenerationError):
            client.complete("sys", [])


class TestRetry:

    def test_timeout_retried_then_succeeds(self, client, post, no_sleep):
        post.side_effect = [requests.exceptions.Timeout("slow"), make_response("ответ")]

        assert client.complete("sys", []) == "ответ"

        assert post.call_count == 2
        assert client.stats.total_retries == 1
        no_sleep.assert_called_once_with(VLLMClient.INITIAL_DELAY)

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status(self, client, post, status):
        post.side_effect = [make_response(status_code=status), make_response("ответ")]
        assert client.complete("sys", []) == "ответ"

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_error_not_retried(self, client, post, status):
        post.return_value = make_response(status_code=status)

        with pytest.raises(GenerationError):
            client.complete("sys", [])

        assert post.call_count == 1

    def test_all_retries_fail(self, client, post, no_sleep):
        post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(GenerationError):
            client.complete("sys", [])

        assert post.call_count == 3
        assert client.stats.failed_requests == 1
        assert [c.args[0] for c in no_sleep.call_args_list] == [1.0, 2.0]


class TestCircuitBreaker:

    def test_opens_after_threshold(self, post):
        post.side_effect = requests.exceptions.ConnectionError()
        client = VLLMClient(base_url="http://vllm.local/v1", max_retries=1)

        for _ in range(VLLMClient.CIRCUIT_BREAKER_THRESHOLD):
            with pytest.raises(GenerationError):
                client.complete("sys", [])
        assert client.is_circuit_open

        with pytest.raises(GenerationError):
            client.complete("sys", [])

        assert post.call_count == VLLMClient.CIRCUIT_BREAKER_THRESHOLD
        assert client.stats.circuit_breaker_trips == 1

    def test_reset(self, post):
        post.side_effect = requests.exceptions.ConnectionError()
        client = VLLMClient(base_url="http://vllm.local/v1", max_retries=1)
        for _ in range(VLLMClient.CIRCUIT_BREAKER_THRESHOLD):
            with pytest.raises(GenerationError):
                client.complete("sys", [])

        client.reset_circuit_breaker()

        assert not client.is_circuit_open

    def test_disabled(self, post):
        post.side_effect = requests.exceptions.ConnectionError()
        client = VLLMClient(base_url="http://vllm.local/v1", max_retries=1, enable_circuit_breaker=False)

        for _ in range(VLLMClient.CIRCUIT_BREAKER_THRESHOLD + 2):
            with pytest.raises(GenerationError):
                client.complete("sys", [])

        assert post.call_count == VLLMClient.CIRCUIT_BREAKER_THRESHOLD + 2

    def test_half_open_after_timeout(self):
        breaker = CircuitBreaker(threshold=2, timeout=60)
        breaker.record_failure()
        assert breaker.record_failure()
        assert not breaker.allow()

        breaker.open_until = 1.0  # timeout elapsed

        assert breaker.allow()
        breaker.record_success()
        assert breaker.failures == 0
        assert not breaker.is_open


class TestStats:

    def test_empty_stats(self):
        stats = LLMStats()
        assert stats.success_rate == 100.0
        assert stats.average_response_time_ms == 0.0

    def test_stats_dict(self, client, post):
        post.return_value = make_response("ok")
        client.complete("sys", [])

        data = client.get_stats_dict()
        assert data["total_requests"] == 1
        assert data["successful_requests"] == 1
        assert data["success_rate"] == 100.0
        assert data["circuit_breaker_open"] is False

    def test_health_check_strips_v1(self, client):
        with patch("urman_bot.llm.requests.get", return_value=MagicMock(status_code=200)) as get:
            assert client.health_check()
        assert get.call_args[0][0] == "http://vllm.local/health"
