"""Tests for LLM helper utilities: fence stripping, JSON parsing and retry."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from anthropic._exceptions import OverloadedError
from tenacity import wait_none

from app.agent.llm_helpers import (
    STRICT_JSON_SUFFIX,
    _complete_json,
    _invoke_with_retry,
    _parse_json_response,
    _strip_json_fences,
)

pytestmark = pytest.mark.unit

MODEL = "claude-sonnet-4-20250514"


def _make_overloaded_error():
    """Create a realistic OverloadedError instance using httpx request/response."""
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(status_code=529, text="Overloaded", request=request)
    return OverloadedError(message="Overloaded", response=response, body=None)


def _response(text: str) -> MagicMock:
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text=text)]
    return mock_response


def _make_mock_client(*texts: str) -> MagicMock:
    """Mock AsyncAnthropic whose messages.create() returns ``texts`` in order."""
    client = MagicMock()
    client.messages = MagicMock()
    client.messages.create = AsyncMock(side_effect=[_response(t) for t in texts])
    return client


class TestStripJsonFences:
    def test_no_fences(self):
        assert _strip_json_fences('{"key": "value"}') == '{"key": "value"}'

    def test_json_fence(self):
        assert _strip_json_fences('```json\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_fence_with_whitespace(self):
        assert _strip_json_fences('  ```json\n{"key": "value"}\n```  ') == '{"key": "value"}'

    def test_nested_content_preserved(self):
        raw = '```json\n{"code": "```python\\nprint()\\n```"}\n```'
        # Only strips outermost fences
        assert _strip_json_fences(raw).startswith('{"code":')


class TestParseJsonResponse:
    def test_fenced_json(self):
        assert _parse_json_response('```json\n{"key": "value"}\n```') == {"key": "value"}

    def test_array_json(self):
        assert _parse_json_response('[{"id": 1}, {"id": 2}]') == [{"id": 1}, {"id": 2}]

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            _parse_json_response("not json at all")


class TestInvokeWithRetry:
    async def test_success_on_first_try(self):
        client = _make_mock_client("OK")

        result = await _invoke_with_retry(client, MODEL, "system prompt", [{"role": "user", "content": "test"}])

        assert result == "OK"
        assert client.messages.create.call_count == 1

    async def test_passes_model_and_params_to_create(self):
        client = _make_mock_client("response")
        messages = [{"role": "user", "content": "Hello"}]

        await _invoke_with_retry(client, MODEL, "You are helpful", messages, max_tokens=123)

        call_kwargs = client.messages.create.call_args.kwargs
        assert call_kwargs == {"model": MODEL, "system": "You are helpful", "messages": messages, "max_tokens": 123}

    async def test_retries_on_overloaded(self):
        """Retries on OverloadedError and succeeds on second attempt."""
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=[_make_overloaded_error(), _response("OK")])

        result = await _invoke_with_retry.retry_with(wait=wait_none())(
            client, MODEL, "system prompt", [{"role": "user", "content": "test"}]
        )

        assert result == "OK"
        assert client.messages.create.call_count == 2

    async def test_does_not_retry_on_other_errors(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=ValueError("Bad input"))

        with pytest.raises(ValueError, match="Bad input"):
            await _invoke_with_retry(client, MODEL, "system prompt", [{"role": "user", "content": "test"}])

        assert client.messages.create.call_count == 1

    async def test_exhausted_retries_reraise(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=_make_overloaded_error())

        with pytest.raises(OverloadedError):
            await _invoke_with_retry.retry_with(wait=wait_none())(
                client, MODEL, "system prompt", [{"role": "user", "content": "test"}]
            )

        assert client.messages.create.call_count == 4  # 1 original + 3 retries


class TestCompleteJson:
    async def test_parses_fenced_object(self):
        client = _make_mock_client('```json\n{"score": 80}\n```')

        assert await _complete_json(client, MODEL, "sys", "prompt") == {"score": 80}

    async def test_reasks_once_with_strict_suffix(self):
        client = _make_mock_client("Sure! Here is the analysis.", '{"score": 80}')

        result = await _complete_json(client, MODEL, "sys", "prompt")

        assert result == {"score": 80}
        assert client.messages.create.call_count == 2
        second_prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert second_prompt == "prompt" + STRICT_JSON_SUFFIX

    async def test_second_parse_failure_propagates(self):
        client = _make_mock_client("nope", "still nope")

        with pytest.raises(json.JSONDecodeError):
            await _complete_json(client, MODEL, "sys", "prompt")

    async def test_non_object_rejected(self):
        client = _make_mock_client("[1, 2, 3]")

        with pytest.raises(ValueError, match="Expected a JSON object"):
            await _complete_json(client, MODEL, "sys", "prompt")
