"""Shared LLM utility functions for retry, fence-stripping, and JSON parsing.

This module provides:
- _strip_json_fences: Remove markdown code fences from LLM output
- _parse_json_response: Parse JSON from LLM response after stripping fences
- _invoke_with_retry: Retry messages.create() on Claude 529 OverloadedError
- _complete_json: One JSON completion with a single stricter re-ask on parse failure
"""

import json
from typing import Any

import structlog
from anthropic._exceptions import OverloadedError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

STRICT_JSON_SUFFIX = (
    "\n\nIMPORTANT: Your previous answer was not valid JSON. "
    "Respond with a single JSON object only. No prose, no markdown fences."
)


def _strip_json_fences(content: str) -> str:
    """Remove a markdown code fence wrapping the whole response."""
    content = content.strip()
    if content.startswith("```"):
        first_newline = content.find("\n")
        content = content[first_newline + 1 :] if first_newline != -1 else content[3:]
        if content.rstrip().endswith("```"):
            content = content.rstrip()[:-3]
    return content.strip()


def _parse_json_response(content: str) -> dict | list:
    """Parse JSON from LLM response, stripping fences first."""
    return json.loads(_strip_json_fences(content))


@retry(
    retry=retry_if_exception_type(OverloadedError),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "claude_overloaded_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
    ),
)
async def _invoke_with_retry(
    client: Any,
    model: str,
    system: str,
    messages: list[dict],
    max_tokens: int = 4096,
) -> str:
    """Invoke Anthropic messages.create() with retry on Claude 529 overload.

    Only OverloadedError is retried (up to 3 more attempts, exponential
    backoff capped at 30s). Every other exception propagates immediately and
    fails the phase.

    Args:
        client: AsyncAnthropic (or any object with an async .messages.create())
        model: Model name for this agent
        system: System prompt string
        messages: List of message dicts (role/content format)
        max_tokens: Maximum tokens for the response

    Returns:
        Text content of the first response block
    """
    response = await client.messages.create(
        model=model,
        system=system,
        messages=messages,
        max_tokens=max_tokens,
    )
    return response.content[0].text


async def _complete_json(
    client: Any,
    model: str,
    system: str,
    prompt: str,
    max_tokens: int = 4096,
) -> dict:
    """Ask for a JSON object, re-asking once with a stricter prompt if parsing fails.

    Raises:
        json.JSONDecodeError: If the second answer is still not JSON
        ValueError: If the answer parses but is not an object
    """
    raw = await _invoke_with_retry(client, model, system, [{"role": "user", "content": prompt}], max_tokens)
    try:
        parsed = _parse_json_response(raw)
    except json.JSONDecodeError:
        logger.info("llm_json_reask", model=model)
        raw = await _invoke_with_retry(
            client,
            model,
            system,
            [{"role": "user", "content": prompt + STRICT_JSON_SUFFIX}],
            max_tokens,
        )
        parsed = _parse_json_response(raw)

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object from {model}, got {type(parsed).__name__}")
    return parsed
