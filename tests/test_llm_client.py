"""Tests for the litellm wrapper and JSON extraction."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from docsynth.exceptions import LLMProviderError
from docsynth.integrations.circuit_breaker import CircuitBreaker, CircuitState
from docsynth.integrations.llm_client import FALLBACK_PROVIDER, LLMClient, parse_llm_json


def _response(content, total_tokens=42):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


class TestGenerate:
    @pytest.mark.asyncio
    async def test_unconfigured_client_falls_back(self):
        with patch("litellm.acompletion", new_callable=AsyncMock) as completion:
            result = await LLMClient(model="").generate("hi")
        assert result.provider == FALLBACK_PROVIDER
        assert result.is_fallback is True
        completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_passes_system_prompt_and_credentials(self):
        client = LLMClient(model="anthropic/claude-test", api_key="k", api_base="http://llm",
                           breaker=CircuitBreaker("anthropic/claude-test"))
        with patch("litellm.acompletion", new_callable=AsyncMock, return_value=_response("done")) as completion:
            result = await client.generate("prompt", max_tokens=100, system="be brief")

        kwargs = completion.call_args.kwargs
        assert kwargs["messages"] == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "prompt"},
        ]
        assert kwargs["max_tokens"] == 100
        assert kwargs["api_key"] == "k"
        assert kwargs["api_base"] == "http://llm"
        assert result.content == "done"
        assert result.provider == "anthropic"
        assert result.tokens_used == 42

    @pytest.mark.asyncio
    async def test_provider_error_raises_and_counts_failure(self):
        breaker = CircuitBreaker("m/x", failure_threshold=1)
        client = LLMClient(model="m/x", breaker=breaker)
        with patch("litellm.acompletion", new_callable=AsyncMock, side_effect=RuntimeError("quota")):
            with pytest.raises(LLMProviderError) as exc_info:
                await client.generate("prompt")
        assert "quota" in exc_info.value.message
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_to_fallback(self):
        breaker = CircuitBreaker("m/x", failure_threshold=1, cooldown_seconds=600)
        breaker.record_failure()
        client = LLMClient(model="m/x", breaker=breaker)
        with patch("litellm.acompletion", new_callable=AsyncMock) as completion:
            result = await client.generate("prompt")
        assert result.is_fallback is True
        completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_raises_provider_error(self):
        async def slow(**kwargs):
            await asyncio.sleep(10)

        client = LLMClient(model="m/x", timeout=0.01, breaker=CircuitBreaker("m/x"))
        with patch("litellm.acompletion", side_effect=slow):
            with pytest.raises(LLMProviderError) as exc_info:
                await client.generate("prompt")
        assert "timed out" in exc_info.value.message


class TestParseJson:
    def test_bare_object(self):
        assert parse_llm_json('{"a": 1}') == {"a": 1}

    def test_fenced_object(self):
        assert parse_llm_json('Here:\n```json\n{"a": [1, 2]}\n```\nDone') == {"a": [1, 2]}

    def test_object_inside_prose(self):
        assert parse_llm_json('The result is {"ok": true} as requested.') == {"ok": True}

    def test_skips_invalid_braces(self):
        assert parse_llm_json('{not json} then {"b": 2}') == {"b": 2}

    @pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]"])
    def test_no_object(self, text):
        assert parse_llm_json(text) is None
