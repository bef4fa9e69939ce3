"""LLM access for every pipeline stage.

Wraps ``litellm.acompletion`` with a timeout and the circuit breaker. When no
model is configured, or the breaker is open, ``generate`` returns an empty
result whose provider is ``fallback``; stages treat that as a signal to use
their deterministic path rather than as an error.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..exceptions import LLMProviderError
from .circuit_breaker import CircuitBreaker, CircuitBreakerOpen, get_breaker

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = "fallback"

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@dataclass
class LLMResult:
    content: str
    provider: str
    model: str = ""
    tokens_used: int = 0

    @property
    def is_fallback(self) -> bool:
        return self.provider == FALLBACK_PROVIDER


def fallback_result() -> LLMResult:
    return LLMResult(content="", provider=FALLBACK_PROVIDER)


class LLMClient:
    """Async completion client over litellm."""

    def __init__(
        self,
        model: str = "",
        api_key: str = "",
        api_base: str = "",
        timeout: float = 120.0,
        max_tokens: int = 4096,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.breaker = breaker or (get_breaker(model) if model else None)

    @property
    def is_configured(self) -> bool:
        return bool(self.model)

    @property
    def provider_name(self) -> str:
        return self.model.split("/", 1)[0] if "/" in self.model else "litellm"

    async def generate(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> LLMResult:
        """Complete *prompt*.

        Raises:
            LLMProviderError: the provider call failed or timed out.
        """
        if not self.is_configured:
            return fallback_result()

        try:
            self.breaker.check()
        except CircuitBreakerOpen as e:
            logger.warning(f"LLM circuit open, using fallback: {e}")
            return fallback_result()

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            import litellm

            response = await asyncio.wait_for(litellm.acompletion(**kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self.breaker.record_failure()
            raise LLMProviderError(f"LLM call timed out after {self.timeout:.0f}s", model=self.model) from e
        except Exception as e:
            self.breaker.record_failure()
            raise LLMProviderError(f"LLM call failed: {e}", model=self.model) from e

        self.breaker.record_success()
        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        tokens = (getattr(usage, "total_tokens", 0) or 0) if usage is not None else 0
        logger.debug(f"LLM completion: {len(content)} chars, {tokens} tokens")
        return LLMResult(content=content, provider=self.provider_name, model=self.model, tokens_used=tokens)


def parse_llm_json(text: str) -> Optional[Dict[str, Any]]:
    """Return the first JSON object in *text*, or None.

    Accepts bare JSON, JSON inside a code fence, or JSON surrounded by prose.
    """
    if not text:
        return None

    candidates = [m.group(1) for m in _FENCE.finditer(text)] + [text]
    decoder = json.JSONDecoder()
    for candidate in candidates:
        start = candidate.find("{")
        while start != -1:
            try:
                value, _ = decoder.raw_decode(candidate, start)
            except json.JSONDecodeError:
                start = candidate.find("{", start + 1)
                continue
            if isinstance(value, dict):
                return value
            start = candidate.find("{", start + 1)
    return None
