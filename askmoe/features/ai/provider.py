"""
Reasoning provider adapter.

Turns a question into answer text through a chat-completion model. The
adapter never retries: a failed call is surfaced so token spend is never
doubled behind the caller's back.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import groq

from askmoe.core.config import settings
from askmoe.core.errors import EmptyResponseError, UpstreamUnavailableError
from askmoe.core.metrics import provider_errors_total, provider_latency_seconds
from askmoe.models.answer import TokenUsage

logger = logging.getLogger("askmoe")


@dataclass(frozen=True)
class Generation:
    text: str
    token_usage: TokenUsage
    sources: List[str] = field(default_factory=list)


class ReasoningProvider(Protocol):
    def generate(self, prompt: str, model: str, *, system_prompt: Optional[str] = None) -> Generation:
        """
        Raises:
            UpstreamUnavailableError: transport, timeout or provider-side failure
            EmptyResponseError: the model returned blank text
        """
        ...


class GroqProvider:
    """Chat completions over the Groq API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        client=None,
    ):
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.temperature = temperature if temperature is not None else settings.PROVIDER_TEMPERATURE
        self.max_tokens = max_tokens if max_tokens is not None else settings.PROVIDER_MAX_TOKENS
        self._client = client

    def _get_client(self):
        if self._client is None:
            # max_retries=0: one provider call per ask
            self._client = groq.Groq(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def generate(self, prompt: str, model: str, *, system_prompt: Optional[str] = None) -> Generation:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        start = time.perf_counter()
        try:
            completion = self._get_client().chat.completions.create(
                messages=messages,
                model=model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except groq.GroqError as exc:
            provider_latency_seconds.observe(time.perf_counter() - start, labels={"model": model})
            provider_errors_total.inc(labels={"kind": type(exc).__name__})
            logger.error("[provider] error", extra={"model": model, "error_type": type(exc).__name__})
            raise UpstreamUnavailableError(
                "AI service is temporarily unavailable. Please try again shortly."
            ) from exc

        provider_latency_seconds.observe(time.perf_counter() - start, labels={"model": model})

        text = completion.choices[0].message.content if completion.choices else None
        if not text or not text.strip():
            provider_errors_total.inc(labels={"kind": "empty_response"})
            logger.error("[provider] empty response", extra={"model": model})
            raise EmptyResponseError(
                "The AI model returned an empty response. Please try again with a different question."
            )

        usage = completion.usage
        return Generation(
            text=text,
            token_usage=TokenUsage(
                prompt=getattr(usage, "prompt_tokens", 0) or 0,
                completion=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )


_default_provider: Optional[GroqProvider] = None


def get_reasoning_provider() -> ReasoningProvider:
    """FastAPI dependency; tests swap it through app.dependency_overrides."""
    global _default_provider
    if _default_provider is None:
        _default_provider = GroqProvider()
    return _default_provider
