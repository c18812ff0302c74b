"""
askmoe/features/questions/service.py

Ask flow after admission control: entitlement -> canonical answer cache -> provider.

Quota is spent on every admitted ask, cache hit or not: asking is metered,
generation is not.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from askmoe.core.config import settings
from askmoe.core.database import CANONICAL_KEY_MAX_CHARS, TAG_MAX_CHARS
from askmoe.core.errors import AppError, DuplicateKeyError, EmptyResponseError, ValidationError
from askmoe.core.logging import log_event
from askmoe.core.metrics import answer_cache_total
from askmoe.features.ai.prompts import build_system_prompt
from askmoe.features.ai.provider import ReasoningProvider
from askmoe.features.answers import service as answer_cache
from askmoe.features.entitlements.service import admit
from askmoe.features.questions.canonical import CanonicalParts, canonical_parts
from askmoe.models.answer import AnswerRecord, TokenUsage
from askmoe.models.plan import PlanTier

logger = logging.getLogger("askmoe")

CACHE_MODEL_LABEL = "cache"
MAX_QUESTION_CHARS = 500


@dataclass(frozen=True)
class AskResult:
    answer: AnswerRecord
    cache_hit: bool
    show_ad: bool
    tokens: Optional[TokenUsage] = None

    @property
    def model_used(self) -> str:
        return CACHE_MODEL_LABEL if self.cache_hit else self.answer.model_used

    def to_dict(self) -> dict:
        payload = {
            "answer": self.answer.answer_text,
            "modelUsed": self.model_used,
            "answerId": self.answer.id,
            "sources": list(self.answer.sources),
            "isCacheHit": self.cache_hit,
            "showAd": self.show_ad,
        }
        if self.tokens is not None:
            payload["tokens"] = {
                "prompt": self.tokens.prompt,
                "completion": self.tokens.completion,
                "total": self.tokens.total,
            }
        return payload


def select_model(plan: PlanTier) -> str:
    model = settings.PAID_MODEL if plan.is_paid else settings.FREE_MODEL
    if not model:
        logger.error("Model configuration missing", extra={"plan": plan.value})
        raise AppError("Server configuration error. Please try again later.")
    return model


def check_question(question_text: str, platform: Optional[str] = None, version: Optional[str] = None) -> CanonicalParts:
    """
    Reject asks that can never be answered, before anything is counted or consumed.

    Raises:
        ValidationError: blank text, or a canonical key longer than the store accepts
    """
    if not question_text or not question_text.strip():
        raise ValidationError("Question message is required")
    if len(question_text) > MAX_QUESTION_CHARS:
        raise ValidationError(f"Question must be at most {MAX_QUESTION_CHARS} characters")

    parts = canonical_parts(question_text, platform, version)
    if len(parts.platform) > TAG_MAX_CHARS or len(parts.version) > TAG_MAX_CHARS:
        raise ValidationError("Platform and version must be shorter")
    if len(parts.key) > CANONICAL_KEY_MAX_CHARS:
        raise ValidationError("Question is too long")
    return parts


def should_show_ad(plan: PlanTier, assistant_message_count: int) -> bool:
    """Advisory only: free and trial users see an ad on every second answer."""
    return plan.sees_ads and assistant_message_count % 2 == 0


def ask_question(
    user_id: str,
    question_text: str,
    platform: Optional[str] = None,
    version: Optional[str] = None,
    *,
    provider: ReasoningProvider,
    now: Optional[datetime] = None,
) -> AskResult:
    """
    Answer a question for a user, from the cache when possible.

    Raises:
        ValidationError: blank or oversized question
        QuotaExceededError: the plan denies the ask (nothing is consumed)
        UpstreamUnavailableError / EmptyResponseError: generation failed
            after quota was consumed
    """
    parts = check_question(question_text, platform, version)

    user = admit(user_id, now)
    show_ad = should_show_ad(user.plan, user.assistant_message_count)

    cached = answer_cache.lookup(parts.key)
    if cached is not None:
        return _serve_hit(cached, user_id, show_ad)

    answer_cache_total.inc(labels={"result": "miss"})
    log_event(
        "info",
        "[answers] cache.miss",
        user_id=user_id,
        event_type="cache.miss",
        extra={"canonical_key": parts.key},
    )

    model = select_model(user.plan)
    generation = provider.generate(
        question_text,
        model,
        system_prompt=build_system_prompt(parts.platform, parts.version),
    )
    if not generation.text or not generation.text.strip():
        raise EmptyResponseError(
            "The AI model returned an empty response. Please try again with a different question."
        )

    try:
        created = answer_cache.insert_new(
            parts.key,
            original_question=question_text,
            answer_text=generation.text,
            model_used=model,
            token_usage=generation.token_usage,
            sources=generation.sources,
            now=now,
        )
    except DuplicateKeyError:
        # A concurrent miss created the record first; ours becomes a hit
        winner = answer_cache.lookup(parts.key)
        if winner is None:
            raise
        return _serve_hit(winner, user_id, show_ad)

    log_event(
        "info",
        "[answers] created",
        user_id=user_id,
        answer_id=created.id,
        event_type="cache.insert",
        extra={"canonical_key": created.canonical_key, "model": model},
    )
    return AskResult(answer=created, cache_hit=False, show_ad=show_ad, tokens=generation.token_usage)


def _serve_hit(cached: AnswerRecord, user_id: str, show_ad: bool) -> AskResult:
    counted = answer_cache.record_hit(cached.id)
    answer_cache_total.inc(labels={"result": "hit"})
    log_event(
        "info",
        "[answers] cache.hit",
        user_id=user_id,
        answer_id=counted.id,
        event_type="cache.hit",
        extra={"popularity": counted.popularity},
    )
    return AskResult(answer=counted, cache_hit=True, show_ad=show_ad)
