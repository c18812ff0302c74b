"""
askmoe/features/entitlements/service.py

Per-user question quota.

Handles:
- Admission policy by plan (trial / free / paid)
- Atomic consumption with daily and monthly window rollover
- Check-and-consume as one conditional UPDATE (no read-then-write gap)
- Usage summaries for the account page
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy import update, case, and_, or_

from askmoe.core.config import settings
from askmoe.core.database import get_db_session, users as app_users
from askmoe.core.errors import NotFoundError, QuotaExceededError
from askmoe.core.metrics import quota_denied_total
from askmoe.features.entitlements.windows import (
    normalize_now,
    day_start,
    next_day_start,
    next_month_start,
    daily_window_is_stale,
    monthly_window_is_stale,
)
from askmoe.features.users.service import fetch_user, require_user
from askmoe.models.plan import PlanTier, PAID_PLANS
from askmoe.models.user import UserEntitlement


logger = logging.getLogger("askmoe")

REASON_TRIAL_EXHAUSTED = "Trial questions exhausted"
REASON_TRIAL_EXPIRED = "Trial period expired"
REASON_DAILY_LIMIT = "Daily limit reached"

# Extra attempts when the conditional update misses but a fresh read says the
# user may ask (plan changed or a window rolled between the two statements)
_ADMIT_ATTEMPTS = 3


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    reason: Optional[str] = None


def can_ask_question(user: UserEntitlement, now: Optional[datetime] = None) -> AdmissionDecision:
    """Read-only policy check. Exactly one path applies, chosen by plan.

    Monthly counters never deny: for paid plans they are informational.
    """
    now = normalize_now(now)

    if user.plan == PlanTier.TRIAL:
        if user.trial_questions_used >= settings.TRIAL_QUESTION_LIMIT:
            return AdmissionDecision(False, REASON_TRIAL_EXHAUSTED)
        if user.trial_expires_at is not None and now > user.trial_expires_at:
            return AdmissionDecision(False, REASON_TRIAL_EXPIRED)
        return AdmissionDecision(True)

    if user.plan == PlanTier.FREE:
        used_today = 0 if daily_window_is_stale(user.daily_window_start, now) else user.daily_used
        if used_today >= settings.FREE_DAILY_LIMIT:
            return AdmissionDecision(False, REASON_DAILY_LIMIT)
        return AdmissionDecision(True)

    return AdmissionDecision(True)


def _consumption_values(now: datetime) -> Dict[str, Any]:
    """SET clause that rolls stale windows and counts one question.

    Everything is expressed against the stored row so the database applies
    rollover and increment in a single statement.
    """
    u = app_users.c
    stale_day = or_(
        u.daily_window_start.is_(None),
        u.daily_window_start < day_start(now),
        u.daily_window_start >= next_day_start(now),
    )
    stale_month = or_(u.monthly_resets_at.is_(None), u.monthly_resets_at <= now)
    return {
        "daily_used": case((stale_day, 1), else_=u.daily_used + 1),
        "daily_window_start": case((stale_day, now), else_=u.daily_window_start),
        "monthly_used": case((stale_month, 1), else_=u.monthly_used + 1),
        "monthly_resets_at": case((stale_month, next_month_start(now)), else_=u.monthly_resets_at),
        "trial_questions_used": case(
            (u.plan == PlanTier.TRIAL.value, u.trial_questions_used + 1),
            else_=u.trial_questions_used,
        ),
        "assistant_message_count": u.assistant_message_count + 1,
        "last_seen": now,
    }


def _admission_condition(now: datetime):
    """WHERE clause mirroring can_ask_question for the stored row."""
    u = app_users.c
    stale_day = or_(
        u.daily_window_start.is_(None),
        u.daily_window_start < day_start(now),
        u.daily_window_start >= next_day_start(now),
    )
    trial_ok = and_(
        u.plan == PlanTier.TRIAL.value,
        u.trial_questions_used < settings.TRIAL_QUESTION_LIMIT,
        or_(u.trial_expires_at.is_(None), u.trial_expires_at >= now),
    )
    free_ok = and_(
        u.plan == PlanTier.FREE.value,
        or_(stale_day, u.daily_used < settings.FREE_DAILY_LIMIT),
    )
    paid_ok = u.plan.in_([plan.value for plan in PAID_PLANS])
    return or_(trial_ok, free_ok, paid_ok)


def consume(user_id: str, now: Optional[datetime] = None) -> UserEntitlement:
    """
    Count one question against the user, unconditionally.

    Raises:
        NotFoundError: unknown user
    """
    now = normalize_now(now)
    with get_db_session() as session:
        result = session.execute(
            update(app_users)
            .where(app_users.c.user_id == user_id)
            .values(**_consumption_values(now))
        )
        if result.rowcount == 0:
            raise NotFoundError("User not found")
        return fetch_user(session, user_id)


def admit(user_id: str, now: Optional[datetime] = None) -> UserEntitlement:
    """
    Check the user's entitlement and consume one question in one statement.

    A denied ask leaves the record untouched.

    Returns:
        The record after consumption

    Raises:
        QuotaExceededError: the plan's policy denies the ask (message is the reason)
        NotFoundError: unknown user
    """
    now = normalize_now(now)
    for _ in range(_ADMIT_ATTEMPTS):
        with get_db_session() as session:
            result = session.execute(
                update(app_users)
                .where(app_users.c.user_id == user_id)
                .where(_admission_condition(now))
                .values(**_consumption_values(now))
            )
            if result.rowcount:
                admitted = fetch_user(session, user_id)
                logger.info(
                    "[entitlement] CONSUMED",
                    extra={
                        "user_id": user_id,
                        "plan": admitted.plan.value,
                        "daily_used": admitted.daily_used,
                        "monthly_used": admitted.monthly_used,
                    },
                )
                return admitted

        current = require_user(user_id)
        decision = can_ask_question(current, now)
        if not decision.allowed:
            quota_denied_total.inc(labels={"plan": current.plan.value})
            logger.warning(
                "[entitlement] DENIED",
                extra={"user_id": user_id, "plan": current.plan.value, "reason": decision.reason},
            )
            raise QuotaExceededError(decision.reason)

    raise QuotaExceededError("Question quota is temporarily unavailable")


def monthly_limit(plan: PlanTier) -> int:
    if plan == PlanTier.TRIAL:
        return settings.TRIAL_QUESTION_LIMIT
    if plan == PlanTier.FREE:
        return settings.FREE_DAILY_LIMIT * 30
    return {
        PlanTier.HOBBY: settings.HOBBY_MONTHLY_LIMIT,
        PlanTier.OCCASIONAL: settings.OCCASIONAL_MONTHLY_LIMIT,
        PlanTier.PROFESSIONAL: settings.PROFESSIONAL_MONTHLY_LIMIT,
        PlanTier.ENTERPRISE: settings.ENTERPRISE_MONTHLY_LIMIT,
    }[plan]


def usage_summary(user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Counters as they stand now; stale windows read as zero without being rolled."""
    now = normalize_now(now)
    user = require_user(user_id)
    daily_used = 0 if daily_window_is_stale(user.daily_window_start, now) else user.daily_used
    monthly_stale = monthly_window_is_stale(user.monthly_resets_at, now)
    decision = can_ask_question(user, now)
    return {
        "plan": user.plan.value,
        "dailyUsed": daily_used,
        "dailyLimit": settings.FREE_DAILY_LIMIT,
        "monthlyUsed": 0 if monthly_stale else user.monthly_used,
        "monthlyLimit": monthly_limit(user.plan),
        "monthlyResetsAt": (next_month_start(now) if monthly_stale else user.monthly_resets_at).isoformat(),
        "trialQuestionsUsed": user.trial_questions_used,
        "trialExpiresAt": user.trial_expires_at.isoformat() if user.trial_expires_at else None,
        "assistantMessageCount": user.assistant_message_count,
        "canAsk": decision.allowed,
        "reason": decision.reason,
    }
