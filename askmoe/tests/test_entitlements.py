"""Tests for the entitlement tracker: policy, consumption and window rollover."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from askmoe.core.database import get_db_session, users as app_users
from askmoe.core.errors import NotFoundError, QuotaExceededError
from askmoe.core.metrics import quota_denied_total
from askmoe.features.entitlements.service import (
    REASON_DAILY_LIMIT,
    REASON_TRIAL_EXHAUSTED,
    REASON_TRIAL_EXPIRED,
    admit,
    can_ask_question,
    consume,
    usage_summary,
)
from askmoe.features.users.service import get_or_create_user, get_user, set_plan

NOW = datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)


def _seed_user(user_id: str, now: datetime = NOW, **fields):
    get_or_create_user(user_id, now=now)
    if fields:
        with get_db_session() as session:
            session.execute(update(app_users).where(app_users.c.user_id == user_id).values(**fields))
    return get_user(user_id)


def test_new_user_starts_on_trial():
    user = get_or_create_user("new-user", now=NOW)
    assert user.plan.value == "trial"
    assert user.trial_questions_used == 0
    assert user.trial_expires_at == NOW + timedelta(days=7)
    assert user.monthly_resets_at == datetime(2025, 4, 1, tzinfo=timezone.utc)


def test_get_or_create_is_idempotent():
    first = get_or_create_user("same", now=NOW)
    second = get_or_create_user("same", now=NOW + timedelta(days=3))
    assert first.created_at == second.created_at
    assert second.trial_expires_at == first.trial_expires_at


def test_trial_fifth_question_allowed_sixth_denied():
    _seed_user("trial-user")
    for expected in range(1, 6):
        admitted = admit("trial-user", now=NOW)
        assert admitted.trial_questions_used == expected

    with pytest.raises(QuotaExceededError) as exc_info:
        admit("trial-user", now=NOW)
    assert exc_info.value.message == REASON_TRIAL_EXHAUSTED
    assert get_user("trial-user").trial_questions_used == 5


def test_expired_trial_is_denied_with_questions_left():
    user = _seed_user("expired", trial_questions_used=2, trial_expires_at=NOW - timedelta(seconds=1))
    decision = can_ask_question(user, NOW)
    assert not decision.allowed
    assert decision.reason == REASON_TRIAL_EXPIRED

    with pytest.raises(QuotaExceededError):
        admit("expired", now=NOW)


def test_trial_exhaustion_reported_before_expiry():
    user = _seed_user("both", trial_questions_used=5, trial_expires_at=NOW - timedelta(days=1))
    assert can_ask_question(user, NOW).reason == REASON_TRIAL_EXHAUSTED


def test_free_user_at_daily_limit_is_denied_without_mutation():
    _seed_user("free-full", plan="free", daily_used=5, daily_window_start=NOW - timedelta(hours=2))
    before = get_user("free-full")

    with pytest.raises(QuotaExceededError) as exc_info:
        admit("free-full", now=NOW)

    assert exc_info.value.message == REASON_DAILY_LIMIT
    assert exc_info.value.extra_payload() == {"upgradeRequired": True}
    assert get_user("free-full") == before
    assert quota_denied_total.value(labels={"plan": "free"}) == 1


def test_free_user_stale_daily_window_resets_to_one():
    yesterday = NOW - timedelta(days=1)
    _seed_user("free-stale", plan="free", daily_used=5, daily_window_start=yesterday)

    admitted = admit("free-stale", now=NOW)

    assert admitted.daily_used == 1
    assert admitted.daily_window_start == NOW


def test_daily_window_rolls_at_utc_midnight():
    late = datetime(2025, 3, 14, 23, 59, tzinfo=timezone.utc)
    early = datetime(2025, 3, 15, 0, 1, tzinfo=timezone.utc)
    _seed_user("free-midnight", plan="free", daily_used=4, daily_window_start=late)

    assert admit("free-midnight", now=late).daily_used == 5
    assert admit("free-midnight", now=early).daily_used == 1


def test_monthly_window_rolls_on_first_ask_of_new_month():
    _seed_user("hobby", plan="hobby", monthly_used=40, monthly_resets_at=datetime(2025, 3, 1, tzinfo=timezone.utc))

    admitted = consume("hobby", now=NOW)

    assert admitted.monthly_used == 1
    assert admitted.monthly_resets_at == datetime(2025, 4, 1, tzinfo=timezone.utc)


def test_monthly_reset_from_december_goes_to_january():
    december = datetime(2025, 12, 31, 23, 0, tzinfo=timezone.utc)
    _seed_user("dec", now=december)
    assert get_user("dec").monthly_resets_at == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_paid_plans_are_never_denied_by_monthly_counter():
    user = _seed_user("pro", plan="professional", monthly_used=10_000, daily_used=999, daily_window_start=NOW)
    assert can_ask_question(user, NOW).allowed
    assert admit("pro", now=NOW).monthly_used == 10_001


def test_trial_counter_only_moves_on_trial_plan():
    _seed_user("upgraded", trial_questions_used=3)
    set_plan("upgraded", "hobby")

    admitted = admit("upgraded", now=NOW)

    assert admitted.trial_questions_used == 3
    assert admitted.daily_used == 1
    assert admitted.assistant_message_count == 1


def test_plan_change_keeps_counters():
    _seed_user("changer", plan="free", daily_used=3, daily_window_start=NOW)
    updated = set_plan("changer", "pro")
    assert updated.plan.value == "professional"
    assert updated.daily_used == 3


def test_consume_unknown_user_is_not_found():
    with pytest.raises(NotFoundError):
        consume("ghost", now=NOW)


def test_concurrent_consumption_loses_no_increments():
    _seed_user("busy", plan="enterprise", daily_window_start=NOW)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: consume("busy", now=NOW), range(40)))

    user = get_user("busy")
    assert user.daily_used == 40
    assert user.monthly_used == 40
    assert user.assistant_message_count == 40


def test_concurrent_admission_never_overshoots_trial_limit():
    _seed_user("racer")

    def attempt(_):
        try:
            admit("racer", now=NOW)
            return True
        except QuotaExceededError:
            return False

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(20)))

    assert sum(results) == 5
    assert get_user("racer").trial_questions_used == 5


def test_usage_summary_reads_stale_windows_as_zero():
    _seed_user(
        "summary",
        plan="free",
        daily_used=5,
        daily_window_start=NOW - timedelta(days=2),
        monthly_used=12,
        monthly_resets_at=datetime(2025, 4, 1, tzinfo=timezone.utc),
    )

    summary = usage_summary("summary", now=NOW)

    assert summary["dailyUsed"] == 0
    assert summary["dailyLimit"] == 5
    assert summary["monthlyUsed"] == 12
    assert summary["monthlyLimit"] == 150
    assert summary["canAsk"] is True
    assert get_user("summary").daily_used == 5
