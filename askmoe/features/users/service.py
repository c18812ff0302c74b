"""
askmoe/features/users/service.py

User entitlement records.
- get_user(user_id)
- get_or_create_user(user_id): signup with trial defaults
- set_plan(user_id, plan): plan change pushed by the payment pipeline
- set_sees_ads(user_id, sees_ads)
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from askmoe.core.config import settings
from askmoe.core.database import get_db_session, users as app_users, as_utc
from askmoe.core.errors import NotFoundError, ValidationError
from askmoe.features.entitlements.windows import normalize_now, next_month_start
from askmoe.models.plan import PlanTier
from askmoe.models.user import UserEntitlement


logger = logging.getLogger("askmoe")


def row_to_entitlement(row) -> UserEntitlement:
    return UserEntitlement(
        user_id=row.user_id,
        plan=PlanTier.parse(row.plan),
        daily_used=row.daily_used,
        daily_window_start=as_utc(row.daily_window_start),
        monthly_used=row.monthly_used,
        monthly_resets_at=as_utc(row.monthly_resets_at),
        trial_questions_used=row.trial_questions_used,
        trial_expires_at=as_utc(row.trial_expires_at),
        assistant_message_count=row.assistant_message_count,
        sees_ads=bool(row.sees_ads),
        last_seen=as_utc(row.last_seen),
        created_at=as_utc(row.created_at),
    )


def fetch_user(session, user_id: str) -> Optional[UserEntitlement]:
    row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
    return row_to_entitlement(row) if row else None


def get_user(user_id: str) -> Optional[UserEntitlement]:
    with get_db_session() as session:
        return fetch_user(session, user_id)


def require_user(user_id: str) -> UserEntitlement:
    user = get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_or_create_user(user_id: str, now: Optional[datetime] = None) -> UserEntitlement:
    """Return the user's record, creating it with trial defaults on first sight."""
    existing = get_user(user_id)
    if existing:
        return existing

    now = normalize_now(now)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    plan=PlanTier.TRIAL.value,
                    daily_used=0,
                    daily_window_start=now,
                    monthly_used=0,
                    monthly_resets_at=next_month_start(now),
                    trial_questions_used=0,
                    trial_expires_at=now + timedelta(days=settings.TRIAL_DAYS),
                    assistant_message_count=0,
                    sees_ads=True,
                    last_seen=now,
                    created_at=now,
                )
            )
    except IntegrityError:
        # Another request for the same new user won the insert
        pass
    else:
        logger.info("[users] created", extra={"user_id": user_id, "plan": PlanTier.TRIAL.value})

    return require_user(user_id)


def set_plan(user_id: str, plan: str) -> UserEntitlement:
    """
    Apply a plan change event. Counters and windows are left as they are.

    Raises:
        ValidationError: unknown plan name
        NotFoundError: unknown user
    """
    try:
        tier = PlanTier.parse(plan)
    except ValueError:
        raise ValidationError(f"Unknown plan: {plan}")

    with get_db_session() as session:
        result = session.execute(
            update(app_users).where(app_users.c.user_id == user_id).values(plan=tier.value)
        )
        if result.rowcount == 0:
            raise NotFoundError("User not found")
        updated = fetch_user(session, user_id)

    logger.info("[users] plan.changed", extra={"user_id": user_id, "plan": tier.value})
    return updated


def set_sees_ads(user_id: str, sees_ads: bool) -> UserEntitlement:
    with get_db_session() as session:
        result = session.execute(
            update(app_users).where(app_users.c.user_id == user_id).values(sees_ads=bool(sees_ads))
        )
        if result.rowcount == 0:
            raise NotFoundError("User not found")
        return fetch_user(session, user_id)
