"""
askmoe/features/answers/service.py

Canonical answer cache.

Handles:
- Lookup by canonical key (no side effects)
- Insert-if-absent with the store's unique key as the arbiter
- Atomic popularity and vote counters
- Published catalog listing
- Revision and publishing of answer text
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import select, insert, update, func, desc
from sqlalchemy.exc import IntegrityError

from askmoe.core.database import get_db_session, answers, as_utc
from askmoe.core.errors import DuplicateKeyError, NotFoundError, ValidationError
from askmoe.features.answers.seo import build_seo_meta
from askmoe.features.questions.canonical import split_key
from askmoe.models.answer import AnswerRecord, TokenUsage


logger = logging.getLogger("askmoe")

VOTE_DIRECTIONS = ("up", "down")
MAX_PAGE_SIZE = 100


def _row_to_record(row) -> AnswerRecord:
    return AnswerRecord(
        id=row.id,
        canonical_key=row.canonical_key,
        original_question=row.original_question,
        platform=row.platform,
        version=row.version,
        answer_text=row.answer_text,
        model_used=row.model_used,
        token_usage=TokenUsage(prompt=row.prompt_tokens or 0, completion=row.completion_tokens or 0),
        sources=list(row.sources or []),
        popularity=row.popularity,
        ups=row.ups,
        downs=row.downs,
        score=row.score,
        published=bool(row.published),
        published_url=row.published_url,
        seo_title=row.seo_title,
        seo_description=row.seo_description,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _fetch(session, answer_id: str) -> Optional[AnswerRecord]:
    row = session.execute(select(answers).where(answers.c.id == answer_id)).first()
    return _row_to_record(row) if row else None


def lookup(canonical_key: str) -> Optional[AnswerRecord]:
    """Return the record for a canonical key, if any."""
    with get_db_session() as session:
        row = session.execute(
            select(answers).where(answers.c.canonical_key == canonical_key)
        ).first()
        return _row_to_record(row) if row else None


def get_answer(answer_id: str) -> AnswerRecord:
    """
    Raises:
        NotFoundError: no answer with this id
    """
    with get_db_session() as session:
        record = _fetch(session, answer_id)
    if record is None:
        raise NotFoundError("Answer not found")
    return record


def record_hit(answer_id: str) -> AnswerRecord:
    """Count one more ask against an answer.

    The increment happens in the UPDATE itself, so concurrent hits on the
    same record are all counted.
    """
    with get_db_session() as session:
        result = session.execute(
            update(answers)
            .where(answers.c.id == answer_id)
            .values(popularity=answers.c.popularity + 1)
        )
        if result.rowcount == 0:
            raise NotFoundError("Answer not found")
        return _fetch(session, answer_id)


def insert_new(
    canonical_key: str,
    *,
    original_question: str,
    answer_text: str,
    model_used: str,
    token_usage: Optional[TokenUsage] = None,
    sources: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> AnswerRecord:
    """
    Create the canonical record for a key with popularity 1.

    Raises:
        DuplicateKeyError: another writer created the key first. Callers
            re-read and count a hit instead.
    """
    now = now or datetime.now(timezone.utc)
    usage = token_usage or TokenUsage()
    parts = split_key(canonical_key)
    answer_id = str(uuid4())

    try:
        with get_db_session() as session:
            session.execute(
                insert(answers).values(
                    id=answer_id,
                    canonical_key=canonical_key,
                    original_question=original_question,
                    platform=parts.platform,
                    version=parts.version,
                    answer_text=answer_text,
                    model_used=model_used,
                    prompt_tokens=usage.prompt,
                    completion_tokens=usage.completion,
                    sources=list(sources or []),
                    popularity=1,
                    ups=0,
                    downs=0,
                    score=0,
                    published=False,
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError as exc:
        logger.info("[answers] insert.race", extra={"canonical_key": canonical_key})
        raise DuplicateKeyError(canonical_key) from exc

    return AnswerRecord(
        id=answer_id,
        canonical_key=canonical_key,
        original_question=original_question,
        platform=parts.platform,
        version=parts.version,
        answer_text=answer_text,
        model_used=model_used,
        token_usage=usage,
        sources=list(sources or []),
        popularity=1,
        created_at=now,
        updated_at=now,
    )


def apply_vote(answer_id: str, direction: str) -> AnswerRecord:
    """
    Count an anonymous up/down vote and recompute score in the same statement.

    Raises:
        ValidationError: direction is not "up" or "down"
        NotFoundError: no answer with this id
    """
    if direction not in VOTE_DIRECTIONS:
        raise ValidationError('Vote must be "up" or "down"')

    # Column references in SET read the pre-update row, so score is derived
    # from the counters as they will be after this statement.
    if direction == "up":
        values = {
            "ups": answers.c.ups + 1,
            "score": answers.c.ups + 1 - answers.c.downs,
        }
    else:
        values = {
            "downs": answers.c.downs + 1,
            "score": answers.c.ups - (answers.c.downs + 1),
        }
    values["updated_at"] = datetime.now(timezone.utc)

    with get_db_session() as session:
        result = session.execute(update(answers).where(answers.c.id == answer_id).values(**values))
        if result.rowcount == 0:
            raise NotFoundError("Answer not found")
        return _fetch(session, answer_id)


def list_published(
    platform: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
) -> Tuple[List[AnswerRecord], int]:
    """
    Page through published answers, most popular first, newest first on ties.

    Args:
        platform: platform slug to filter on; None lists every platform
        page: 1-based page number
        page_size: 1..100

    Returns:
        (records on this page, total published records matching the filter)

    Raises:
        ValidationError: page or page_size out of range
    """
    if not isinstance(page, int) or page < 1:
        raise ValidationError("Invalid page number")
    if not isinstance(page_size, int) or page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")

    conditions = [answers.c.published.is_(True)]
    if platform:
        conditions.append(answers.c.platform == platform)

    with get_db_session() as session:
        total = session.execute(
            select(func.count()).select_from(answers).where(*conditions)
        ).scalar_one()
        rows = session.execute(
            select(answers)
            .where(*conditions)
            .order_by(desc(answers.c.popularity), desc(answers.c.created_at), desc(answers.c.id))
            .limit(page_size)
            .offset((page - 1) * page_size)
        ).all()

    return [_row_to_record(row) for row in rows], int(total)


def revise_answer(answer_id: str, answer_text: str) -> AnswerRecord:
    """
    Replace an answer's text.

    A changed text invalidates the public page, so the record is unpublished
    and its published URL and SEO metadata are cleared.

    Raises:
        ValidationError: blank text
        NotFoundError: no answer with this id
    """
    if not answer_text or not answer_text.strip():
        raise ValidationError("Answer text is required")

    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        current = _fetch(session, answer_id)
        if current is None:
            raise NotFoundError("Answer not found")
        if current.answer_text == answer_text:
            return current
        session.execute(
            update(answers)
            .where(answers.c.id == answer_id)
            .values(
                answer_text=answer_text,
                published=False,
                published_url=None,
                seo_title=None,
                seo_description=None,
                updated_at=now,
            )
        )
        revised = _fetch(session, answer_id)

    logger.info(
        "[answers] revised",
        extra={"answer_id": answer_id, "was_published": current.published},
    )
    return revised


def publish_answer(answer_id: str) -> AnswerRecord:
    """
    Publish an answer to the public catalog with generated SEO metadata.

    Raises:
        NotFoundError: no answer with this id
    """
    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        current = _fetch(session, answer_id)
        if current is None:
            raise NotFoundError("Answer not found")
        meta = build_seo_meta(
            current.original_question,
            current.answer_text,
            current.platform,
            current.version,
        )
        session.execute(
            update(answers)
            .where(answers.c.id == answer_id)
            .values(
                published=True,
                published_url=meta.published_url,
                seo_title=meta.seo_title,
                seo_description=meta.seo_description,
                updated_at=now,
            )
        )
        published = _fetch(session, answer_id)

    logger.info("[answers] published", extra={"answer_id": answer_id, "published_url": meta.published_url})
    return published
