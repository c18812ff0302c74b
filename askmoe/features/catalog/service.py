"""
askmoe/features/catalog/service.py

Public view over the answer cache: anonymous votes and the published catalog.
No state of its own.
"""

import math
from typing import Any, Dict, Optional

from askmoe.core.logging import log_event
from askmoe.core.metrics import votes_total
from askmoe.features.answers import service as answer_cache
from askmoe.features.questions.canonical import slugify
from askmoe.models.answer import AnswerRecord

ALL_PLATFORMS = "all"


def vote(answer_id: str, direction: str) -> AnswerRecord:
    record = answer_cache.apply_vote(answer_id, direction)
    votes_total.inc(labels={"direction": direction})
    log_event(
        "info",
        "[catalog] vote",
        answer_id=answer_id,
        event_type="vote",
        extra={"direction": direction, "score": record.score},
    )
    return record


def normalize_platform_filter(platform: Optional[str]) -> Optional[str]:
    """'all' and blank mean no filter; anything else is compared as a slug."""
    if platform is None:
        return None
    cleaned = platform.strip()
    if not cleaned or cleaned.lower() == ALL_PLATFORMS:
        return None
    return slugify(cleaned) or None


def catalog(platform: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    """
    One page of the published catalog.

    Raises:
        ValidationError: page or limit out of range
    """
    records, total = answer_cache.list_published(normalize_platform_filter(platform), page, limit)
    return {
        "results": [record.to_dict() for record in records],
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "total": total,
    }
