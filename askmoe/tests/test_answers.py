"""Tests for the canonical answer cache and catalog view."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from askmoe.core.errors import DuplicateKeyError, NotFoundError, ValidationError
from askmoe.core.metrics import votes_total
from askmoe.features.answers.service import (
    apply_vote,
    get_answer,
    insert_new,
    list_published,
    lookup,
    publish_answer,
    record_hit,
    revise_answer,
)
from askmoe.features.catalog.service import catalog, vote
from askmoe.models.answer import TokenUsage

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _insert(key="mozaik:generic:how-do-i-calibrate-the-cam", text="Step 1: open the CAM screen.", now=BASE):
    return insert_new(
        key,
        original_question="How do I calibrate the CAM?",
        answer_text=text,
        model_used="llama-3.1-8b-instant",
        token_usage=TokenUsage(prompt=10, completion=40),
        now=now,
    )


def _published(count, platform="mozaik"):
    ids = []
    for i in range(count):
        record = _insert(key=f"{platform}:generic:question-{i}", now=BASE + timedelta(minutes=i))
        publish_answer(record.id)
        ids.append(record.id)
    return ids


def test_insert_new_creates_record_with_popularity_one():
    created = _insert()
    assert created.popularity == 1
    assert created.platform == "mozaik"
    assert created.version == "generic"

    stored = lookup("mozaik:generic:how-do-i-calibrate-the-cam")
    assert stored.id == created.id
    assert stored.token_usage.total == 50
    assert stored.published is False
    assert stored.score == 0


def test_lookup_miss_returns_none():
    assert lookup("generic:generic:nothing-here") is None


def test_duplicate_insert_raises_duplicate_key():
    _insert()
    with pytest.raises(DuplicateKeyError) as exc_info:
        _insert(text="A different answer")
    assert exc_info.value.key == "mozaik:generic:how-do-i-calibrate-the-cam"
    assert lookup("mozaik:generic:how-do-i-calibrate-the-cam").answer_text == "Step 1: open the CAM screen."


def test_record_hit_increments_popularity():
    created = _insert()
    assert record_hit(created.id).popularity == 2


def test_concurrent_hits_are_all_counted():
    created = _insert()
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: record_hit(created.id), range(30)))
    assert get_answer(created.id).popularity == 31


def test_record_hit_unknown_id():
    with pytest.raises(NotFoundError):
        record_hit("missing")


def test_votes_keep_score_equal_to_ups_minus_downs():
    created = _insert()
    apply_vote(created.id, "up")
    apply_vote(created.id, "up")
    updated = apply_vote(created.id, "down")
    assert (updated.ups, updated.downs, updated.score) == (2, 1, 1)


def test_concurrent_votes_keep_score_consistent():
    created = _insert()
    directions = ["up", "down", "up"] * 10
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda d: apply_vote(created.id, d), directions))
    final = get_answer(created.id)
    assert final.ups == 20
    assert final.downs == 10
    assert final.score == final.ups - final.downs


def test_invalid_vote_direction():
    created = _insert()
    with pytest.raises(ValidationError):
        apply_vote(created.id, "sideways")
    assert get_answer(created.id).ups == 0


def test_vote_unknown_id():
    with pytest.raises(NotFoundError):
        apply_vote("missing", "up")


def test_catalog_vote_counts_metric():
    created = _insert()
    vote(created.id, "down")
    assert votes_total.value(labels={"direction": "down"}) == 1


def test_list_published_excludes_unpublished():
    _published(2)
    _insert(key="mozaik:generic:draft-only")
    records, total = list_published(page=1, page_size=10)
    assert total == 2
    assert all(r.published for r in records)


def test_list_published_orders_by_popularity_then_recency():
    older, newer, popular = _published(3)
    record_hit(popular)
    record_hit(popular)
    records, _ = list_published(page=1, page_size=10)
    assert [r.id for r in records] == [popular, newer, older]


def test_pagination_third_page_of_twenty_five():
    _published(25)
    result = catalog(None, page=3, limit=10)
    assert len(result["results"]) == 5
    assert result["totalPages"] == 3
    assert result["currentPage"] == 3
    assert result["total"] == 25


def test_catalog_platform_filter():
    _published(3, platform="mozaik")
    _published(2, platform="cabinet-vision")
    assert catalog("Cabinet Vision")["total"] == 2
    assert catalog("all")["total"] == 5
    assert catalog(None)["total"] == 5


def test_empty_catalog_has_zero_pages():
    assert catalog(None) == {"results": [], "totalPages": 0, "currentPage": 1, "total": 0}


@pytest.mark.parametrize("page, size", [(0, 10), (-1, 10), (1, 0), (1, 101)])
def test_invalid_pagination_rejected(page, size):
    with pytest.raises(ValidationError):
        list_published(page=page, page_size=size)


def test_publish_sets_seo_metadata():
    created = _insert()
    published = publish_answer(created.id)
    assert published.published is True
    assert published.published_url == "mozaik/generic/how-do-i-calibrate-the-cam"
    assert published.seo_title == "How to How do I calibrate the CAM? in mozaik | Moe"
    assert published.seo_description.startswith("Learn how to How do I calibrate the CAM?.")


def test_revise_changed_text_unpublishes():
    created = _insert()
    publish_answer(created.id)
    revised = revise_answer(created.id, "Step 1: use the new wizard.")
    assert revised.answer_text == "Step 1: use the new wizard."
    assert revised.published is False
    assert revised.published_url is None
    assert revised.seo_title is None


def test_revise_same_text_keeps_publication():
    created = _insert()
    publish_answer(created.id)
    assert revise_answer(created.id, created.answer_text).published is True


def test_revise_blank_text_rejected():
    created = _insert()
    with pytest.raises(ValidationError):
        revise_answer(created.id, "   ")
