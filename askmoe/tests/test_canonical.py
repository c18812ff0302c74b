"""Tests for canonical question identity."""

import pytest

from askmoe.features.questions.canonical import (
    GENERIC,
    canonical_parts,
    canonicalize,
    slugify,
    split_key,
)


def test_basic_question_with_platform():
    assert canonicalize("How do I calibrate the CAM?", "mozaik") == "mozaik:generic:how-do-i-calibrate-the-cam"


def test_platform_and_version_are_slugged():
    assert canonicalize("Export a cut list", "Cabinet Vision", "2024.1") == "cabinet-vision:20241:export-a-cut-list"


def test_missing_platform_and_version_default_to_generic():
    assert canonicalize("Hello") == "generic:generic:hello"


@pytest.mark.parametrize("blank", ["", "   ", "!!!", "日本語"])
def test_platform_that_slugs_to_nothing_is_generic(blank):
    assert canonical_parts("q", blank, blank).platform == GENERIC
    assert canonical_parts("q", blank, blank).version == GENERIC


def test_case_and_whitespace_variants_share_a_key():
    first = canonicalize("How do I  calibrate the CAM?", "Mozaik")
    second = canonicalize("  how do i calibrate the cam  ", "MOZAIK")
    assert first == second


def test_hyphens_and_spaces_are_one_separator():
    assert slugify("edge banding - setup") == "edge-banding-setup"
    assert slugify("a--b  c\u00a0d") == "a-b-c-d"


def test_underscores_are_deleted():
    assert slugify("cabinet_vision") == "cabinetvision"
    assert slugify("a__b--c") == "ab-c"


def test_symbols_are_spelled_out():
    assert slugify("cut & paste") == "cut-and-paste"
    assert slugify("50% off") == "50percent-off"
    assert canonicalize("cut & paste", "cabinet_vision") == "cabinetvision:generic:cut-and-paste"


def test_removed_characters_join_words():
    assert slugify("Don't panic!") == "dont-panic"
    assert slugify("v1.2 (beta)") == "v12-beta"
    assert slugify("user@host: a+b~c*") == "userhost-abc"


def test_accents_are_folded():
    assert slugify("Crème brûlée") == "creme-brulee"
    assert slugify("Cre\u0300me") == "creme"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Größe der Tür", "grosse-der-tur"),
        ("Størage", "storage"),
        ("Æble łódź", "aeble-lodz"),
        ("đường", "duong"),
    ],
)
def test_latin_letters_without_decomposition_are_transliterated(text, expected):
    assert slugify(text) == expected


def test_mixed_script_keeps_only_latin_part():
    assert slugify("CNC 日本語 router") == "cnc-router"


def test_non_latin_question_is_lossy_but_accepted():
    assert canonical_parts("日本語の質問", "mozaik").question == ""
    assert canonicalize("日本語の質問", "mozaik") == "mozaik:generic:"


def test_canonicalization_is_idempotent():
    parts = canonical_parts("How do I calibrate the CAM?", "Mozaik Software", "")
    again = canonical_parts(parts.question, parts.platform, parts.version)
    assert again == parts


def test_key_has_exactly_three_components():
    key = canonicalize("time: 10:30", "x", "y")
    assert key.count(":") == 2
    assert split_key(key).question == "time-1030"


def test_canonicalize_is_deterministic():
    assert canonicalize("Same question", "p", "v") == canonicalize("Same question", "p", "v")
