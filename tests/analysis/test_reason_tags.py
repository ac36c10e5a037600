"""Tests for application-reason tag normalization."""
from __future__ import annotations

import pytest

from cohort_insights.analysis.reasons import normalize_reason_tag, normalize_reason_tags


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("I want to find community & support!", "Community Support"),
        ("Deepen my faith and prayer life", "Faith Prayer Life"),
        ("Burned out, burnout, burning out at work", "Burned Work"),
        ("“Healing” from grief / loss", "Healing Grief Loss"),
        ("Learning to manage anxiety in 2nd year of college", "Learning Manage Anxiety Year"),
        ("I want to grow", ""),
        ("12345", ""),
        ("", ""),
    ],
)
def test_normalize_reason_tag(raw, expected):
    assert normalize_reason_tag(raw) == expected


def test_single_word_tag_is_kept():
    assert normalize_reason_tag("Loneliness") == "Loneliness"


def test_tag_is_capped_at_eighty_chars():
    tag = normalize_reason_tag("supercalifragilistic extraordinarilylongword " + "x" * 60)
    assert tag.startswith("Supercalifragilistic Extraordinarilylongword X")
    assert len(tag) == 80


def test_normalize_reason_tags_dedupes_and_drops_empty():
    reasons = ["Find community & support", "finding community support!", "I want to grow", "Grief"]

    assert normalize_reason_tags(reasons) == ["Community Support", "Finding Community Support", "Grief"]
