"""Unit tests for reporting.aggregator (SessionFacts -> CohortFacts)."""
from __future__ import annotations

import itertools
import random

import pytest

from cohort_insights.exceptions import CohortContractError
from cohort_insights.reporting.aggregator import (
    build_cohort_facts,
    build_tag_counts,
    has_pre_post,
    pick_exemplar_quotes,
)
from cohort_insights.reporting.hashing import canonicalize_facts, hash_facts
from cohort_insights.reporting.models import SessionFacts


def _facts(
    session_id: str,
    *,
    program_id: str = "prog-1",
    pairs=None,
    quotes=(),
    strengths=(),
    reasons=(),
    completion: float = 100.0,
    reflections: bool = True,
) -> SessionFacts:
    """Build a SessionFacts record; *pairs* maps key -> (pre, post)."""

    pairs = pairs if pairs is not None else {"relationships_contentment": (4, 7), "mental_health_rating": (5, 6)}
    assessments = []
    for key, (pre, post) in pairs.items():
        change = post - pre if pre is not None and post is not None else None
        assessments.append({"key": key, "label": key, "pre": pre, "post": post, "change": change})
    return SessionFacts.model_validate(
        {
            "sessionId": session_id,
            "programId": program_id,
            "milestoneCompletionPct": completion,
            "assessments": assessments,
            "strengths": list(strengths),
            "reasons": list(reasons),
            "quotes": [
                {"text": text, "theme": theme, "sessionId": session_id} for text, theme in quotes
            ],
            "completeness": {"hasPre": True, "hasPost": True, "hasReflections": reflections},
            "version": "session-facts@0.1.0",
            "createdAt": "2024-03-01T00:00:00Z",
        }
    )


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


def test_empty_input_raises():
    with pytest.raises(CohortContractError, match="No SessionFacts"):
        build_cohort_facts([])


def test_mixed_programs_raise_unless_filtered():
    sessions = [_facts("a", program_id="p1"), _facts("b", program_id="p2")]

    with pytest.raises(CohortContractError, match="multiple programIds"):
        build_cohort_facts(sessions)

    facts = build_cohort_facts(sessions, program_id="p2")
    assert facts.program_id == "p2"
    assert facts.n_sessions == 1

    with pytest.raises(CohortContractError):
        build_cohort_facts(sessions, program_id="p3")


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------


def test_assessment_averages_use_paired_sessions_only():
    sessions = [
        _facts("a", pairs={"relationships_contentment": (4, 7), "mental_health_rating": (5, 6)}),
        _facts("b", pairs={"relationships_contentment": (2, 4), "mental_health_rating": (6, 6)}),
        _facts("c", pairs={"relationships_contentment": (9, None)}),
    ]

    facts = build_cohort_facts(sessions)
    by_key = facts.assessment_map()

    contentment = by_key["relationships_contentment"]
    assert contentment.avg_pre == 3.0
    assert contentment.avg_post == 5.5
    assert contentment.avg_change == 2.5
    assert contentment.pct_improved == 1.0
    assert contentment.better_when == "higher"
    assert contentment.label == "I am content with my friendships and relationships."

    mental = by_key["mental_health_rating"]
    assert mental.pct_improved == 0.5
    assert facts.n_with_pre_post == 2


def test_lower_is_better_direction():
    sessions = [
        _facts("a", pairs={"expense_worry_frequency": (8, 3), "mental_health_rating": (5, 6)}),
        _facts("b", pairs={"expense_worry_frequency": (3, 6), "mental_health_rating": (5, 6)}),
        _facts("c", pairs={"expense_worry_frequency": (5, 2), "mental_health_rating": (5, 6)}),
    ]

    worry = build_cohort_facts(sessions).assessment_map()["expense_worry_frequency"]

    assert worry.better_when == "lower"
    assert worry.pct_improved == 0.6667
    assert worry.avg_change == -1.67


def test_single_pair_does_not_count_as_pre_post():
    single = _facts("a", pairs={"mental_health_rating": (3, 8)})
    assert not has_pre_post(single)

    facts = build_cohort_facts([single])
    assert facts.n_with_pre_post == 0
    assert facts.assessment_map()["mental_health_rating"].avg_change == 5.0


# ---------------------------------------------------------------------------
# Tags & quotes
# ---------------------------------------------------------------------------


def test_tag_counts_sort_by_count_then_tag_and_truncate():
    sessions = [
        _facts("a", strengths=["Hope", "Courage", "Zeal"]),
        _facts("b", strengths=["hope", "Courage", " Zeal "]),
        _facts("c", strengths=["Bravery", "Candor", "Duty", "Empathy", "Faith"]),
    ]

    counts = build_tag_counts(sessions, lambda s: s.strengths)

    assert counts == [
        {"tag": "Courage", "count": 2},
        {"tag": "Zeal", "count": 2},
        {"tag": "Bravery", "count": 1},
        {"tag": "Candor", "count": 1},
        {"tag": "Duty", "count": 1},
        {"tag": "Empathy", "count": 1},
    ]


def test_top_reasons_are_normalized_tags():
    sessions = [
        _facts("a", reasons=["I want to find community & support!"]),
        _facts("b", reasons=["Find community and support"]),
        _facts("c", reasons=["Grief"]),
    ]

    facts = build_cohort_facts(sessions)

    assert [t.to_dict() for t in facts.top_reasons] == [
        {"tag": "Community Support", "count": 2},
        {"tag": "Grief", "count": 1},
    ]


def test_eight_sessions_give_eight_diverse_quotes():
    sessions = [
        _facts(f"s{i}", quotes=[(f"Quote number {i} from the cohort", f"Theme {i}")])
        for i in range(10)
    ]

    quotes = pick_exemplar_quotes(sessions)

    assert len(quotes) == 8
    assert len({q.session_id for q in quotes}) == 8
    assert len({q.text for q in quotes}) == 8


def test_quote_passes_prefer_sessions_then_themes():
    sessions = [
        _facts("a", quotes=[("Alpha first quote", "Hope"), ("Alpha second quote", "Grief")]),
        _facts("b", quotes=[("Alpha first quote", "Hope"), ("Bravo second quote", "Hope")]),
    ]

    quotes = pick_exemplar_quotes(sessions, limit=3)

    # pass 1 covers both sessions, pass 2 adds the unseen "Grief" theme
    assert [q.text for q in quotes] == [
        "Alpha first quote",
        "Bravo second quote",
        "Alpha second quote",
    ]


# ---------------------------------------------------------------------------
# Notes & hash
# ---------------------------------------------------------------------------


def test_data_quality_notes():
    sessions = [
        _facts("a", completion=20.0, reflections=False, reasons=["Grief"]),
        _facts("b", pairs={}, completion=40.0, reflections=True),
    ]

    notes = build_cohort_facts(sessions).data_quality_notes

    assert notes == [
        "Paired pre/post survey responses available for 1 of 2 sessions.",
        "Reflections are missing in 1 of 2 sessions.",
        "Median milestone completion is below 50%, suggesting participants are early in the program.",
        "Application reasons available for 1 of 2 sessions.",
    ]


def test_no_assessments_note():
    notes = build_cohort_facts([_facts("a", pairs={}, reflections=False)]).data_quality_notes

    assert "No sessions contain paired pre/post survey responses." in notes
    assert "Participant reflections are missing across the cohort." in notes
    assert "Quantitative assessment data is currently unavailable." in notes
    assert "Application reasons are missing across the cohort." in notes


def test_hash_is_stable_under_permutation():
    sessions = [
        _facts(
            f"s{i}",
            strengths=["Hope", f"Tag{i % 3}"],
            quotes=[(f"Quote text number {i}", "Theme")],
            completion=float(10 * i),
        )
        for i in range(5)
    ]
    expected = build_cohort_facts(sessions).facts_hash

    for permutation in itertools.islice(itertools.permutations(sessions), 24):
        assert build_cohort_facts(list(permutation)).facts_hash == expected

    shuffled = sessions[:]
    random.Random(7).shuffle(shuffled)
    assert build_cohort_facts(shuffled).to_dict() == build_cohort_facts(sessions).to_dict()


def test_hash_changes_when_content_changes():
    base = build_cohort_facts([_facts("a"), _facts("b")])
    changed = build_cohort_facts([_facts("a"), _facts("b", completion=50.0)])

    assert base.facts_hash != changed.facts_hash


def test_hash_ignores_key_order_and_hash_field():
    facts = {"b": 1, "a": [1, 2], "assessments": [{"key": "z"}, {"key": "a"}], "factsHash": "x"}
    reordered = {"assessments": [{"key": "a"}, {"key": "z"}], "a": [1, 2], "b": 1}

    assert hash_facts(facts) == hash_facts(reordered)
    assert "factsHash" not in canonicalize_facts(facts)
    assert hash_facts({"a": [1, 2]}) != hash_facts({"a": [2, 1]})


def test_facts_hash_recomputes_from_serialized_record():
    facts = build_cohort_facts([_facts("a"), _facts("b")])

    assert hash_facts(facts.to_dict()) == facts.facts_hash
