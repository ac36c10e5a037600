"""Tests for the facts -> readiness bridge."""
from __future__ import annotations

from cohort_insights.reporting.aggregator import build_cohort_facts
from cohort_insights.reporting.models import SessionFacts
from cohort_insights.reporting.readiness_input import (
    build_cohort_facts_with_readiness,
    build_readiness_input,
)

EVALUATED_AT = "2024-03-01T00:00:00Z"


def _session(session_id, *, paired=True, quotes=1, reflections=True, reasons=()):
    if paired:
        assessments = [
            {"key": "relationships_contentment", "label": "c", "pre": 4, "post": 7, "change": 3},
            {"key": "mental_health_rating", "label": "m", "pre": 5, "post": 8, "change": 3},
        ]
    else:
        assessments = [{"key": "relationships_contentment", "label": "c", "pre": 5}]
    return SessionFacts.model_validate(
        {
            "sessionId": session_id,
            "programId": "prog-1",
            "milestoneCompletionPct": 80.0,
            "assessments": assessments,
            "reasons": list(reasons),
            "quotes": [
                {"text": f"Quote {i} from {session_id} here", "sessionId": session_id}
                for i in range(quotes)
            ],
            "completeness": {"hasPre": True, "hasPost": paired, "hasReflections": reflections},
            "version": "session-facts@0.1.0",
            "createdAt": EVALUATED_AT,
        }
    )


def _cohort():
    """Twelve sessions, nine of them with paired surveys."""
    return [_session(f"s{i:02d}", paired=i < 9) for i in range(12)]


def test_twelve_session_cohort_needs_one_more_pair():
    result = build_cohort_facts_with_readiness(_cohort(), evaluated_at=EVALUATED_AT)
    facts, readiness = result.facts, result.readiness

    contentment = facts.assessment_map()["relationships_contentment"]
    assert contentment.avg_change == 3.0
    assert facts.n_sessions == 12
    assert facts.n_with_pre_post == 9

    assert readiness.dataset.paired_count == 9
    assert readiness.dataset.participants == 12
    assert not readiness.dataset.meets_paired_minimum

    overall = readiness.panels.overall_impact
    assert not overall.ready
    assert overall.reasons == ["Not enough paired pre/post surveys"]
    assert overall.unlock == ["Add 1 more paired pre/post survey"]
    assert overall.denominators["improved"].to_dict() == {"num": 9, "den": 9, "label": None}

    assert readiness.panels.improvement_donut.ready
    grid = readiness.panels.flourishing_grid
    assert not grid.ready
    assert grid.reasons == ["Some items have too many null values"]
    assert readiness.evaluated_at == EVALUATED_AT


def test_readiness_input_shapes():
    sessions = _cohort()
    sessions[0] = _session("s00", reflections=False, reasons=["Grief", "Find community & support"])
    facts = build_cohort_facts(sessions)

    data = build_readiness_input(sessions, facts)

    assert len(data.surveys.pre) == 12
    assert len(data.surveys.post) == 9
    assert data.surveys.post[0].responses == {"relationships_contentment": 7, "mental_health_rating": 8}
    assert [doc.id for doc in data.session_docs][:1] == ["s01"]
    assert len(data.session_docs) == 11
    assert data.session_docs[0].confidence == 0.75
    assert len(data.testimonials) == 12
    assert data.testimonials[0].id == "s00-0"
    assert data.reasons.sessions_with_reasons == 1
    assert data.reasons.unique_reasons == 2

    stats = data.facts.item_level_stats
    assert stats["relationships_contentment"].null_count == 3
    assert stats["relationships_contentment"].total == 12
    assert stats["mental_health_rating"].null_rate == 0.0


def test_sessions_of_other_programs_are_ignored():
    sessions = _cohort()
    facts = build_cohort_facts(sessions)
    stranger = SessionFacts.model_validate(
        {**sessions[0].to_dict(), "sessionId": "x", "programId": "prog-2"}
    )

    data = build_readiness_input(sessions + [stranger], facts)

    assert "x" not in {s.participant_id for s in data.surveys.pre}


def test_demographic_slices_and_privacy_suppression():
    sessions = _cohort()
    demographics = {
        s.session_id: {
            "Gender": "M" if i < 2 else "female",
            "Birth Year": "1990",
            "Zip Code": "30301" if i < 11 else "99999",
        }
        for i, s in enumerate(sessions)
    }

    data = build_readiness_input(sessions, build_cohort_facts(sessions), demographics, current_year=2024)
    groups = {kind: {g.group_id: len(g.participant_ids) for g in slices} for kind, slices in data.groups.items()}

    assert groups == {
        "program": {"prog-1": 12},
        "gender": {"Female": 10, "Male": 2},
        "age": {"25-34": 12},
        "zip": {"30301": 11, "99999": 1},
    }

    result = build_cohort_facts_with_readiness(
        sessions, demographics=demographics, current_year=2024, evaluated_at=EVALUATED_AT
    )
    assert result.readiness.privacy.groups_suppressed == ["gender:Male", "zip:99999"]
    assert result.readiness.privacy.ready is True


def test_overrides_and_serialized_shape():
    result = build_cohort_facts_with_readiness(
        _cohort(),
        program_id="prog-1",
        readiness_overrides={"panels": {"overall_impact": {"min_paired": 9}}},
        evaluated_at=EVALUATED_AT,
    )

    assert result.readiness.panels.overall_impact.ready
    assert result.readiness.config.panels.overall_impact.min_paired == 9

    payload = result.to_dict()
    assert set(payload) == {"facts", "readiness"}
    assert payload["facts"]["factsHash"] == result.facts.facts_hash
    assert payload["readiness"]["panels"]["overallImpact"]["ready"] is True
    assert payload["readiness"]["config"]["panels"]["overallImpact"]["minPaired"] == 9
