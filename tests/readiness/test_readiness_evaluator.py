"""Tests for readiness gates."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from cohort_insights.readiness.config import get_readiness_config
from cohort_insights.readiness.evaluator import (
    compute_null_rate,
    detect_typedrift,
    evaluate_readiness,
)
from cohort_insights.readiness.models import PanelReadiness, ReadinessInput, SurveySnapshot

EVALUATED_AT = "2024-03-01T00:00:00Z"


def _snapshots(responses_by_id):
    return [
        SurveySnapshot(participant_id=pid, responses=responses)
        for pid, responses in responses_by_id.items()
    ]


def _input(**parts) -> ReadinessInput:
    return ReadinessInput.model_validate(parts)


def _paired_surveys(count, *, extra_pre=0):
    pre = [{"participantId": f"p{i}", "responses": {"q1": 3}} for i in range(count + extra_pre)]
    post = [{"participantId": f"p{i}", "responses": {"q1": 6}} for i in range(count)]
    return {"pre": pre, "post": post}


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def test_null_rate_counts_none_and_empty_strings():
    surveys = _snapshots({"a": {"q1": 1, "q2": None, "q3": ""}, "b": {"q1": 2, "q2": 3, "q3": 4}})

    assert compute_null_rate(surveys) == 0.33
    assert compute_null_rate([]) == 0.0


def test_typedrift_requires_disjoint_types():
    pre = _snapshots({"a": {"q1": 4}, "b": {"q1": None}})

    assert detect_typedrift(pre, _snapshots({"a": {"q1": "four"}}))
    assert not detect_typedrift(pre, _snapshots({"a": {"q1": 5}, "b": {"q1": "five"}}))
    assert not detect_typedrift(pre, _snapshots({"a": {"q1": None}}))
    assert not detect_typedrift(pre, [])


def test_dataset_health_uses_participant_intersection():
    data = _input(surveys=_paired_surveys(4, extra_pre=3))

    dataset = evaluate_readiness(data, evaluated_at=EVALUATED_AT).dataset

    assert dataset.pre_count == 7
    assert dataset.post_count == 4
    assert dataset.paired_count == 4
    assert dataset.participants == 7
    assert not dataset.meets_paired_minimum
    assert dataset.meets_null_rate_pre


def test_empty_input_blocks_every_panel():
    result = evaluate_readiness(ReadinessInput(), evaluated_at=EVALUATED_AT)

    for name, panel in result.panels:
        assert not panel.ready, name
        assert panel.reasons and panel.unlock, name

    assert result.dataset.paired_count == 0
    assert result.llm.avg_confidence == 0.0
    assert result.panels.overall_impact.unlock == ["Add 10 more paired pre/post surveys"]
    assert result.panels.key_themes.reasons == [
        "Not enough source documents",
        "LLM confidence below threshold",
    ]
    assert result.panels.testimonials.unlock == ["Add 3 more approved testimonials"]


# ---------------------------------------------------------------------------
# Panels
# ---------------------------------------------------------------------------


def test_paired_panels_unlock_with_enough_pairs():
    result = evaluate_readiness(_input(surveys=_paired_surveys(10)), evaluated_at=EVALUATED_AT)

    assert result.panels.overall_impact.ready
    assert result.panels.improvement_donut.ready
    assert result.panels.flourishing_grid.ready
    assert result.panels.overall_impact.inputs == {"paired": 10, "required": 10}


def test_grid_null_rate_reason_is_additive():
    data = _input(
        surveys=_paired_surveys(2),
        facts={"itemLevelStats": {"q1": {"nullCount": 1, "total": 5}}},
    )

    grid = evaluate_readiness(data, evaluated_at=EVALUATED_AT).panels.flourishing_grid

    assert grid.reasons == [
        "Not enough pre/post pairs for item-level change",
        "Some items have too many null values",
    ]
    assert grid.unlock[0] == "Add 3 more paired pre/post surveys"


def test_document_panels_gate_on_count_and_confidence():
    docs = [{"id": f"d{i}", "content": "x", "confidence": 0.5} for i in range(6)]

    result = evaluate_readiness(_input(sessionDocs=docs), evaluated_at=EVALUATED_AT)

    themes = result.panels.key_themes
    assert themes.reasons == ["LLM confidence below threshold"]
    assert themes.unlock == ["Improve transcript or reflection quality"]
    assert result.panels.key_areas_challenges.privacy_checked is True
    assert result.llm.meets_doc_minimum
    assert not result.llm.meets_confidence_minimum

    one_short = evaluate_readiness(
        _input(sessionDocs=[{"id": f"d{i}", "content": "x", "confidence": 0.9} for i in range(4)]),
        evaluated_at=EVALUATED_AT,
    )
    assert one_short.panels.key_themes.unlock == ["Add 1 more session reflection"]


def test_participant_reasons_use_reason_stats_when_present():
    ready = evaluate_readiness(
        _input(reasons={"sessionsWithReasons": 4, "uniqueReasons": 3}), evaluated_at=EVALUATED_AT
    ).panels.participant_reasons
    assert ready.ready
    assert ready.inputs["uniqueReasons"] == 3

    blocked = evaluate_readiness(
        _input(reasons={"sessionsWithReasons": 1, "uniqueReasons": 1}), evaluated_at=EVALUATED_AT
    ).panels.participant_reasons
    assert blocked.reasons == [
        "Not enough participants with application reasons",
        "Too few unique reason categories",
    ]
    assert blocked.unlock[0] == "Collect application Q/A for 2 more participants"


def test_participant_reasons_fall_back_to_documents():
    docs = [{"id": f"d{i}", "content": "x", "confidence": 0.8} for i in range(5)]

    panel = evaluate_readiness(
        _input(sessionDocs=docs, reasons={"sessionsWithReasons": 0, "uniqueReasons": 0}),
        evaluated_at=EVALUATED_AT,
    ).panels.participant_reasons

    assert panel.ready
    assert panel.inputs["docs"] == 5


def test_strengths_panel_skips_llm_gates_when_unset():
    config = get_readiness_config(
        {"panels": {"strengths_improvements": {"llm_min_docs": None, "min_paired": 2}}}
    )

    panel = evaluate_readiness(
        _input(surveys=_paired_surveys(2)), config, evaluated_at=EVALUATED_AT
    ).panels.strengths_improvements

    assert panel.ready


def test_unapproved_testimonials_do_not_count():
    testimonials = [
        {"id": "t1", "content": "a", "approved": True},
        {"id": "t2", "content": "b"},
        {"id": "t3", "content": "c", "approved": False},
    ]

    panel = evaluate_readiness(
        _input(testimonials=testimonials), evaluated_at=EVALUATED_AT
    ).panels.testimonials

    assert panel.inputs["count"] == 2
    assert panel.unlock == ["Add 1 more approved testimonial"]


def test_privacy_suppresses_small_groups_without_blocking():
    groups = {
        "gender": [
            {"groupId": "Female", "participantIds": ["a", "b", "c"]},
            {"groupId": "Male", "participantIds": ["d"]},
        ]
    }

    privacy = evaluate_readiness(_input(groups=groups), evaluated_at=EVALUATED_AT).privacy
    assert privacy.groups_suppressed == ["gender:Male"]
    assert privacy.ready
    assert privacy.small_n_threshold == 3

    config = get_readiness_config({"privacy": {"apply_to_slices": False}})
    assert evaluate_readiness(_input(groups=groups), config, evaluated_at=EVALUATED_AT).privacy.groups_suppressed == []


def test_result_is_deterministic_with_fixed_timestamp():
    data = _input(surveys=_paired_surveys(3))

    first = evaluate_readiness(data, evaluated_at=EVALUATED_AT).to_dict()
    second = evaluate_readiness(data, evaluated_at=EVALUATED_AT).to_dict()

    assert first == second
    assert first["version"] == "readiness.v1"
    assert first["evaluatedAt"] == EVALUATED_AT


def test_evaluated_at_defaults_to_utc_now():
    result = evaluate_readiness(ReadinessInput())
    assert result.evaluated_at.endswith("Z")


def test_unready_panel_must_explain_itself():
    with pytest.raises(ValidationError):
        PanelReadiness(ready=False, reasons=["x"])

    assert PanelReadiness(ready=True).unlock == []
