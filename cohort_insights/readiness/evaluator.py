"""Deterministic readiness gates for dashboard panels.

:func:`evaluate_readiness` first derives three cohort-wide summaries
(dataset health, LLM quality, privacy) and then evaluates each panel against
its own slice of :class:`ReadinessConfig`. Every unmet threshold appends its
own reason and unlock step, so a panel may be blocked for several causes.
"""
from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from cohort_insights.mapping.compute import mean, round_half_up
from cohort_insights.readiness.config import DEFAULT_READINESS_CONFIG, ReadinessConfig
from cohort_insights.readiness.models import (
    DatasetHealth,
    Denominator,
    LLMQuality,
    PanelReadiness,
    PanelResults,
    PrivacyStatus,
    ReadinessInput,
    ReadinessResult,
    SurveySnapshot,
)

logger = logging.getLogger(__name__)

NOT_ENOUGH_DOCS = "Not enough source documents"
LOW_CONFIDENCE = "LLM confidence below threshold"
IMPROVE_QUALITY = "Improve transcript or reflection quality"
NULL_ITEMS = "Some items have too many null values"


def _plural(count: int, noun: str) -> str:
    return f"{count} more {noun}{'s' if count > 1 else ''}"


def _add_paired_survey_step(unlock: List[str], needed: int) -> None:
    unlock.append(f"Add {_plural(needed, 'paired pre/post survey')}")


# ---------------------------------------------------------------------------
# Cohort-wide summaries
# ---------------------------------------------------------------------------


def _is_null(value: Any) -> bool:
    return value is None or value == ""


def compute_null_rate(surveys: Iterable[SurveySnapshot]) -> float:
    """Fraction of null/empty responses across all fields, rounded to 2 places."""
    total = 0
    nulls = 0
    for survey in surveys:
        values = list(survey.responses.values())
        total += len(values)
        nulls += sum(1 for value in values if _is_null(value))
    return round_half_up(nulls / total, 2) if total else 0.0


def _type_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"


def detect_typedrift(pre: List[SurveySnapshot], post: List[SurveySnapshot]) -> bool:
    """Return True if a key shared by pre and post surveys has disjoint value-type sets.

    Null values carry no type; a key that is null on one side never drifts.
    """

    if not pre or not post:
        return False
    pre_keys = {key for survey in pre for key in survey.responses}
    post_keys = {key for survey in post for key in survey.responses}
    for key in sorted(pre_keys & post_keys):
        pre_types: Set[str] = {
            t for t in (_type_name(s.responses.get(key)) for s in pre if key in s.responses) if t
        }
        post_types: Set[str] = {
            t for t in (_type_name(s.responses.get(key)) for s in post if key in s.responses) if t
        }
        if pre_types and post_types and not pre_types & post_types:
            logger.warning("Typedrift detected for survey key %s: %s vs %s", key, pre_types, post_types)
            return True
    return False


def evaluate_dataset_health(data: ReadinessInput, config: ReadinessConfig) -> DatasetHealth:
    pre = data.surveys.pre if data.surveys else []
    post = data.surveys.post if data.surveys else []
    pre_ids = {s.participant_id for s in pre}
    post_ids = {s.participant_id for s in post}
    paired = len(pre_ids & post_ids)
    null_pre = compute_null_rate(pre)
    null_post = compute_null_rate(post)
    return DatasetHealth(
        participants=len(pre_ids | post_ids),
        pre_count=len(pre),
        post_count=len(post),
        paired_count=paired,
        has_typedrift=detect_typedrift(pre, post),
        null_rate_pre=null_pre,
        null_rate_post=null_post,
        meets_paired_minimum=paired >= config.cohort.min_paired_surveys,
        meets_null_rate_pre=null_pre <= config.cohort.max_null_rate_pre,
        meets_null_rate_post=null_post <= config.cohort.max_null_rate_post,
    )


def evaluate_llm_quality(data: ReadinessInput, config: ReadinessConfig) -> LLMQuality:
    docs = len(data.session_docs)
    scores = [doc.confidence for doc in data.session_docs if doc.confidence is not None]
    avg = mean(scores) if scores else 0.0
    return LLMQuality(
        session_docs=docs,
        avg_confidence=round_half_up(avg, 2),
        meets_doc_minimum=docs >= config.llm.min_documents,
        meets_confidence_minimum=avg >= config.llm.min_avg_confidence,
    )


def evaluate_privacy(data: ReadinessInput, config: ReadinessConfig) -> PrivacyStatus:
    """List every group slice smaller than the minimum group size.

    Privacy never blocks readiness; it only marks slices unsafe to display.
    """

    suppressed: List[str] = []
    if config.privacy.apply_to_slices:
        for group_type, slices in data.groups.items():
            for group in slices:
                if len(group.participant_ids) < config.privacy.min_group_size:
                    suppressed.append(f"{group_type}:{group.group_id}")
    return PrivacyStatus(
        small_n_threshold=config.privacy.min_group_size,
        groups_suppressed=suppressed,
        ready=True,
    )


# ---------------------------------------------------------------------------
# Panels
# ---------------------------------------------------------------------------


def _paired_panel(
    paired: int, min_paired: int, reason: str, denominators: Optional[Dict[str, Denominator]] = None
) -> PanelReadiness:
    reasons: List[str] = []
    unlock: List[str] = []
    if paired < min_paired:
        reasons.append(reason)
        _add_paired_survey_step(unlock, min_paired - paired)
    return PanelReadiness(
        ready=not reasons,
        inputs={"paired": paired, "required": min_paired},
        denominators=denominators,
        reasons=reasons,
        unlock=unlock,
    )


def _document_panel(
    llm: LLMQuality, min_docs: int, min_confidence: float, *, privacy_checked: Optional[bool] = None
) -> PanelReadiness:
    reasons: List[str] = []
    unlock: List[str] = []
    if llm.session_docs < min_docs:
        reasons.append(NOT_ENOUGH_DOCS)
        unlock.append(f"Add {_plural(min_docs - llm.session_docs, 'session reflection')}")
    if llm.avg_confidence < min_confidence:
        reasons.append(LOW_CONFIDENCE)
        unlock.append(IMPROVE_QUALITY)
    return PanelReadiness(
        ready=not reasons,
        inputs={
            "docs": llm.session_docs,
            "requiredDocs": min_docs,
            "avgConfidence": llm.avg_confidence,
            "minConfidence": min_confidence,
        },
        reasons=reasons,
        unlock=unlock,
        privacy_checked=privacy_checked,
    )


def _overall_impact(data: ReadinessInput, dataset: DatasetHealth, config: ReadinessConfig) -> PanelReadiness:
    facts = data.facts
    denominators = None
    if facts is not None and facts.improved is not None and facts.total is not None:
        denominators = {"improved": Denominator(num=facts.improved, den=facts.total)}
    return _paired_panel(
        dataset.paired_count,
        config.panels.overall_impact.min_paired,
        "Not enough paired pre/post surveys",
        denominators,
    )


def _improvement_donut(data: ReadinessInput, dataset: DatasetHealth, config: ReadinessConfig) -> PanelReadiness:
    denominators = None
    if data.facts is not None and data.facts.total is not None:
        denominators = {"distribution": Denominator(num=data.facts.total, den=data.facts.total)}
    return _paired_panel(
        dataset.paired_count,
        config.panels.improvement_donut.min_paired,
        "Not enough paired pre/post surveys for distribution",
        denominators,
    )


def _flourishing_grid(data: ReadinessInput, dataset: DatasetHealth, config: ReadinessConfig) -> PanelReadiness:
    panel = config.panels.flourishing_grid
    reasons: List[str] = []
    unlock: List[str] = []
    if dataset.paired_count < panel.min_paired:
        reasons.append("Not enough pre/post pairs for item-level change")
        _add_paired_survey_step(unlock, panel.min_paired - dataset.paired_count)

    stats = data.facts.item_level_stats if data.facts else None
    if stats and any(item.null_rate > panel.max_null_rate_per_item for item in stats.values()):
        reasons.append(NULL_ITEMS)
        unlock.append("Improve data collection for incomplete survey items")

    return PanelReadiness(
        ready=not reasons,
        inputs={
            "paired": dataset.paired_count,
            "required": panel.min_paired,
            "maxNullRate": panel.max_null_rate_per_item,
        },
        reasons=reasons,
        unlock=unlock,
    )


def _participant_reasons(data: ReadinessInput, llm: LLMQuality, config: ReadinessConfig) -> PanelReadiness:
    """Gate on application reasons when present, otherwise on LLM documents."""

    stats = data.reasons
    if stats is None or stats.sessions_with_reasons <= 0 or stats.unique_reasons <= 0:
        return _document_panel(llm, config.llm.min_documents, config.llm.min_avg_confidence)

    panel = config.panels.participant_reasons
    reasons: List[str] = []
    unlock: List[str] = []
    if stats.sessions_with_reasons < panel.min_sessions_with_reasons:
        needed = panel.min_sessions_with_reasons - stats.sessions_with_reasons
        reasons.append("Not enough participants with application reasons")
        unlock.append(f"Collect application Q/A for {_plural(needed, 'participant')}")
    if stats.unique_reasons < panel.min_reasons_unique:
        reasons.append("Too few unique reason categories")
        unlock.append("Broaden application question prompts or categorize reasons")
    return PanelReadiness(
        ready=not reasons,
        inputs={
            "sessionsWithReasons": stats.sessions_with_reasons,
            "uniqueReasons": stats.unique_reasons,
            "minSessions": panel.min_sessions_with_reasons,
            "minUnique": panel.min_reasons_unique,
        },
        reasons=reasons,
        unlock=unlock,
    )


def _strengths_improvements(dataset: DatasetHealth, llm: LLMQuality, config: ReadinessConfig) -> PanelReadiness:
    panel = config.panels.strengths_improvements
    reasons: List[str] = []
    unlock: List[str] = []
    if dataset.paired_count < panel.min_paired:
        reasons.append("Not enough paired surveys for delta analysis")
        _add_paired_survey_step(unlock, panel.min_paired - dataset.paired_count)

    # LLM gates apply only when both thresholds are configured
    if panel.llm_min_docs and panel.llm_min_confidence:
        if llm.session_docs < panel.llm_min_docs:
            needed = panel.llm_min_docs - llm.session_docs
            reasons.append("Not enough LLM source documents for enhanced insights")
            unlock.append(f"Add {_plural(needed, 'session reflection')} for AI insights")
        if llm.avg_confidence < panel.llm_min_confidence:
            reasons.append("LLM confidence below threshold for enhanced insights")
            unlock.append("Improve reflection quality for AI enhancement")

    return PanelReadiness(
        ready=not reasons,
        inputs={"paired": dataset.paired_count, "required": panel.min_paired},
        reasons=reasons,
        unlock=unlock,
    )


def _testimonials(data: ReadinessInput, config: ReadinessConfig) -> PanelReadiness:
    min_count = config.panels.testimonials.min_count
    count = sum(1 for testimonial in data.testimonials if testimonial.is_approved)
    reasons: List[str] = []
    unlock: List[str] = []
    if count < min_count:
        reasons.append("Not enough approved testimonials")
        unlock.append(f"Add {_plural(min_count - count, 'approved testimonial')}")
    return PanelReadiness(
        ready=not reasons,
        inputs={"count": count, "required": min_count},
        reasons=reasons,
        unlock=unlock,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def evaluate_readiness(
    data: ReadinessInput,
    config: ReadinessConfig = DEFAULT_READINESS_CONFIG,
    *,
    evaluated_at: Optional[str] = None,
) -> ReadinessResult:
    """Evaluate every panel gate for *data* under *config*.

    Pure apart from the timestamp; pass *evaluated_at* for fully
    reproducible output.
    """

    dataset = evaluate_dataset_health(data, config)
    llm = evaluate_llm_quality(data, config)
    privacy = evaluate_privacy(data, config)

    panels = PanelResults(
        overall_impact=_overall_impact(data, dataset, config),
        improvement_donut=_improvement_donut(data, dataset, config),
        flourishing_grid=_flourishing_grid(data, dataset, config),
        key_themes=_document_panel(
            llm, config.panels.key_themes.min_docs, config.panels.key_themes.min_confidence
        ),
        key_areas_challenges=_document_panel(
            llm,
            config.panels.key_areas_challenges.min_docs,
            config.panels.key_areas_challenges.min_confidence,
            privacy_checked=True,
        ),
        participant_reasons=_participant_reasons(data, llm, config),
        strengths_improvements=_strengths_improvements(dataset, llm, config),
        testimonials=_testimonials(data, config),
    )

    if privacy.groups_suppressed:
        logger.info("Suppressed %d small group slice(s)", len(privacy.groups_suppressed))

    return ReadinessResult(
        version=config.version,
        evaluated_at=evaluated_at
        or datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z"),
        config=config,
        dataset=dataset,
        llm=llm,
        privacy=privacy,
        panels=panels,
    )
