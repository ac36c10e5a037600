"""Derive a readiness snapshot from session and cohort facts."""
from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from cohort_insights.analysis.demographics import age_bucket, birth_year, normalize_gender, zip_code
from cohort_insights.analysis.reasons import normalize_reason_tags
from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKeyRegistry
from cohort_insights.readiness.config import get_readiness_config
from cohort_insights.readiness.evaluator import evaluate_readiness
from cohort_insights.readiness.models import ReadinessInput, ReadinessResult
from cohort_insights.reporting.aggregator import build_cohort_facts
from cohort_insights.reporting.models import CohortFacts, SessionFacts

logger = logging.getLogger(__name__)

# Session documents with extracted quotes are considered better sourced.
DOC_CONFIDENCE_WITH_QUOTES = 0.75
DOC_CONFIDENCE_WITHOUT_QUOTES = 0.5


@dataclass(slots=True)
class CohortFactsWithReadiness:
    facts: CohortFacts
    readiness: ReadinessResult

    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – simple helper
        return {"facts": self.facts.to_dict(), "readiness": self.readiness.to_dict()}


def _surveys(sessions: Sequence[SessionFacts]) -> Dict[str, List[Dict[str, Any]]]:
    pre: List[Dict[str, Any]] = []
    post: List[Dict[str, Any]] = []
    for session in sessions:
        pre_responses = {a.key: a.pre for a in session.assessments if a.pre is not None}
        post_responses = {a.key: a.post for a in session.assessments if a.post is not None}
        if pre_responses:
            pre.append({"participantId": session.session_id, "responses": pre_responses})
        if post_responses:
            post.append({"participantId": session.session_id, "responses": post_responses})
    return {"pre": pre, "post": post}


def _session_docs(sessions: Sequence[SessionFacts]) -> List[Dict[str, Any]]:
    return [
        {
            "id": session.session_id,
            "content": " ".join(quote.text for quote in session.quotes),
            "confidence": DOC_CONFIDENCE_WITH_QUOTES if session.quotes else DOC_CONFIDENCE_WITHOUT_QUOTES,
        }
        for session in sessions
        if session.completeness.has_reflections
    ]


def _testimonials(sessions: Sequence[SessionFacts]) -> List[Dict[str, Any]]:
    return [
        {"id": f"{session.session_id}-{index}", "content": quote.text, "approved": True}
        for session in sessions
        for index, quote in enumerate(session.quotes)
    ]


def _groups(
    sessions: Sequence[SessionFacts],
    demographics: Optional[Mapping[str, Mapping[str, str]]],
    current_year: int,
) -> Dict[str, List[Dict[str, Any]]]:
    slices: Dict[str, Dict[str, List[str]]] = defaultdict(lambda: defaultdict(list))
    for session in sessions:
        slices["program"][session.program_id].append(session.session_id)
        demo = (demographics or {}).get(session.session_id)
        if not demo:
            continue
        slices["gender"][normalize_gender(demo.get("Gender"))].append(session.session_id)
        bucket = age_bucket(birth_year(demo), current_year)
        if bucket:
            slices["age"][bucket].append(session.session_id)
        zip_value = zip_code(demo)
        if zip_value:
            slices["zip"][zip_value].append(session.session_id)

    return {
        group_type: [
            {"groupId": group_id, "participantIds": members}
            for group_id, members in sorted(groups.items())
        ]
        for group_type, groups in slices.items()
    }


def _improved_count(facts: CohortFacts) -> int:
    rates = [a.pct_improved for a in facts.assessments if a.pct_improved is not None]
    if not rates:
        return 0
    return int(sum(rates) / len(rates) * facts.n_with_pre_post + 0.5)


def _item_level_stats(sessions: Sequence[SessionFacts]) -> Dict[str, Dict[str, int]]:
    stats: Dict[str, Dict[str, int]] = {}
    for session in sessions:
        for assessment in session.assessments:
            entry = stats.setdefault(assessment.key, {"nullCount": 0, "total": 0})
            entry["total"] += 1
            if not assessment.is_paired:
                entry["nullCount"] += 1
    return stats


def build_readiness_input(
    sessions: Sequence[SessionFacts],
    facts: CohortFacts,
    demographics: Optional[Mapping[str, Mapping[str, str]]] = None,
    *,
    current_year: Optional[int] = None,
) -> ReadinessInput:
    """Assemble the evaluator's input from *sessions* and their cohort *facts*.

    *demographics* maps session id to the raw demographics record and adds
    gender, age and zip-code slices to the privacy groups.
    """

    cohort = [s for s in sessions if s.program_id == facts.program_id]
    improved = _improved_count(facts)
    reason_tags = [normalize_reason_tags(s.reasons) for s in cohort]
    unique_reasons = {tag for tags in reason_tags for tag in tags}

    return ReadinessInput.model_validate(
        {
            "surveys": _surveys(cohort),
            "sessionDocs": _session_docs(cohort),
            "testimonials": _testimonials(cohort),
            "groups": _groups(cohort, demographics, current_year or datetime.date.today().year),
            "facts": {
                "improved": improved,
                "total": facts.n_with_pre_post,
                "distribution": {
                    "improved": improved,
                    "notImproved": facts.n_with_pre_post - improved,
                },
                "itemLevelStats": _item_level_stats(cohort),
            },
            "reasons": {
                "sessionsWithReasons": sum(1 for tags in reason_tags if tags),
                "uniqueReasons": len(unique_reasons),
            },
        }
    )


def build_cohort_facts_with_readiness(
    sessions: Sequence[SessionFacts],
    *,
    program_id: Optional[str] = None,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
    readiness_overrides: Optional[Mapping[str, Any]] = None,
    demographics: Optional[Mapping[str, Mapping[str, str]]] = None,
    current_year: Optional[int] = None,
    evaluated_at: Optional[str] = None,
) -> CohortFactsWithReadiness:
    """Build cohort facts and evaluate readiness against them in one call."""

    facts = build_cohort_facts(sessions, program_id=program_id, registry=registry)
    readiness_input = build_readiness_input(sessions, facts, demographics, current_year=current_year)
    config = get_readiness_config(readiness_overrides)
    readiness = evaluate_readiness(readiness_input, config, evaluated_at=evaluated_at)
    blocked = [name for name, panel in readiness.panels if not panel.ready]
    if blocked:
        logger.info("Program %s panels not ready: %s", facts.program_id, ", ".join(blocked))
    return CohortFactsWithReadiness(facts=facts, readiness=readiness)
