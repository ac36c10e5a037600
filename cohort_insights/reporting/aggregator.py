"""Reduce a program's :class:`SessionFacts` into one :class:`CohortFacts` record."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from cohort_insights import config
from cohort_insights.analysis.reasons import normalize_reason_tags
from cohort_insights.exceptions import CohortContractError
from cohort_insights.mapping.compute import mean, median, round_half_up
from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKeyRegistry
from cohort_insights.reporting.hashing import hash_facts
from cohort_insights.reporting.models import CohortFacts, SessionFacts, SessionQuote

logger = logging.getLogger(__name__)

MIN_PAIRED_PER_SESSION = 2


@dataclass(slots=True)
class _AssessmentAccumulator:
    key: str
    label: str
    pre_values: List[int] = field(default_factory=list)
    post_values: List[int] = field(default_factory=list)
    change_values: List[int] = field(default_factory=list)
    improved: int = 0


def _canonical_order(sessions: Iterable[SessionFacts]) -> List[SessionFacts]:
    return sorted(sessions, key=lambda s: (s.session_id, s.model_dump_json(by_alias=True)))


def has_pre_post(session: SessionFacts) -> bool:
    """Return True if *session* pairs at least two assessment items."""
    return session.paired_count >= MIN_PAIRED_PER_SESSION


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------


def _is_improvement(change: int, better_when: Optional[str]) -> bool:
    return change < 0 if better_when == "lower" else change > 0


def build_assessment_aggregates(
    sessions: Sequence[SessionFacts], registry: SurveyKeyRegistry = DEFAULT_REGISTRY
) -> List[Dict[str, Any]]:
    """Average pre/post/change per key over sessions where both sides are present."""

    accumulators: Dict[str, _AssessmentAccumulator] = {}
    for session in sessions:
        for delta in session.assessments:
            entry = registry.get(delta.key)
            acc = accumulators.setdefault(
                delta.key,
                _AssessmentAccumulator(key=delta.key, label=entry.label if entry else delta.label),
            )
            if not delta.is_paired:
                continue
            change = delta.post - delta.pre
            acc.pre_values.append(delta.pre)
            acc.post_values.append(delta.post)
            acc.change_values.append(change)
            if _is_improvement(change, registry.better_when(delta.key)):
                acc.improved += 1

    aggregates = []
    for acc in accumulators.values():
        paired = len(acc.change_values)
        aggregates.append(
            {
                "key": acc.key,
                "label": acc.label,
                "avgPre": round_half_up(mean(acc.pre_values), 2) if paired else None,
                "avgPost": round_half_up(mean(acc.post_values), 2) if paired else None,
                "avgChange": round_half_up(mean(acc.change_values), 2) if paired else None,
                "pctImproved": round_half_up(acc.improved / paired, 4) if paired else None,
                "betterWhen": registry.better_when(acc.key),
            }
        )
    return sorted(aggregates, key=lambda agg: (agg["label"], agg["key"]))


# ---------------------------------------------------------------------------
# Tags & quotes
# ---------------------------------------------------------------------------


def build_tag_counts(
    sessions: Sequence[SessionFacts],
    selector: Callable[[SessionFacts], Iterable[str]],
    *,
    limit: int = config.TAG_LIMIT,
) -> List[Dict[str, Any]]:
    """Count trimmed tags; sort by count descending then tag ascending; keep *limit*."""

    counts: Counter[str] = Counter()
    for session in sessions:
        for tag in selector(session):
            normalized = (tag or "").strip()
            if normalized:
                counts[normalized] += 1
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{"tag": tag, "count": count} for tag, count in ranked[:limit]]


def pick_exemplar_quotes(
    sessions: Sequence[SessionFacts], *, limit: int = config.QUOTE_LIMIT
) -> List[SessionQuote]:
    """Select up to *limit* quotes maximizing session, then theme, diversity.

    Pass 1 takes one quote per distinct session, pass 2 quotes with an unseen
    theme, pass 3 anything left in order. Duplicate text is never returned.
    """

    pool = [
        (index, quote)
        for session in sessions
        for index, quote in enumerate(session.quotes)
    ]
    # stable: first quotes of every session precede second quotes
    pool.sort(key=lambda item: item[0])
    quotes = [quote for _, quote in pool]

    selected: List[SessionQuote] = []
    seen_sessions = set()
    seen_texts = set()
    seen_themes = set()

    def _take(quote: SessionQuote) -> None:
        selected.append(quote)
        seen_sessions.add(quote.session_id)
        seen_texts.add(quote.text)
        if quote.theme:
            seen_themes.add(quote.theme.lower())

    for quote in quotes:
        if len(selected) >= limit:
            break
        if quote.session_id in seen_sessions or quote.text in seen_texts:
            continue
        _take(quote)

    for quote in quotes:
        if len(selected) >= limit:
            break
        if quote.text in seen_texts:
            continue
        if quote.theme and quote.theme.lower() not in seen_themes:
            _take(quote)

    for quote in quotes:
        if len(selected) >= limit:
            break
        if quote.text not in seen_texts:
            _take(quote)

    return selected


# ---------------------------------------------------------------------------
# Data-quality notes
# ---------------------------------------------------------------------------


def build_data_quality_notes(
    sessions: Sequence[SessionFacts],
    *,
    n_with_pre_post: int,
    completion_median: float,
    has_assessments: bool,
    limit: int = config.MAX_DATA_QUALITY_NOTES,
) -> List[str]:
    notes: List[str] = []
    total = len(sessions)

    if n_with_pre_post == 0:
        notes.append("No sessions contain paired pre/post survey responses.")
    elif n_with_pre_post < total:
        notes.append(
            f"Paired pre/post survey responses available for {n_with_pre_post} of {total} sessions."
        )

    with_reflections = sum(1 for s in sessions if s.completeness.has_reflections)
    if with_reflections == 0:
        notes.append("Participant reflections are missing across the cohort.")
    elif with_reflections < total:
        notes.append(f"Reflections are missing in {total - with_reflections} of {total} sessions.")

    if not has_assessments:
        notes.append("Quantitative assessment data is currently unavailable.")

    if completion_median < config.LOW_COMPLETION_PCT:
        notes.append(
            f"Median milestone completion is below {config.LOW_COMPLETION_PCT:g}%, "
            "suggesting participants are early in the program."
        )

    with_reasons = sum(1 for s in sessions if s.reasons)
    if with_reasons == 0:
        notes.append("Application reasons are missing across the cohort.")
    elif with_reasons < total:
        notes.append(f"Application reasons available for {with_reasons} of {total} sessions.")

    return notes[:limit]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_cohort_facts(
    sessions: Sequence[SessionFacts],
    *,
    program_id: Optional[str] = None,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
) -> CohortFacts:
    """Aggregate *sessions* of a single program into :class:`CohortFacts`.

    The result, including ``factsHash``, does not depend on input order.

    Raises
    ------
    CohortContractError
        If no session matches or the sessions span several program ids.
    """

    cohort = [s for s in sessions if program_id is None or s.program_id == program_id]
    if not cohort:
        raise CohortContractError("No SessionFacts provided for the requested program.")

    program_ids = sorted({s.program_id for s in cohort})
    if len(program_ids) > 1:
        raise CohortContractError(
            f"SessionFacts span multiple programIds ({', '.join(program_ids)}). "
            "Provide a filter to build a single cohort."
        )

    cohort = _canonical_order(cohort)
    completion = [s.milestone_completion_pct for s in cohort]
    completion_mean = round_half_up(mean(completion), 2)
    completion_median = round_half_up(median(completion), 2)
    n_with_pre_post = sum(1 for s in cohort if has_pre_post(s))
    assessments = build_assessment_aggregates(cohort, registry)

    base: Dict[str, Any] = {
        "programId": program_ids[0],
        "nSessions": len(cohort),
        "nWithPrePost": n_with_pre_post,
        "completion": {"meanPct": completion_mean, "medianPct": completion_median},
        "assessments": assessments,
        "topStrengths": build_tag_counts(cohort, lambda s: s.strengths),
        "topImprovements": build_tag_counts(cohort, lambda s: s.improvements),
        "topThemes": build_tag_counts(cohort, lambda s: s.themes),
        "topChallenges": build_tag_counts(cohort, lambda s: s.challenges),
        "topReasons": build_tag_counts(cohort, lambda s: normalize_reason_tags(s.reasons)),
        "exemplarQuotes": [q.to_dict() for q in pick_exemplar_quotes(cohort)],
        "dataQualityNotes": build_data_quality_notes(
            cohort,
            n_with_pre_post=n_with_pre_post,
            completion_median=completion_median,
            has_assessments=bool(assessments),
        ),
    }
    facts = CohortFacts.model_validate({**base, "factsHash": hash_facts(base)})
    logger.info(
        "Built cohort facts for program %s: sessions=%d with_pre_post=%d",
        facts.program_id,
        facts.n_sessions,
        facts.n_with_pre_post,
    )
    return facts
