"""Pure numeric helpers for session normalization and cohort reduction."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from cohort_insights.parsing.models import RawSession
from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKeyRegistry

SCORE_MIN = 1
SCORE_MAX = 10


@dataclass(slots=True)
class AssessmentResult:
    """Deltas for every registered scale key plus pairing counts."""

    deltas: List[dict] = field(default_factory=list)
    paired_count: int = 0
    available_count: int = 0


def round_half_up(value: float, digits: int = 2) -> float:
    """Round *value* to *digits* places, halves away from zero."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _normalize_score(value: float) -> int:
    rounded = math.floor(value + 0.5)
    return max(SCORE_MIN, min(SCORE_MAX, rounded))


def coerce_score(value: Any) -> Optional[int]:
    """Return *value* as an integer score in ``[1, 10]`` or ``None``.

    Numbers and numeric strings are rounded then clamped; anything else,
    including booleans and blank strings, yields ``None``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _normalize_score(value) if math.isfinite(value) else None
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        try:
            parsed = float(trimmed)
        except ValueError:
            return None
        return _normalize_score(parsed) if math.isfinite(parsed) else None
    return None


def build_assessment_deltas(
    pre_answers: Optional[Mapping[str, Any]],
    post_answers: Optional[Mapping[str, Any]],
    *,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
) -> AssessmentResult:
    """Pair pre/post answers for every registered scale key.

    A key is *available* when at least one side has a score and *paired*
    when both do. Unregistered and categorical keys are ignored.
    """

    pre_answers = pre_answers or {}
    post_answers = post_answers or {}
    keys = list(dict.fromkeys([*pre_answers.keys(), *post_answers.keys()]))

    result = AssessmentResult()
    for key in keys:
        entry = registry.get(key)
        if entry is None or not entry.is_scale:
            continue
        pre = coerce_score(pre_answers.get(key))
        post = coerce_score(post_answers.get(key))
        if pre is None and post is None:
            continue
        if pre is not None and post is not None:
            result.paired_count += 1
            change: Optional[int] = post - pre
        else:
            change = None
        result.available_count += 1
        result.deltas.append(
            {"key": key, "label": entry.label, "pre": pre, "post": post, "change": change}
        )
    return result


def compute_milestone_completion_pct(raw: RawSession) -> float:
    total = len(raw.milestones)
    if total == 0:
        return 0.0
    completed = sum(1 for milestone in raw.milestones if milestone.is_completed)
    return round_half_up(completed / total * 100, 2)


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return math.fsum(values) / len(values)


def median(values: Iterable[float]) -> float:
    ordered = sorted(values)
    if not ordered:
        return 0.0
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return float(ordered[mid])
