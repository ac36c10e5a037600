"""Map stage: one RawSession -> one validated SessionFacts record."""
from __future__ import annotations

import datetime
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, ContextManager, Dict, List, Optional, Sequence, Tuple

from cohort_insights import config
from cohort_insights.analysis.extract import EXTRACTION_AGENT_VERSION, SessionExtraction, SignalExtractor
from cohort_insights.mapping.compute import (
    build_assessment_deltas,
    coerce_score,
    compute_milestone_completion_pct,
)
from cohort_insights.parsing.models import ApplicantSurveyMilestone, RawSession, ReflectionMilestone
from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKeyRegistry
from cohort_insights.reporting.models import SessionFacts

if TYPE_CHECKING:  # pragma: no cover
    from cohort_insights.facts_cache import FactsCache

logger = logging.getLogger(__name__)

_PRE_RE = re.compile(r"\b(pre|intake)", re.IGNORECASE)
_POST_RE = re.compile(r"\b(post|final)", re.IGNORECASE)

_MAX_TAGS = 6
_MAX_APPLICATION_ITEMS = 10
_MAX_QUOTES = 2


@dataclass(slots=True)
class SessionFactsMeta:
    session_id: str
    program_id: str
    paired_assessments: int
    available_assessments: int
    extraction_model: str
    extraction_version: str = EXTRACTION_AGENT_VERSION


@dataclass(slots=True)
class SessionFactsResult:
    facts: SessionFacts
    meta: SessionFactsMeta


@dataclass(slots=True)
class BatchFailure:
    session_id: str
    error: str

    def to_dict(self) -> Dict[str, str]:  # noqa: D401 – simple helper
        return {"sessionId": self.session_id, "error": self.error}


@dataclass(slots=True)
class SessionFactsBatch:
    """Outcome of a batch map: successes in input order plus per-session failures."""

    facts: List[SessionFacts] = field(default_factory=list)
    metas: List[SessionFactsMeta] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Survey pairing
# ---------------------------------------------------------------------------


def select_surveys(
    raw: RawSession,
) -> Tuple[Optional[ApplicantSurveyMilestone], Optional[ApplicantSurveyMilestone]]:
    """Return the ``(pre, post)`` applicant surveys of *raw*.

    Pre is the first survey titled "pre"/"intake", post the last titled
    "post"/"final". Without keywords the first and last surveys are used. The
    same milestone is never returned for both.
    """

    surveys: List[ApplicantSurveyMilestone] = raw.milestones_of(ApplicantSurveyMilestone)
    if not surveys:
        return None, None

    pre = next((s for s in surveys if _PRE_RE.search(s.title)), None)
    post_candidates = [s for s in surveys if s is not pre and _POST_RE.search(s.title)]
    post = post_candidates[-1] if post_candidates else None

    if pre is None:
        pre = next((s for s in surveys if s is not post), None)
    if post is None and len(surveys) > 1 and surveys[-1] is not pre:
        post = surveys[-1]
    return pre, post


def _has_answered(answers: Optional[Dict[str, Any]]) -> bool:
    return bool(answers) and any(coerce_score(value) is not None for value in answers.values())


def _has_reflections(raw: RawSession) -> bool:
    return any(m.has_text for m in raw.milestones_of(ReflectionMilestone))


def _dedupe(values: Sequence[Optional[str]], limit: int) -> List[str]:
    result: List[str] = []
    for value in values:
        trimmed = (value or "").strip()
        if trimmed and trimmed not in result:
            result.append(trimmed)
    return result[:limit]


def _quotes(extraction: SessionExtraction, session_id: str) -> List[Dict[str, Any]]:
    quotes = []
    seen = set()
    for quote in extraction.quotes:
        text = (quote.text or "").strip()
        if len(text) < 6 or text in seen:
            continue
        seen.add(text)
        theme = (quote.theme or "").strip() or None
        quotes.append({"text": text, "theme": theme, "sessionId": session_id})
    return quotes[:_MAX_QUOTES]


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_session_facts(
    raw: RawSession,
    extractor: SignalExtractor,
    *,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
    limiter: Optional[ContextManager[Any]] = None,
    now: Optional[Callable[[], str]] = None,
    version: Optional[str] = None,
) -> SessionFactsResult:
    """Normalize *raw* into a :class:`SessionFacts` record.

    The extractor call is the only side effect; it runs inside *limiter*
    (e.g. a shared ``threading.BoundedSemaphore``) when one is given.

    Raises
    ------
    pydantic.ValidationError
        If the assembled record violates its schema.
    """

    pre, post = select_surveys(raw)
    pre_answers = pre.answer_map() if pre else None
    post_answers = post.answer_map() if post else None
    assessment = build_assessment_deltas(pre_answers, post_answers, registry=registry)

    with limiter if limiter is not None else nullcontext():
        extraction = extractor(raw)

    facts = SessionFacts.model_validate(
        {
            "sessionId": raw.session_id,
            "programId": raw.program_id,
            "milestoneCompletionPct": compute_milestone_completion_pct(raw),
            "assessments": assessment.deltas,
            "strengths": _dedupe(extraction.strengths, _MAX_TAGS),
            "improvements": _dedupe(extraction.improvements, _MAX_TAGS),
            "themes": _dedupe(extraction.themes, _MAX_TAGS),
            "reasons": _dedupe(raw.application.reasons, _MAX_APPLICATION_ITEMS),
            "challenges": _dedupe(raw.application.challenges, _MAX_APPLICATION_ITEMS),
            "quotes": _quotes(extraction, raw.session_id),
            "completeness": {
                "hasPre": _has_answered(pre_answers),
                "hasPost": _has_answered(post_answers),
                "hasReflections": _has_reflections(raw),
            },
            "version": version or config.SESSION_FACTS_VERSION,
            "createdAt": now() if now else _utc_now(),
        },
        context={"registry": registry},
    )

    meta = SessionFactsMeta(
        session_id=raw.session_id,
        program_id=raw.program_id,
        paired_assessments=assessment.paired_count,
        available_assessments=assessment.available_count,
        extraction_model=extraction.model,
    )
    return SessionFactsResult(facts=facts, meta=meta)


def build_session_facts_batch(
    raws: Sequence[RawSession],
    extractor: SignalExtractor,
    *,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
    max_workers: int = config.EXTRACTION_CONCURRENCY,
    limiter: Optional[threading.BoundedSemaphore] = None,
    cache: Optional["FactsCache"] = None,
    now: Optional[Callable[[], str]] = None,
    version: Optional[str] = None,
) -> SessionFactsBatch:
    """Map every session in *raws*, tolerating per-session failures.

    Extractor calls share one bounded semaphore so at most *max_workers*
    are outstanding at a time. Results keep input order; a failing session
    becomes a :class:`BatchFailure` and never aborts its siblings.
    """

    max_workers = max(1, max_workers)
    shared_limiter = limiter or threading.BoundedSemaphore(max_workers)

    def _map_one(raw: RawSession) -> SessionFactsResult:
        if cache is not None:
            cached = cache.get(raw)
            if cached is not None:
                logger.debug("Session %s served from facts cache", raw.session_id)
                return cached
        result = build_session_facts(
            raw,
            extractor,
            registry=registry,
            limiter=shared_limiter,
            now=now,
            version=version,
        )
        if cache is not None:
            cache.put(raw, result)
        return result

    batch = SessionFactsBatch()
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [(raw, executor.submit(_map_one, raw)) for raw in raws]
        for raw, future in futures:
            try:
                result = future.result()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to build facts for session %s: %s", raw.session_id, exc)
                batch.failures.append(BatchFailure(session_id=raw.session_id, error=str(exc)))
                continue
            batch.facts.append(result.facts)
            batch.metas.append(result.meta)

    logger.info(
        "Session facts batch finished: processed=%d skipped=%d",
        len(batch.facts),
        len(batch.failures),
    )
    return batch
