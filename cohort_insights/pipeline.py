"""Inline map → reduce → readiness run over a list of RawSessions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from cohort_insights import config
from cohort_insights.analysis.demographics import DemographicsSummary, aggregate_demographics
from cohort_insights.analysis.extract import SignalExtractor
from cohort_insights.exceptions import PipelineError
from cohort_insights.facts_cache import FactsCache
from cohort_insights.mapping.session_facts import SessionFactsMeta, build_session_facts_batch
from cohort_insights.parsing.models import RawSession
from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKeyRegistry
from cohort_insights.readiness.models import ReadinessResult
from cohort_insights.reporting.models import CohortFacts, SessionFacts
from cohort_insights.reporting.readiness_input import build_cohort_facts_with_readiness

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineResult:
    facts: CohortFacts
    readiness: ReadinessResult
    session_facts: List[SessionFacts] = field(default_factory=list)
    metas: List[SessionFactsMeta] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    demographics: Optional[DemographicsSummary] = None

    @property
    def processed(self) -> int:
        return len(self.session_facts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facts": self.facts.to_dict(),
            "readiness": self.readiness.to_dict(),
            "sessionFacts": [s.to_dict() for s in self.session_facts],
            "meta": {
                "processed": self.processed,
                "skipped": list(self.skipped),
                "mapLogs": [
                    {
                        "sessionId": m.session_id,
                        "pairedAssessments": m.paired_assessments,
                        "availableAssessments": m.available_assessments,
                        "extractionModel": m.extraction_model,
                        "extractionVersion": m.extraction_version,
                    }
                    for m in self.metas
                ],
            },
            "demographics": self.demographics.to_dict() if self.demographics else None,
        }


def run_pipeline(
    raw_sessions: Sequence[RawSession],
    extractor: SignalExtractor,
    *,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
    max_workers: int = config.EXTRACTION_CONCURRENCY,
    cache: Optional[FactsCache] = None,
    readiness_overrides: Optional[Mapping[str, Any]] = None,
    program_id: Optional[str] = None,
    current_year: Optional[int] = None,
    evaluated_at: Optional[str] = None,
) -> PipelineResult:
    """Map every session, reduce the survivors and evaluate readiness.

    Sessions whose mapping fails are reported in ``skipped`` as
    ``"<sessionId>: <reason>"``, as are repeated session ids after the
    first; the run continues with the rest.

    Raises
    ------
    PipelineError
        If *raw_sessions* is empty or no session could be mapped.
    cohort_insights.exceptions.CohortContractError
        If the mapped sessions span several programs and *program_id* is unset.
    """

    if not raw_sessions:
        raise PipelineError("No RawSession objects were provided.")

    # first occurrence of a session id wins; later ones are skipped
    unique: List[RawSession] = []
    skipped: List[str] = []
    seen = set()
    for raw in raw_sessions:
        if raw.session_id in seen:
            logger.warning("Skipping duplicate sessionId %s", raw.session_id)
            skipped.append(f"{raw.session_id}: duplicate sessionId")
            continue
        seen.add(raw.session_id)
        unique.append(raw)

    batch = build_session_facts_batch(
        unique,
        extractor,
        registry=registry,
        max_workers=max_workers,
        cache=cache,
    )
    skipped.extend(f"{failure.session_id}: {failure.error}" for failure in batch.failures)
    if not batch.facts:
        raise PipelineError("Failed to build SessionFacts from provided RawSessions.")

    mapped_ids = {facts.session_id for facts in batch.facts}
    mapped = [raw for raw in unique if raw.session_id in mapped_ids]
    demographics = {raw.session_id: raw.demographics for raw in mapped if raw.demographics}
    combined = build_cohort_facts_with_readiness(
        batch.facts,
        program_id=program_id,
        registry=registry,
        readiness_overrides=readiness_overrides,
        demographics=demographics,
        current_year=current_year,
        evaluated_at=evaluated_at,
    )
    summary = aggregate_demographics(mapped, current_year)

    logger.info(
        "Pipeline finished for program %s: processed=%d skipped=%d",
        combined.facts.program_id,
        len(batch.facts),
        len(skipped),
    )
    return PipelineResult(
        facts=combined.facts,
        readiness=combined.readiness,
        session_facts=batch.facts,
        metas=batch.metas,
        skipped=skipped,
        demographics=summary,
    )
