"""Persisted record shapes for session and cohort facts.

Every record is validated on construction; a value violating its declared
range or cardinality raises :class:`pydantic.ValidationError` before the
object is handed to a caller.
"""
from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import ConfigDict, Field, ValidationInfo, field_validator, model_validator

from cohort_insights import config
from cohort_insights.parsing.models import RecordModel, registry_from_context

__all__ = [
    "AssessmentDelta",
    "SessionQuote",
    "Completeness",
    "SessionFacts",
    "TagCount",
    "CohortAssessment",
    "CompletionStats",
    "CohortFacts",
]


class FactsModel(RecordModel):
    model_config = ConfigDict(extra="forbid")


class AssessmentDelta(FactsModel):
    """One scale item's pre/post pairing."""

    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    pre: Optional[int] = Field(default=None, ge=1, le=10)
    post: Optional[int] = Field(default=None, ge=1, le=10)
    change: Optional[int] = Field(default=None, ge=-9, le=9)

    @model_validator(mode="after")
    def _check_change(self) -> "AssessmentDelta":
        expected = self.post - self.pre if self.pre is not None and self.post is not None else None
        if self.change != expected:
            raise ValueError(f"change for {self.key} must be {expected}, got {self.change}")
        return self

    @property
    def is_paired(self) -> bool:
        return self.pre is not None and self.post is not None


class SessionQuote(FactsModel):
    text: str = Field(min_length=6)
    theme: Optional[str] = Field(default=None, min_length=1)
    session_id: str = Field(min_length=1)


class Completeness(FactsModel):
    has_pre: bool
    has_post: bool
    has_reflections: bool


class SessionFacts(FactsModel):
    """Normalized per-session output of the map stage."""

    session_id: str = Field(min_length=1)
    program_id: str = Field(min_length=1)
    milestone_completion_pct: float = Field(ge=0, le=100)
    assessments: List[AssessmentDelta] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list, max_length=6)
    improvements: List[str] = Field(default_factory=list, max_length=6)
    themes: List[str] = Field(default_factory=list, max_length=6)
    reasons: List[str] = Field(default_factory=list, max_length=10)
    challenges: List[str] = Field(default_factory=list, max_length=10)
    quotes: List[SessionQuote] = Field(default_factory=list, max_length=2)
    completeness: Completeness
    version: str = Field(min_length=1)
    created_at: str = Field(min_length=1)

    @field_validator("strengths", "improvements", "themes", "reasons", "challenges")
    @classmethod
    def _non_empty_tags(cls, values: List[str]) -> List[str]:
        if any(not value for value in values):
            raise ValueError("tags must be non-empty strings")
        return values

    @field_validator("assessments")
    @classmethod
    def _registered_keys(cls, values: List[AssessmentDelta], info: ValidationInfo) -> List[AssessmentDelta]:
        registry = registry_from_context(info)
        unknown = [delta.key for delta in values if delta.key not in registry]
        if unknown:
            raise ValueError(f"unregistered assessment keys: {', '.join(unknown)}")
        return values

    @property
    def paired_count(self) -> int:
        return sum(1 for delta in self.assessments if delta.is_paired)


class TagCount(FactsModel):
    tag: str = Field(min_length=1)
    count: int = Field(ge=0)


class CohortAssessment(FactsModel):
    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    avg_pre: Optional[float] = Field(default=None, ge=1, le=10)
    avg_post: Optional[float] = Field(default=None, ge=1, le=10)
    avg_change: Optional[float] = Field(default=None, ge=-9, le=9)
    pct_improved: Optional[float] = Field(default=None, ge=0, le=1)
    better_when: Optional[Literal["higher", "lower"]] = None


class CompletionStats(FactsModel):
    mean_pct: float = Field(ge=0, le=100)
    median_pct: float = Field(ge=0, le=100)


class CohortFacts(FactsModel):
    """Reduction over one program's SessionFacts."""

    program_id: str = Field(min_length=1)
    n_sessions: int = Field(ge=0)
    n_with_pre_post: int = Field(ge=0)
    completion: CompletionStats
    assessments: List[CohortAssessment] = Field(default_factory=list)
    top_strengths: List[TagCount] = Field(default_factory=list, max_length=config.TAG_LIMIT)
    top_improvements: List[TagCount] = Field(default_factory=list, max_length=config.TAG_LIMIT)
    top_themes: List[TagCount] = Field(default_factory=list, max_length=config.TAG_LIMIT)
    top_challenges: List[TagCount] = Field(default_factory=list, max_length=config.TAG_LIMIT)
    top_reasons: List[TagCount] = Field(default_factory=list, max_length=config.TAG_LIMIT)
    exemplar_quotes: List[SessionQuote] = Field(default_factory=list, max_length=config.QUOTE_LIMIT)
    data_quality_notes: List[str] = Field(
        default_factory=list, max_length=config.MAX_DATA_QUALITY_NOTES
    )
    facts_hash: str = Field(min_length=1)

    def assessment_map(self) -> Dict[str, CohortAssessment]:
        return {assessment.key: assessment for assessment in self.assessments}
