"""Input snapshot and result shapes for readiness evaluation."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import ConfigDict, Field, model_validator

from cohort_insights.parsing.models import RecordModel
from cohort_insights.readiness.config import ReadinessConfig

InputValue = Union[bool, int, float, str]


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


class SurveySnapshot(RecordModel):
    participant_id: str = Field(min_length=1)
    responses: Dict[str, Any] = Field(default_factory=dict)


class SurveyInput(RecordModel):
    pre: List[SurveySnapshot] = Field(default_factory=list)
    post: List[SurveySnapshot] = Field(default_factory=list)


class SessionDoc(RecordModel):
    id: str = Field(min_length=1)
    content: str
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class Testimonial(RecordModel):
    id: str = Field(min_length=1)
    content: str
    approved: Optional[bool] = None

    @property
    def is_approved(self) -> bool:
        return self.approved is not False


class GroupSlice(RecordModel):
    group_id: str = Field(min_length=1)
    participant_ids: List[str] = Field(default_factory=list)


class ItemStats(RecordModel):
    null_count: int = Field(ge=0)
    total: int = Field(ge=0)

    @property
    def null_rate(self) -> float:
        return self.null_count / self.total if self.total > 0 else 1.0


class FactDenominators(RecordModel):
    improved: Optional[int] = Field(default=None, ge=0)
    total: Optional[int] = Field(default=None, ge=0)
    distribution: Optional[Dict[str, int]] = None
    item_level_stats: Optional[Dict[str, ItemStats]] = None


class ReasonStats(RecordModel):
    sessions_with_reasons: int = Field(default=0, ge=0)
    unique_reasons: int = Field(default=0, ge=0)


class ReadinessInput(RecordModel):
    """Everything the evaluator looks at; all parts optional."""

    surveys: Optional[SurveyInput] = None
    session_docs: List[SessionDoc] = Field(default_factory=list)
    testimonials: List[Testimonial] = Field(default_factory=list)
    groups: Dict[str, List[GroupSlice]] = Field(default_factory=dict)
    facts: Optional[FactDenominators] = None
    reasons: Optional[ReasonStats] = None


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


class _ResultModel(RecordModel):
    model_config = ConfigDict(extra="forbid")


class Denominator(_ResultModel):
    num: int = Field(ge=0)
    den: int = Field(ge=0)
    label: Optional[str] = None


class PanelReadiness(_ResultModel):
    ready: bool
    inputs: Dict[str, InputValue] = Field(default_factory=dict)
    denominators: Optional[Dict[str, Denominator]] = None
    reasons: List[str] = Field(default_factory=list)
    unlock: List[str] = Field(default_factory=list)
    privacy_checked: Optional[bool] = None

    @model_validator(mode="after")
    def _explained(self) -> "PanelReadiness":
        if not self.ready and not (self.reasons and self.unlock):
            raise ValueError("a panel that is not ready needs reasons and unlock steps")
        return self


class DatasetHealth(_ResultModel):
    participants: int = Field(ge=0)
    pre_count: int = Field(ge=0)
    post_count: int = Field(ge=0)
    paired_count: int = Field(ge=0)
    has_typedrift: bool
    null_rate_pre: float = Field(ge=0, le=1)
    null_rate_post: float = Field(ge=0, le=1)
    meets_paired_minimum: bool
    meets_null_rate_pre: bool
    meets_null_rate_post: bool


class LLMQuality(_ResultModel):
    session_docs: int = Field(ge=0)
    avg_confidence: float = Field(ge=0, le=1)
    meets_doc_minimum: bool
    meets_confidence_minimum: bool


class PrivacyStatus(_ResultModel):
    small_n_threshold: int = Field(ge=1)
    groups_suppressed: List[str] = Field(default_factory=list)
    ready: bool = True


class PanelResults(_ResultModel):
    overall_impact: PanelReadiness
    improvement_donut: PanelReadiness
    flourishing_grid: PanelReadiness
    key_themes: PanelReadiness
    key_areas_challenges: PanelReadiness
    participant_reasons: PanelReadiness
    strengths_improvements: PanelReadiness
    testimonials: PanelReadiness


class ReadinessResult(_ResultModel):
    version: str = Field(min_length=1)
    evaluated_at: str = Field(min_length=1)
    config: ReadinessConfig
    dataset: DatasetHealth
    llm: LLMQuality
    privacy: PrivacyStatus
    panels: PanelResults
