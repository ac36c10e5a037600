"""Readiness thresholds: defaults, deep-merged overrides and override files.

Every gate the evaluator applies is a field here, so a different governance
policy is a configuration change, never a code change.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from cohort_insights.parsing.models import RecordModel

logger = logging.getLogger(__name__)

__all__ = [
    "ReadinessConfig",
    "DEFAULT_READINESS_CONFIG",
    "get_readiness_config",
    "load_readiness_overrides",
]


class _ConfigModel(RecordModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CohortThresholds(_ConfigModel):
    min_paired_surveys: int = Field(default=10, ge=0)
    max_null_rate_pre: float = Field(default=0.15, ge=0, le=1)
    max_null_rate_post: float = Field(default=0.15, ge=0, le=1)


class PairedPanel(_ConfigModel):
    min_paired: int = Field(default=5, ge=0)


class FlourishingGridPanel(PairedPanel):
    max_null_rate_per_item: float = Field(default=0.10, ge=0, le=1)


class StrengthsImprovementsPanel(PairedPanel):
    llm_min_docs: Optional[int] = Field(default=5, ge=0)
    llm_min_confidence: Optional[float] = Field(default=0.6, ge=0, le=1)


class DocumentPanel(_ConfigModel):
    min_docs: int = Field(default=5, ge=0)
    min_confidence: float = Field(default=0.6, ge=0, le=1)


class ParticipantReasonsPanel(_ConfigModel):
    min_reasons_unique: int = Field(default=3, ge=0)
    min_sessions_with_reasons: int = Field(default=3, ge=0)


class TestimonialsPanel(_ConfigModel):
    min_count: int = Field(default=3, ge=0)


class PanelThresholds(_ConfigModel):
    overall_impact: PairedPanel = Field(default_factory=lambda: PairedPanel(min_paired=10))
    improvement_donut: PairedPanel = Field(default_factory=PairedPanel)
    flourishing_grid: FlourishingGridPanel = Field(default_factory=FlourishingGridPanel)
    strengths_improvements: StrengthsImprovementsPanel = Field(
        default_factory=StrengthsImprovementsPanel
    )
    key_themes: DocumentPanel = Field(default_factory=DocumentPanel)
    key_areas_challenges: DocumentPanel = Field(default_factory=DocumentPanel)
    participant_reasons: ParticipantReasonsPanel = Field(default_factory=ParticipantReasonsPanel)
    testimonials: TestimonialsPanel = Field(default_factory=TestimonialsPanel)


class PrivacyRules(_ConfigModel):
    min_group_size: int = Field(default=3, ge=1)
    apply_to_slices: bool = True


class LLMThresholds(_ConfigModel):
    min_documents: int = Field(default=5, ge=0)
    min_avg_confidence: float = Field(default=0.6, ge=0, le=1)


class ReadinessConfig(_ConfigModel):
    """Versioned set of readiness thresholds."""

    version: str = Field(default="readiness.v1", min_length=1)
    cohort: CohortThresholds = Field(default_factory=CohortThresholds)
    panels: PanelThresholds = Field(default_factory=PanelThresholds)
    privacy: PrivacyRules = Field(default_factory=PrivacyRules)
    llm: LLMThresholds = Field(default_factory=LLMThresholds)


DEFAULT_READINESS_CONFIG = ReadinessConfig()


def _deep_merge(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge *overrides* into a copy of *base*; nested mappings merge recursively.

    Override keys may use snake_case or camelCase.
    """

    merged = dict(base)
    for raw_key, value in overrides.items():
        key = to_camel(raw_key) if "_" in raw_key else raw_key
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def get_readiness_config(
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    base: ReadinessConfig = DEFAULT_READINESS_CONFIG,
) -> ReadinessConfig:
    """Return *base* with a partial *overrides* mapping deep-merged over it.

    Raises
    ------
    pydantic.ValidationError
        If an override names an unknown key or violates a threshold range.
    """

    if not overrides:
        return base
    return ReadinessConfig.model_validate(_deep_merge(base.to_dict(), overrides))


def load_readiness_overrides(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a JSON file of readiness overrides.

    Raises
    ------
    ValueError
        If the file does not contain a JSON object.
    """

    text = Path(path).read_text(encoding="utf-8")
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Readiness overrides in {path} must be a JSON object")
    logger.info("Loaded readiness overrides from %s", path)
    return data
