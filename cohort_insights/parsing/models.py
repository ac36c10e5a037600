"""Record shapes produced by the document parser.

Milestones form a closed, tagged union keyed on ``type``. Every legacy shape
(``qa`` arrays, root-level meeting fields, ``reflection{text}`` objects, ...)
is folded into one canonical in-memory representation by the ``before``
validators below, so downstream code never branches on source format.
"""
from __future__ import annotations

import hashlib
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, model_validator
from pydantic.alias_generators import to_camel

from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKeyRegistry

__all__ = [
    "RecordModel",
    "SurveyAnswer",
    "ApplicantSurveyMilestone",
    "MeetingDetails",
    "MeetingMilestone",
    "OutcomeDetails",
    "OutcomeNoteMilestone",
    "ReflectionMilestone",
    "OnlineActivityMilestone",
    "Milestone",
    "MilestoneType",
    "Application",
    "RawSession",
]

MilestoneType = Literal[
    "Applicant Survey", "Meeting", "Outcome Note", "Reflection", "Online Activity"
]

AnswerValue = Optional[Union[int, float, str]]


class RecordModel(BaseModel):
    """Base for persisted records: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – simple helper
        """Return a JSON-ready ``dict`` using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


def registry_from_context(info: ValidationInfo) -> SurveyKeyRegistry:
    context = info.context or {}
    return context.get("registry") or DEFAULT_REGISTRY


def _strip_or_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class SurveyAnswer(RecordModel):
    """One question/answer pair of an applicant survey."""

    key: str = Field(min_length=1)
    label: str
    answer: AnswerValue = None


class _MilestoneBase(RecordModel):
    title: str
    description: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return bool(self.completed_at and self.completed_at.strip())


class ApplicantSurveyMilestone(_MilestoneBase):
    type: Literal["Applicant Survey"] = "Applicant Survey"
    answers: List[SurveyAnswer] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unify_answers(cls, data: Any, info: ValidationInfo) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy_qa = data.pop("qa", None)
        answers = data.get("answers")
        if isinstance(answers, dict):
            registry = registry_from_context(info)
            converted = []
            for key, value in answers.items():
                entry = registry.get(key)
                converted.append(
                    {"key": key, "label": entry.label if entry else key, "answer": value}
                )
            data["answers"] = converted
        elif answers is None and isinstance(legacy_qa, list):
            data["answers"] = legacy_qa
        return data

    def answer_map(self) -> Dict[str, AnswerValue]:
        """Return ``{key: answer}`` preserving question order."""
        return {entry.key: entry.answer for entry in self.answers}


class MeetingDetails(RecordModel):
    with_: Optional[str] = Field(default=None, alias="with")
    details: Optional[str] = None
    scheduling_link: Optional[str] = None


class MeetingMilestone(_MilestoneBase):
    type: Literal["Meeting"] = "Meeting"
    meeting: MeetingDetails = Field(default_factory=MeetingDetails)

    @model_validator(mode="before")
    @classmethod
    def _unify_meeting(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        nested = dict(data.get("meeting") or {})
        link = data.pop("schedulingLink", data.pop("scheduling_link", None))
        details = data.pop("details", None)
        if "schedulingLink" not in nested and "scheduling_link" not in nested:
            nested["schedulingLink"] = link
        if "details" not in nested:
            nested["details"] = details
        data["meeting"] = {k: _strip_or_none(v) for k, v in nested.items()}
        return data


class OutcomeDetails(RecordModel):
    date: Optional[str] = None
    focus: Optional[Union[str, List[str]]] = None
    notes: Optional[Union[str, List[str]]] = None
    plan: List[str] = Field(default_factory=list)


class OutcomeNoteMilestone(_MilestoneBase):
    type: Literal["Outcome Note"] = "Outcome Note"
    markdown_outcome: OutcomeDetails = Field(default_factory=OutcomeDetails)

    @model_validator(mode="before")
    @classmethod
    def _drop_null_plan(cls, data: Any) -> Any:
        if isinstance(data, dict):
            outcome = data.get("markdownOutcome") or data.get("markdown_outcome")
            if isinstance(outcome, dict) and outcome.get("plan") is None:
                outcome = {**outcome, "plan": []}
                data = {**data, "markdownOutcome": outcome}
                data.pop("markdown_outcome", None)
        return data


class ReflectionMilestone(_MilestoneBase):
    type: Literal["Reflection"] = "Reflection"
    text: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unify_text(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        nested = data.pop("reflection", None)
        if data.get("text") is None and isinstance(nested, dict):
            data["text"] = nested.get("text")
        data["text"] = _strip_or_none(data.get("text"))
        return data

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


class OnlineActivityMilestone(_MilestoneBase):
    type: Literal["Online Activity"] = "Online Activity"
    link: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unify_link(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy = data.pop("activityLink", None)
        nested = data.pop("activity", None)
        if data.get("link") is None:
            if isinstance(nested, dict) and nested.get("link"):
                data["link"] = nested["link"]
            else:
                data["link"] = legacy
        data["link"] = _strip_or_none(data.get("link"))
        return data


Milestone = Annotated[
    Union[
        ApplicantSurveyMilestone,
        MeetingMilestone,
        OutcomeNoteMilestone,
        ReflectionMilestone,
        OnlineActivityMilestone,
    ],
    Field(discriminator="type"),
]


class Application(RecordModel):
    reasons: List[str] = Field(default_factory=list)
    challenges: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.reasons and not self.challenges


class RawSession(RecordModel):
    """One participant's raw record, produced once per document and never mutated."""

    model_config = ConfigDict(frozen=True)

    raw_schema_version: Literal["v1"] = "v1"
    generator_version: str = "legacy-markdown"
    seed: Union[str, int] = "legacy-session"
    session_id: str = Field(min_length=1)
    program_id: str = Field(min_length=1)
    sentiment: Optional[Literal["positive", "neutral", "negative"]] = None
    demographics: Dict[str, str] = Field(default_factory=dict)
    application: Application = Field(default_factory=Application)
    milestones: List[Milestone] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _null_sections(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for name in ("demographics", "application"):
                if data.get(name) is None:
                    data.pop(name, None)
        return data

    def fingerprint(self) -> str:
        """Return a SHA-256 digest of the serialized record."""
        payload = self.model_dump_json(by_alias=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def milestones_of(self, kind: type) -> list:
        return [m for m in self.milestones if isinstance(m, kind)]
