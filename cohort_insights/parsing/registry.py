"""Survey-key registry.

The registry maps stable survey keys to their question label, answer type and,
for scale items, the declared range and improvement direction. It is an
immutable lookup table that callers pass explicitly into the parser, the
normalizer and the aggregator, so tests can substitute their own.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Literal, Mapping, Optional, Tuple

SurveyKeyType = Literal["scale", "categorical"]
BetterWhen = Literal["higher", "lower"]


@dataclass(frozen=True, slots=True)
class ScaleRange:
    """Inclusive integer range of a scale item."""

    min: int = 1
    max: int = 10
    step: int = 1

    def contains(self, value: int) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True, slots=True)
class SurveyKey:
    """Metadata for one survey item."""

    key: str
    label: str
    type: SurveyKeyType
    scale: Optional[ScaleRange] = None
    better_when: Optional[BetterWhen] = None

    @property
    def is_scale(self) -> bool:
        return self.type == "scale"


class SurveyKeyRegistry:
    """Read-only collection of :class:`SurveyKey` entries indexed by key and label."""

    def __init__(self, entries: Iterable[SurveyKey]) -> None:
        by_key = {}
        by_label = {}
        for entry in entries:
            if entry.key in by_key:
                raise ValueError(f"Duplicate survey key: {entry.key}")
            by_key[entry.key] = entry
            by_label[entry.label.strip()] = entry
        self._by_key: Mapping[str, SurveyKey] = MappingProxyType(by_key)
        self._by_label: Mapping[str, SurveyKey] = MappingProxyType(by_label)

    def get(self, key: str) -> Optional[SurveyKey]:
        return self._by_key.get(key)

    def by_label(self, label: str) -> Optional[SurveyKey]:
        """Return the entry whose question label matches *label* exactly (trimmed)."""
        return self._by_label.get(label.strip())

    def better_when(self, key: str) -> Optional[BetterWhen]:
        entry = self._by_key.get(key)
        return entry.better_when if entry else None

    def scale_keys(self) -> Tuple[str, ...]:
        return tuple(k for k, v in self._by_key.items() if v.is_scale)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __iter__(self) -> Iterator[SurveyKey]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)


_TEN_POINT = ScaleRange(min=1, max=10, step=1)


def _scale(key: str, label: str, better_when: BetterWhen = "higher") -> SurveyKey:
    return SurveyKey(
        key=key, label=label, type="scale", scale=_TEN_POINT, better_when=better_when
    )


def _categorical(key: str, label: str) -> SurveyKey:
    return SurveyKey(key=key, label=label, type="categorical")


SURVEY_KEYS: Tuple[SurveyKey, ...] = (
    _scale(
        "relationships_contentment",
        "I am content with my friendships and relationships.",
    ),
    _scale(
        "relationships_satisfaction",
        "My relationships are as satisfying as I would want them to be.",
    ),
    _scale(
        "physical_health_rating",
        "In general, how would you rate your physical health?",
    ),
    _scale(
        "mental_health_rating",
        "How would you rate your overall mental health?",
    ),
    _scale(
        "expense_worry_frequency",
        "How often do you worry about being able to meet normal monthly living expenses?",
        better_when="lower",
    ),
    _scale(
        "safety_worry_frequency",
        "How often do you worry about safety, food, or housing?",
        better_when="lower",
    ),
    _scale(
        "life_worthwhile_extent",
        "Overall, to what extent do you feel the things you do in your life are worthwhile?",
    ),
    _scale("purpose_understanding", "I understand my purpose in life."),
    _scale("desire_jesus_first", "I desire Jesus to be first in my life."),
    _scale(
        "bible_authority_belief",
        "I believe the Bible has authority over what I say and do.",
    ),
    _categorical(
        "church_attendance_recency",
        "When was the last time you attended a Christian church service, other than "
        "for a holiday service, such as Christmas or Easter, or for special events "
        "such as a wedding or funeral?",
    ),
    _categorical("birth_year_bucket", "In what year were you born?"),
    _categorical("gender", "Please indicate your gender."),
    _categorical("ethnicity", "Which of the following best describes you?"),
)

DEFAULT_REGISTRY = SurveyKeyRegistry(SURVEY_KEYS)
