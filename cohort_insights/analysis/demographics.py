"""Demographic summaries over raw sessions."""
from __future__ import annotations

import datetime
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from cohort_insights.parsing.models import RawSession

# (label, min age, max age inclusive or None)
AGE_BUCKETS: Tuple[Tuple[str, int, Optional[int]], ...] = (
    ("<18", 0, 17),
    ("18-24", 18, 24),
    ("25-34", 25, 34),
    ("35-44", 35, 44),
    ("45-54", 45, 54),
    ("55-64", 55, 64),
    ("65+", 65, None),
)

UNKNOWN_GENDER = "Other/Unknown"

_GENDER_ALIASES: Dict[str, str] = {
    **dict.fromkeys(("female", "f", "woman", "w"), "Female"),
    **dict.fromkeys(("male", "m", "man"), "Male"),
    **dict.fromkeys(
        ("non-binary", "nonbinary", "nb", "genderqueer", "gender nonconforming"), "Non-binary"
    ),
    **dict.fromkeys(
        ("prefer not to say", "na", "n/a", "none", "prefer-not-to-say"), "Prefer not to say"
    ),
}

_ZIP_KEYS = ("Zip Code", "ZIP Code", "Zip", "Postal Code")


@dataclass(slots=True)
class DemographicsSummary:
    age_buckets: List[Dict[str, object]] = field(default_factory=list)
    gender_counts: Dict[str, int] = field(default_factory=dict)
    total: int = 0

    def to_dict(self) -> Dict[str, object]:  # noqa: D401 – simple helper
        return {
            "ageBuckets": self.age_buckets,
            "genderCounts": self.gender_counts,
            "total": self.total,
        }


def normalize_gender(value: Optional[str]) -> str:
    if not value:
        return UNKNOWN_GENDER
    return _GENDER_ALIASES.get(value.strip().lower(), UNKNOWN_GENDER)


def birth_year(demographics: Mapping[str, str]) -> Optional[int]:
    raw = (demographics.get("Birth Year") or "").strip()
    digits = raw[:4]
    return int(digits) if digits.isdigit() else None


def age_bucket(year: Optional[int], current_year: int) -> Optional[str]:
    """Return the bucket label for a birth *year*, or None if the year is implausible."""
    if year is None or year <= 1900 or year > current_year:
        return None
    age = current_year - year
    for label, low, high in AGE_BUCKETS:
        if age >= low and (high is None or age <= high):
            return label
    return None


def zip_code(demographics: Mapping[str, str]) -> Optional[str]:
    for key in _ZIP_KEYS:
        value = (demographics.get(key) or "").strip()
        if value:
            return value
    return None


def aggregate_demographics(
    sessions: Sequence[RawSession], current_year: Optional[int] = None
) -> DemographicsSummary:
    """Count sessions per age bucket and normalized gender."""

    year_now = current_year or datetime.date.today().year
    ages: Counter[str] = Counter()
    genders: Counter[str] = Counter()
    for session in sessions:
        bucket = age_bucket(birth_year(session.demographics), year_now)
        if bucket:
            ages[bucket] += 1
        genders[normalize_gender(session.demographics.get("Gender"))] += 1

    return DemographicsSummary(
        age_buckets=[{"label": label, "count": ages[label]} for label, _, _ in AGE_BUCKETS],
        gender_counts=dict(genders),
        total=len(sessions),
    )
