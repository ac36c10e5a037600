"""Shared fixtures: session document builders and a scripted extractor."""
from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional

import pytest

from cohort_insights.analysis.extract import ExtractedQuote, SessionExtraction
from cohort_insights.exceptions import ExtractionError

CONTENT_LABEL = "I am content with my friendships and relationships."
MENTAL_LABEL = "How would you rate your overall mental health?"
EXPENSE_LABEL = "How often do you worry about being able to meet normal monthly living expenses?"


def _survey_block(title: str, answers: Dict[str, object], completed: str) -> str:
    lines = [
        "Milestone:",
        f"- Title: {title}",
        f"- Completed at: {completed}",
        "- Applicant Survey Milestone",
    ]
    for label, value in answers.items():
        lines.append(f"Question: {label}")
        lines.append(f"Answer: {'' if value is None else value}")
    return "\n".join(lines)


def build_session_document(
    *,
    program_id: str = "prog-1",
    version_id: str = "v-1",
    pre: Optional[Dict[str, object]] = None,
    post: Optional[Dict[str, object]] = None,
    reflection: Optional[str] = "Leaning on my small group got me through a hard month.",
    reasons: Iterable[str] = ("I want to find community & support.",),
    challenges: Iterable[str] = ("Burnout at work",),
    gender: str = "Female",
    birth_year: str = "1990",
    zip_code: str = "30301",
    with_demographics: bool = True,
    with_application: bool = True,
    extra_milestones: Iterable[str] = (),
) -> str:
    """Return a markdown session document in the legacy export layout."""

    pre = {CONTENT_LABEL: 4, MENTAL_LABEL: 5} if pre is None else pre
    post = {CONTENT_LABEL: 7, MENTAL_LABEL: 8} if post is None else post

    parts: List[str] = [
        f"Offering ({program_id}) Details:",
        "- Name: Flourishing Cohort",
        f"Version ({version_id}) Details:",
        "- Start Date: 2024-01-08",
        "",
    ]
    if with_demographics:
        parts += [
            "Participant Demographics:",
            f"- Gender: {gender}",
            f"- Birth Year: {birth_year}",
            f"- Zip Code: {zip_code}",
            "",
        ]
    if with_application:
        parts.append("Program Application:")
        for reason in reasons:
            parts += ["Question: Why do you want to join?", f"Answer: {reason}", ""]
        for challenge in challenges:
            parts += ["Question: What challenges are you facing?", f"Answer: {challenge}", ""]

    parts.append("Session Milestones:")
    if pre:
        parts += [_survey_block("Pre-Program Survey", pre, "2024-01-08"), ""]
    if reflection is not None:
        parts += [
            "Milestone:",
            "- Title: Week 3 Reflection",
            "- Completed at: 2024-01-29",
            "- Reflection Milestone",
            f"Participant reflection: {reflection}",
            "",
        ]
    parts += list(extra_milestones)
    if post:
        parts += [_survey_block("Post-Program Survey", post, ""), ""]
    return "\n".join(parts)


@pytest.fixture
def session_document():
    """Factory fixture for single-session documents."""
    return build_session_document


class ScriptedExtractor:
    """Deterministic stand-in for the OpenAI extractor.

    Returns one quote per session built from the session id, and raises
    :class:`ExtractionError` for ids listed in *fail_for*.
    """

    def __init__(self, fail_for: Iterable[str] = (), themes: Optional[List[str]] = None):
        self.fail_for = set(fail_for)
        self.themes = themes or ["Belonging"]
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, session) -> SessionExtraction:
        with self._lock:
            self.calls.append(session.session_id)
        if session.session_id in self.fail_for:
            raise ExtractionError("model unavailable", session_id=session.session_id)
        return SessionExtraction(
            strengths=["Community", "Consistency"],
            improvements=["Sleep"],
            themes=list(self.themes),
            quotes=[
                ExtractedQuote(
                    text=f"My group kept me going ({session.session_id}).",
                    session_id=session.session_id,
                    theme=self.themes[0],
                )
            ],
            model="fake-model",
        )


@pytest.fixture
def extractor():
    return ScriptedExtractor()


@pytest.fixture
def make_extractor():
    """Factory fixture: ``make_extractor(fail_for=[...], themes=[...])``."""
    return ScriptedExtractor
