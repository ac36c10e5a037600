"""Text-signal extraction: strengths, improvements, themes and quotes.

The extractor is an external collaborator of the map stage. Any callable that
takes a :class:`RawSession` and returns a :class:`SessionExtraction` works;
:class:`OpenAISignalExtractor` is the production implementation.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from cohort_insights import config
from cohort_insights.analysis.recovery import recover_json
from cohort_insights.exceptions import ExtractionError
from cohort_insights.openai_client import chat_completion
from cohort_insights.parsing.models import (
    OutcomeNoteMilestone,
    RawSession,
    ReflectionMilestone,
)

logger = logging.getLogger(__name__)

EXTRACTION_AGENT_VERSION = "session-extract@0.1.0"
NO_MODEL = "none"

_QUOTE_MIN_CHARS = 6
_QUOTE_MAX_CHARS = 220
_MAX_TAGS = 6
_MAX_QUOTES = 2
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class ExtractedQuote:
    text: str
    session_id: str
    theme: Optional[str] = None


@dataclass(slots=True)
class SessionExtraction:
    """Signals extracted from one session's narrative text."""

    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    themes: List[str] = field(default_factory=list)
    quotes: List[ExtractedQuote] = field(default_factory=list)
    model: str = NO_MODEL

    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – simple helper
        return asdict(self)


class SignalExtractor(Protocol):
    def __call__(self, session: RawSession) -> SessionExtraction: ...


# ---------------------------------------------------------------------------
# Context building
# ---------------------------------------------------------------------------


def _squash(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def _format_field(value: Any) -> str:
    if isinstance(value, list):
        return "; ".join(_squash(str(entry)) for entry in value)
    return _squash(str(value))


def _truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


def build_context(session: RawSession, *, limit: int = config.EXTRACTION_CONTEXT_CHARS) -> Optional[str]:
    """Return the narrative snippets sent to the model, or ``None`` if there are none.

    Outcome notes come first, one pipe-separated line each, followed by every
    non-empty reflection. The result is truncated to *limit* characters.
    """

    fragments: List[str] = []
    for milestone in session.milestones_of(OutcomeNoteMilestone):
        outcome = milestone.markdown_outcome
        parts: List[str] = []
        if milestone.title:
            parts.append(f"Outcome: {milestone.title}")
        if outcome.date:
            parts.append(f"Date: {_format_field(outcome.date)}")
        if outcome.focus:
            parts.append(f"Focus: {_format_field(outcome.focus)}")
        if outcome.notes:
            parts.append(f"Notes: {_format_field(outcome.notes)}")
        if outcome.plan:
            parts.append(f"Plan: {'; '.join(outcome.plan)}")
        if parts:
            fragments.append(" | ".join(parts))

    for milestone in session.milestones_of(ReflectionMilestone):
        if milestone.has_text:
            fragments.append(f"Reflection: {_squash(milestone.text or '')}")

    if not fragments:
        return None
    return _truncate("\n".join(fragments), limit)


# ---------------------------------------------------------------------------
# OpenAI-backed extractor
# ---------------------------------------------------------------------------

_PROMPT_SYSTEM = (
    "You analyze counseling program session notes. Return concise tags that "
    "represent participant strengths, improvement targets, and overarching "
    "themes. Use only language present in the supplied reflections and outcome "
    "notes. Avoid diagnoses, assumptions, or new facts. Provide 1-2 short quotes "
    "already present in the text. Do not fabricate content. Respond ONLY with a "
    'JSON object of the form {"strengths": [...], "improvements": [...], '
    '"themes": [...], "quotes": [{"text": "...", "theme": "..."}]}.'
)


def _user_prompt(session_id: str, context: str) -> str:
    return (
        f"Session ID: {session_id}\n\nNarrative snippets:\n{context}\n\n"
        "Return JSON with arrays: strengths, improvements, themes (<=6 items each, "
        "concise tags) and quotes (1-2 entries with existing text). Quotes must be "
        f"between {_QUOTE_MIN_CHARS} and {_QUOTE_MAX_CHARS} characters."
    )


def _clean_tags(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    tags: List[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        tag = value.strip()
        if len(tag) >= 2 and tag not in tags:
            tags.append(tag)
    return tags[:_MAX_TAGS]


def _clean_quotes(values: Any, session_id: str) -> List[ExtractedQuote]:
    if not isinstance(values, list):
        return []
    quotes: List[ExtractedQuote] = []
    for value in values:
        if not isinstance(value, dict) or not isinstance(value.get("text"), str):
            continue
        text = value["text"].strip()
        if not _QUOTE_MIN_CHARS <= len(text) <= _QUOTE_MAX_CHARS:
            continue
        theme = value.get("theme")
        theme = theme.strip() if isinstance(theme, str) and theme.strip() else None
        quotes.append(ExtractedQuote(text=text, session_id=session_id, theme=theme))
    return quotes[:_MAX_QUOTES]


class OpenAISignalExtractor:
    """Extract session signals with an OpenAI chat model.

    Model output is untrusted: it is recovered with :func:`recover_json`,
    then de-duplicated and truncated.
    """

    def __init__(self, *, model: str = config.EXTRACTION_MODEL, temperature: float = 0.2):
        self.model = model
        self.temperature = temperature

    def __call__(self, session: RawSession) -> SessionExtraction:
        context = build_context(session)
        if context is None:
            logger.info("Session %s has no narrative text; skipping extraction", session.session_id)
            return SessionExtraction(model=NO_MODEL)

        messages = [
            {"role": "system", "content": _PROMPT_SYSTEM},
            {"role": "user", "content": _user_prompt(session.session_id, context)},
        ]
        try:
            response = chat_completion(messages, model=self.model, temperature=self.temperature)
            content: str = response["choices"][0]["message"]["content"]
        except Exception as exc:
            raise ExtractionError(
                f"Signal extraction failed for session {session.session_id}: {exc}",
                session_id=session.session_id,
            ) from exc

        payload = recover_json(content, {}, label=f"extraction for {session.session_id}")
        if not isinstance(payload, dict):
            payload = {}
        return SessionExtraction(
            strengths=_clean_tags(payload.get("strengths")),
            improvements=_clean_tags(payload.get("improvements")),
            themes=_clean_tags(payload.get("themes")),
            quotes=_clean_quotes(payload.get("quotes"), session.session_id),
            model=self.model,
        )
