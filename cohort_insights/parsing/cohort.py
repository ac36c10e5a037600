"""Split a multi-session ("cohort") document into individual RawSession records.

Each session starts at a ``Version (<id>) Details:`` marker. The program
header (``Offering (<id>) Details:``) usually appears only once per session
and *before* the marker, so it is re-attached to the candidate text. Every
candidate is tried with progressively more permissive slicing strategies
before the session is given up on; failures never abort the batch.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from cohort_insights.exceptions import ParseError
from cohort_insights.parsing.document import locate_heading, parse_document
from cohort_insights.parsing.models import RawSession
from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKeyRegistry

logger = logging.getLogger(__name__)

COHORT_ID_PREFIX = "cohort-"

_VERSION_MARKER_RE = re.compile(
    r"^[ \t]*Version\s*\(([^)]+)\)\s*Details:?[ \t]*$", re.IGNORECASE | re.MULTILINE
)
_OFFERING_MARKER_RE = re.compile(
    r"^[ \t]*Offering\s*\(([^)]+)\)\s*Details:?[ \t]*$", re.IGNORECASE | re.MULTILINE
)
_SEPARATOR_RE = re.compile(r"^[ \t]*(?:-{3,}|={3,}|\*{3,}|_{3,})[ \t]*$", re.MULTILINE)
_MILESTONE_HEADINGS = ("Session Milestones:", "Session Milestones", "Milestones:", "Milestones")


@dataclass(slots=True)
class CohortSkip:
    """A session that could not be extracted from a cohort document."""

    index: int
    version_id: Optional[str]
    error: str

    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – simple helper
        return {"index": self.index, "versionId": self.version_id, "error": self.error}


@dataclass(slots=True)
class CohortExtraction:
    sessions: List[RawSession] = field(default_factory=list)
    skipped: List[CohortSkip] = field(default_factory=list)


@dataclass(slots=True)
class _Segment:
    version_id: Optional[str]
    start: int
    end: int


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------


def _segments(content: str) -> List[_Segment]:
    """Return one segment per distinct run of Version markers.

    Consecutive markers carrying the same id belong to the same session.
    """

    markers = list(_VERSION_MARKER_RE.finditer(content))
    segments: List[_Segment] = []
    for marker in markers:
        version_id = marker.group(1).strip()
        if segments and segments[-1].version_id == version_id:
            continue
        segments.append(_Segment(version_id=version_id, start=marker.start(), end=len(content)))
    for current, following in zip(segments, segments[1:]):
        current.end = following.start
    return segments


def _header_block_end(content: str, line_end: int) -> int:
    """Return the offset after the bullet/blank lines following a header line."""
    cursor = line_end
    while cursor < len(content):
        next_break = content.find("\n", cursor + 1)
        line_stop = len(content) if next_break == -1 else next_break
        line = content[cursor:line_stop].strip()
        if line and not line.startswith("-"):
            break
        cursor = line_stop
    return cursor


def _preceding_offering_block(content: str, before: int) -> str:
    block = ""
    for match in _OFFERING_MARKER_RE.finditer(content, 0, before):
        end = min(_header_block_end(content, match.end()), before)
        block = content[match.start() : end].strip()
    return block


def _cut_trailing_offering(window: str) -> str:
    """Drop an Offering block at the end of *window* (it belongs to the next session)."""
    for match in reversed(list(_OFFERING_MARKER_RE.finditer(window))):
        if not window[_header_block_end(window, match.end()) :].strip():
            return window[: match.start()].rstrip()
    return window.rstrip()


def _join(header: str, body: str) -> str:
    if not header:
        return body
    return f"{header}\n\n{body}"


def _trim_at_separator(text: str) -> str:
    heading = locate_heading(text, *_MILESTONE_HEADINGS)
    separator = _SEPARATOR_RE.search(text, heading[1] if heading else 0)
    return text[: separator.start()].rstrip() if separator else text


def _candidates(content: str, segment: _Segment) -> List[Tuple[str, str]]:
    window = content[segment.start : segment.end]
    header = _preceding_offering_block(content, segment.start)
    as_is = _cut_trailing_offering(window)
    with_header = _join(header, as_is)
    return [
        ("as_is", as_is),
        ("with_header", with_header),
        ("trimmed", _trim_at_separator(with_header)),
        ("extended", _join(header, window.rstrip())),
    ]


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _attempt(text: str, registry: SurveyKeyRegistry) -> RawSession:
    raw = parse_document(text, registry=registry)
    if raw.program_id == "unknown-program":
        raise ParseError("Unable to resolve program id (no Offering Details header)")
    return raw


def _extract_one(
    content: str, segment: _Segment, registry: SurveyKeyRegistry
) -> Tuple[Optional[RawSession], str]:
    last_error = "No parse strategy attempted"
    tried = set()
    for strategy, text in _candidates(content, segment):
        if text in tried:
            continue
        tried.add(text)
        try:
            return _attempt(text, registry), ""
        except (ParseError, ValidationError) as exc:
            last_error = str(exc)
            logger.debug(
                "Strategy %s failed for version %s: %s", strategy, segment.version_id, exc
            )
    return None, last_error


def extract_sessions_from_cohort(
    document: str,
    *,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
    id_factory: Optional[Callable[[int], str]] = None,
) -> CohortExtraction:
    """Extract every parseable session from a cohort *document*.

    Successful sessions are renumbered ``cohort-001``, ``cohort-002``, ... in
    document order, independent of embedded identifiers. Sessions that fail
    every strategy are reported in ``skipped``.
    """

    make_id = id_factory or (lambda n: f"{COHORT_ID_PREFIX}{n:03d}")
    content = document.replace("\r\n", "\n").replace("\r", "\n")
    segments = _segments(content)
    if not segments:
        segments = [_Segment(version_id=None, start=0, end=len(content))]

    result = CohortExtraction()
    for index, segment in enumerate(segments):
        raw, error = _extract_one(content, segment, registry)
        if raw is None:
            logger.warning(
                "Skipping cohort session #%d (version %s): %s", index, segment.version_id, error
            )
            result.skipped.append(CohortSkip(index=index, version_id=segment.version_id, error=error))
            continue
        session_id = make_id(len(result.sessions) + 1)
        result.sessions.append(raw.model_copy(update={"session_id": session_id}))

    logger.info(
        "Cohort extraction finished: processed=%d skipped=%d",
        len(result.sessions),
        len(result.skipped),
    )
    return result
