"""Tolerant, heading-driven parser for session documents.

A session document is a sequence of labelled sections located by heading
text. The locator prefers an exact heading line and falls back to a
case-insensitive substring match; content between two located headings is
handed to a section-specific sub-parser. Only the milestones section is
mandatory, everything else degrades to an empty structure with a warning.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from cohort_insights.analysis.recovery import recover_json
from cohort_insights.exceptions import ParseError
from cohort_insights.parsing.models import (
    ApplicantSurveyMilestone,
    RawSession,
)
from cohort_insights.parsing.registry import DEFAULT_REGISTRY, SurveyKey, SurveyKeyRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "parse_document",
    "read_json_footer",
    "locate_heading",
    "slice_sections",
    "parse_bullet_record",
    "derive_ids",
    "extract_program_header_block",
    "extract_version_details",
    "extract_milestone_outline",
]

MILESTONES_SECTION = "Session Milestones"

_JSON_FOOTER_RE = re.compile(r"```json\s*([\s\S]+?)```", re.IGNORECASE)
_BULLET_PAIR_RE = re.compile(r"^-\s*([^:]+):\s*(.*)$")
_MILESTONE_SPLIT_RE = re.compile(r"^[ \t]*Milestone:[ \t]*$", re.IGNORECASE | re.MULTILINE)
_TYPE_MARKER_RE = re.compile(
    r"^[ \t]*-?[ \t]*(?P<kind>[A-Za-z][A-Za-z /&]*?)[ \t]+Milestone[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
_OFFERING_ID_RE = re.compile(r"Offering\s*\(([^)]+)\)\s*Details", re.IGNORECASE)
_VERSION_ID_RE = re.compile(r"Version\s*\(([^)]+)\)\s*Details", re.IGNORECASE)
_OFFERING_LINE_RE = re.compile(r"^[ \t]*Offering\s*\([^)]+\)\s*Details:?[ \t]*$", re.IGNORECASE | re.MULTILINE)
_VERSION_LINE_RE = re.compile(r"^[ \t]*Version\s*\([^)]+\)\s*Details:?[ \t]*$", re.IGNORECASE | re.MULTILINE)
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_REFLECTION_RE = re.compile(r"Participant reflection:\s*([\s\S]*)$", re.IGNORECASE)


@dataclass(frozen=True)
class _Section:
    name: str
    headings: Tuple[str, ...]


# Order matters only for tie-breaking; boundaries come from located positions.
_SECTIONS: Tuple[_Section, ...] = (
    _Section("demographics", ("Participant Demographics:", "Participant Demographics")),
    _Section("application", ("Program Application:", "Program Application")),
    _Section("scholarship", ("Scholarship Application:", "Scholarship Application")),
    _Section(
        "milestones",
        ("Session Milestones:", "Session Milestones", "Milestones:", "Milestones"),
    ),
    _Section("outcomes", ("Overall session outcome reports:", "Overall session outcome reports")),
)


# ---------------------------------------------------------------------------
# Section location
# ---------------------------------------------------------------------------


def _normalize(document: str) -> str:
    return document.replace("\r\n", "\n").replace("\r", "\n")


def _split_footer(document: str) -> Tuple[str, Optional[str]]:
    """Return ``(content, footer_json)`` with the last fenced json block removed."""
    matches = list(_JSON_FOOTER_RE.finditer(document))
    if not matches:
        return document.strip(), None
    last = matches[-1]
    return document[: last.start()].rstrip(), last.group(1).strip()


def _exact_heading(source: str, heading: str) -> Optional[Tuple[int, int]]:
    pattern = re.compile(rf"^[ \t]*{re.escape(heading)}[ \t]*$", re.IGNORECASE | re.MULTILINE)
    match = pattern.search(source)
    if match:
        return match.start(), match.end()
    return None


def _substring_heading(source: str, heading: str) -> Optional[Tuple[int, int]]:
    idx = source.lower().find(heading.lower())
    if idx == -1:
        return None
    line_start = source.rfind("\n", 0, idx)
    line_end = source.find("\n", idx + len(heading))
    return (
        0 if line_start == -1 else line_start,
        len(source) if line_end == -1 else line_end,
    )


def locate_heading(source: str, *headings: str) -> Optional[Tuple[int, int]]:
    """Return ``(start, end)`` of the first heading found.

    All candidates are tried as exact lines before any is tried as a
    case-insensitive substring.
    """

    for heading in headings:
        found = _exact_heading(source, heading)
        if found:
            return found
    for heading in headings:
        found = _substring_heading(source, heading)
        if found:
            return found
    return None


def slice_sections(content: str) -> Dict[str, str]:
    """Locate every known heading and return ``{section_name: body}``.

    A body runs from the end of its heading line to the start of the nearest
    other located heading, or to the end of the document.
    """

    located: Dict[str, Tuple[int, int]] = {}
    for section in _SECTIONS:
        found = locate_heading(content, *section.headings)
        if found:
            located[section.name] = found

    bodies: Dict[str, str] = {}
    for name, (_, end) in located.items():
        following = [start for other, (start, _) in located.items() if other != name and start >= end]
        stop = min(following) if following else len(content)
        bodies[name] = content[end:stop].strip()
    return bodies


# ---------------------------------------------------------------------------
# Generic sub-parsers
# ---------------------------------------------------------------------------


def parse_bullet_record(section: str) -> Dict[str, str]:
    """Parse ``- Key: value`` lines into an ordered mapping."""
    record: Dict[str, str] = {}
    for raw_line in section.split("\n"):
        line = raw_line.strip()
        if not line.startswith("-"):
            continue
        match = _BULLET_PAIR_RE.match(line)
        if not match:
            continue
        record[match.group(1).strip()] = match.group(2).strip()
    return record


def _empty_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _question_answer_blocks(section: str) -> List[Tuple[str, str]]:
    """Parse ``Question:`` / ``Answer:`` blocks; multi-line answers keep blank-line breaks."""

    entries: List[Tuple[str, str]] = []
    question: Optional[str] = None
    answer_lines: List[str] = []
    collecting = False

    def _flush() -> None:
        if question is not None:
            entries.append((question, "\n".join(answer_lines).strip()))

    for raw_line in section.split("\n"):
        stripped = raw_line.strip()
        if not stripped:
            if collecting and answer_lines and answer_lines[-1] != "":
                answer_lines.append("")
            continue
        if stripped.startswith("Question:"):
            _flush()
            question = stripped[len("Question:") :].strip()
            answer_lines = []
            collecting = False
            continue
        if question is None:
            continue
        if stripped.startswith("Answer:"):
            first = stripped[len("Answer:") :].strip()
            answer_lines = [first] if first else []
            collecting = True
            continue
        if collecting:
            answer_lines.append(stripped)

    _flush()
    return entries


def _parse_application(section: str) -> Tuple[List[str], List[str]]:
    entries = _question_answer_blocks(section)
    if not entries:
        entries = list(parse_bullet_record(section).items())

    reasons: List[str] = []
    challenges: List[str] = []
    for question, answer in entries:
        if not answer:
            continue
        lower = question.lower()
        if "challenges" in lower or "struggles" in lower:
            challenges.append(answer)
        else:
            reasons.append(answer)
    return reasons, challenges


# ---------------------------------------------------------------------------
# Milestone sub-parsers
# ---------------------------------------------------------------------------


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.strip().lower()).strip("_")


def _numeric_value(value: Any) -> Optional[float]:
    """Return *value* as a finite number if it is an int, float or numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and _NUMBER_RE.match(value.strip()):
        number = float(value.strip())
    else:
        return None
    return number if math.isfinite(number) else None


def check_scale_value(value: Any, entry: SurveyKey) -> Any:
    """Range-check a numeric scale answer; integral values come back as ``int``.

    Non-numeric text and in-range fractional values are returned unchanged.

    Raises
    ------
    ParseError
        If a numeric value lies outside the scale of *entry*.
    """

    number = _numeric_value(value)
    scale = entry.scale
    if number is None or scale is None:
        return value
    if not scale.min <= number <= scale.max:
        raise ParseError(
            f"Scale answer out of bounds for {entry.key}: {value} "
            f"(expected {scale.min}-{scale.max})"
        )
    return int(number) if number.is_integer() else value


def _scale_answer(raw: str, entry: SurveyKey) -> Any:
    """Validate a scale answer against *entry*; non-numeric text is preserved."""
    if not raw:
        return None
    return check_scale_value(raw, entry)


def _survey_answer_blocks(body: str) -> List[Tuple[str, str]]:
    """Return ``(question, first_answer)`` pairs from a survey body."""

    pairs: List[Tuple[str, str]] = []
    question: Optional[str] = None
    answer: Optional[str] = None
    awaiting_bullets = False

    def _flush() -> None:
        if question is not None:
            pairs.append((question, answer or ""))

    for raw_line in body.split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("Question:"):
            _flush()
            question = line[len("Question:") :].strip()
            answer = None
            awaiting_bullets = False
            continue
        if question is None:
            continue
        lowered = line.lower()
        if lowered.startswith("answers:") or lowered.startswith("answer:"):
            inline = line.split(":", 1)[1].strip()
            if inline:
                answer = inline
            else:
                awaiting_bullets = True
            continue
        if awaiting_bullets and line.startswith("-"):
            if answer is None:
                answer = re.sub(r"^-+\s*", "", line).strip()
            continue

    _flush()
    return pairs


def _parse_survey(body: str, base: Dict[str, Any], registry: SurveyKeyRegistry) -> Dict[str, Any]:
    answers = []
    for question, raw_answer in _survey_answer_blocks(body):
        entry = registry.by_label(question)
        if entry is not None and entry.is_scale:
            value = _scale_answer(raw_answer, entry)
        else:
            value = raw_answer or None
        answers.append(
            {
                "key": entry.key if entry else _slug(question) or "question",
                "label": question,
                "answer": value,
            }
        )
    if not answers:
        logger.warning("Applicant survey milestone '%s' has no questions", base["title"])
    return {**base, "type": "Applicant Survey", "answers": answers}


def _parse_meeting(body: str, base: Dict[str, Any], _registry: SurveyKeyRegistry) -> Dict[str, Any]:
    details = parse_bullet_record(body)
    link = _empty_to_none(details.get("Scheduling Link"))
    if link is None:
        logger.warning("Meeting milestone '%s' has no scheduling link", base["title"])
    return {
        **base,
        "type": "Meeting",
        "meeting": {
            "with": _empty_to_none(details.get("With")),
            "details": _empty_to_none(details.get("Meeting Details"))
            or _empty_to_none(details.get("Details")),
            "schedulingLink": link,
        },
    }


def _parse_outcome(body: str, base: Dict[str, Any], _registry: SurveyKeyRegistry) -> Dict[str, Any]:
    outcome: Dict[str, Any] = {}
    note_lines: List[str] = []
    plan: List[str] = []
    collecting_notes = False

    lines = body.split("\n")
    idx = 0
    while idx < len(lines):
        raw_line = lines[idx]
        line = raw_line.strip()
        idx += 1
        if not line:
            if collecting_notes and note_lines and note_lines[-1] != "":
                note_lines.append("")
            continue
        if line.startswith("Markdown outcome"):
            continue
        if line.startswith("Date:"):
            outcome["date"] = line[len("Date:") :].strip() or None
            continue
        if line.startswith("Focus:"):
            outcome["focus"] = line[len("Focus:") :].strip() or None
            continue
        if line.startswith("Therapist Notes"):
            collecting_notes = True
            continue
        if line.startswith("Plan"):
            for plan_line in lines[idx:]:
                item = plan_line.strip()
                if item:
                    plan.append(re.sub(r"^-+\s*", "", item).strip())
            break
        if collecting_notes:
            note_lines.append(raw_line.rstrip())

    outcome["notes"] = "\n".join(note_lines).strip() or None
    outcome["plan"] = [item for item in plan if item]
    return {**base, "type": "Outcome Note", "markdownOutcome": outcome}


def _parse_reflection(body: str, base: Dict[str, Any], _registry: SurveyKeyRegistry) -> Dict[str, Any]:
    match = _REFLECTION_RE.search(body)
    text = match.group(1).strip() if match else ""
    if not text:
        logger.warning("Reflection milestone '%s' has no reflection text", base["title"])
    return {**base, "type": "Reflection", "text": text or None}


def _parse_online_activity(body: str, base: Dict[str, Any], _registry: SurveyKeyRegistry) -> Dict[str, Any]:
    details = parse_bullet_record(body)
    link = _empty_to_none(details.get("Activity Link")) or _empty_to_none(details.get("Link"))
    return {**base, "type": "Online Activity", "link": link}


_SubParser = Callable[[str, Dict[str, Any], SurveyKeyRegistry], Dict[str, Any]]

# Marker prefix (lower-case) -> (canonical type, sub-parser)
_MILESTONE_PARSERS: Tuple[Tuple[str, str, _SubParser], ...] = (
    ("applicant survey", "Applicant Survey", _parse_survey),
    ("meeting", "Meeting", _parse_meeting),
    ("outcome reporting", "Outcome Note", _parse_outcome),
    ("outcome note", "Outcome Note", _parse_outcome),
    ("reflection", "Reflection", _parse_reflection),
    ("online activity", "Online Activity", _parse_online_activity),
)


def _resolve_kind(indicator: str) -> Optional[Tuple[str, _SubParser]]:
    lowered = indicator.strip().lower()
    for prefix, canonical, parser in _MILESTONE_PARSERS:
        if lowered.startswith(prefix):
            return canonical, parser
    return None


def _split_milestone_segments(section: str) -> List[str]:
    return [segment.strip() for segment in _MILESTONE_SPLIT_RE.split(section) if segment.strip()]


def _split_segment(segment: str) -> Tuple[str, Optional[str], str]:
    """Return ``(meta, kind_indicator, body)`` for one milestone segment."""
    marker = _TYPE_MARKER_RE.search(segment)
    if not marker:
        return segment, None, ""
    return segment[: marker.start()], marker.group("kind"), segment[marker.end() :].strip()


def _parse_milestones(section: str, registry: SurveyKeyRegistry, session_id: str) -> List[Dict[str, Any]]:
    milestones: List[Dict[str, Any]] = []
    for position, segment in enumerate(_split_milestone_segments(section), start=1):
        meta_part, indicator, body = _split_segment(segment)
        meta = parse_bullet_record(meta_part)
        title = _empty_to_none(meta.get("Title"))
        if indicator is None:
            logger.warning(
                "Skipping milestone #%d in session %s: unable to detect milestone type",
                position,
                session_id,
            )
            continue
        resolved = _resolve_kind(indicator)
        if resolved is None:
            logger.warning(
                "Skipping milestone #%d in session %s: unsupported type '%s Milestone'",
                position,
                session_id,
                indicator.strip(),
            )
            continue
        canonical, parser = resolved
        base = {
            "title": title or canonical,
            "description": _empty_to_none(meta.get("Description")),
            "completedAt": _empty_to_none(meta.get("Completed at")),
        }
        milestones.append(parser(body, base, registry))
    return milestones


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------


def derive_ids(content: str) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(program_id, session_id)`` from the Offering/Version headings."""
    offering = _OFFERING_ID_RE.search(content)
    version = _VERSION_ID_RE.search(content)
    return (
        offering.group(1).strip() if offering else None,
        version.group(1).strip() if version else None,
    )


def extract_program_header_block(document: str) -> str:
    """Return the Offering/Version header block preceding the demographics heading."""
    content = _normalize(document)
    offering = _OFFERING_LINE_RE.search(content)
    start = offering.start() if offering else 0
    demographics = locate_heading(content, "Participant Demographics:")
    end = demographics[0] if demographics else len(content)
    return content[start:end].rstrip()


def extract_version_details(document: str) -> Dict[str, str]:
    """Return the bullet record under the ``Version (<id>) Details:`` heading."""
    content = _normalize(document)
    version = _VERSION_LINE_RE.search(content)
    if not version:
        return {}
    after = content[version.end() :]
    demographics = locate_heading(after, "Participant Demographics:")
    return parse_bullet_record(after[: demographics[0]] if demographics else after)


def extract_milestone_outline(document: str) -> List[Dict[str, Optional[str]]]:
    """Return ``[{type, title, description}]`` for every milestone segment."""
    content, _ = _split_footer(_normalize(document))
    section = slice_sections(content).get("milestones", "")
    outline = []
    for segment in _split_milestone_segments(section):
        meta_part, indicator, _ = _split_segment(segment)
        meta = parse_bullet_record(meta_part)
        resolved = _resolve_kind(indicator) if indicator else None
        outline.append(
            {
                "type": resolved[0] if resolved else "Unknown",
                "title": _empty_to_none(meta.get("Title")),
                "description": _empty_to_none(meta.get("Description")),
            }
        )
    return outline


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def _check_scale_answers(raw: RawSession, registry: SurveyKeyRegistry) -> None:
    for milestone in raw.milestones_of(ApplicantSurveyMilestone):
        for entry in milestone.answers:
            key = registry.get(entry.key)
            if key is None or not key.is_scale or key.scale is None:
                continue
            check_scale_value(entry.answer, key)


def read_json_footer(
    document: str, *, registry: SurveyKeyRegistry = DEFAULT_REGISTRY
) -> Optional[RawSession]:
    """Return the RawSession carried in a trailing ```json block, if usable."""

    _, footer = _split_footer(_normalize(document))
    if footer is None:
        return None
    payload = recover_json(footer, None, label="JSON footer")
    if not isinstance(payload, dict) or not isinstance(payload.get("milestones"), list):
        logger.warning("JSON footer missing milestones array; ignoring footer")
        return None
    try:
        raw = RawSession.model_validate(payload, context={"registry": registry})
    except ValidationError as exc:
        logger.warning("JSON footer failed validation; ignoring footer: %s", exc)
        return None
    _check_scale_answers(raw, registry)
    return raw


def parse_document(
    document: str,
    *,
    registry: SurveyKeyRegistry = DEFAULT_REGISTRY,
    use_footer: bool = False,
) -> RawSession:
    """Parse one session *document* into a :class:`RawSession`.

    Raises
    ------
    ParseError
        If the milestones section is absent or empty, or a scale answer falls
        outside its declared range.
    """

    normalized = _normalize(document)
    if use_footer:
        from_footer = read_json_footer(normalized, registry=registry)
        if from_footer is not None:
            return from_footer
        logger.warning("No usable JSON footer; falling back to document body")

    content, _ = _split_footer(normalized)
    program_id, session_id = derive_ids(content)
    program_id = program_id or "unknown-program"
    session_id = session_id or "unknown-session"

    sections = slice_sections(content)

    milestones_text = sections.get("milestones")
    if not milestones_text:
        raise ParseError(
            f"Missing section: {MILESTONES_SECTION} (session {session_id})",
            section=MILESTONES_SECTION,
        )
    milestones = _parse_milestones(milestones_text, registry, session_id)
    if not milestones:
        raise ParseError(
            f"Section {MILESTONES_SECTION} contains no recognizable milestones (session {session_id})",
            section=MILESTONES_SECTION,
        )

    demographics: Dict[str, str] = {}
    if "demographics" in sections:
        demographics = parse_bullet_record(sections["demographics"])
    else:
        logger.warning("Session %s has no Participant Demographics section", session_id)

    reasons: List[str] = []
    challenges: List[str] = []
    if "application" in sections:
        reasons, challenges = _parse_application(sections["application"])
    else:
        logger.warning("Session %s has no Program Application section", session_id)

    return RawSession.model_validate(
        {
            "sessionId": session_id,
            "programId": program_id,
            "demographics": demographics,
            "application": {"reasons": reasons, "challenges": challenges},
            "milestones": milestones,
        },
        context={"registry": registry},
    )
