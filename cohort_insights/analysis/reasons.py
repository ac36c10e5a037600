"""Normalization of free-text application reasons into short cohort tags."""
from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List

_MAX_TAG_CHARS = 80
_MAX_WORDS = 4
_MIN_WORDS = 2

_SMALL_WORDS = frozenset({"and", "or", "of", "the", "in", "on", "for", "to", "a", "an", "with"})

# Pronouns, fillers and generic "program" vocabulary carry no intent signal.
_STOP_WORDS = frozenset(
    """
    i we my our me us they their theirs you your
    and or of the in on for to a an with from at as by into about over after
    before through between during without within across under again
    want hope would like help learn more better grow growth improve improving
    improvement develop development seeking seek seeks
    am is are be been being very really deeply have has had
    just come came go went get got make made take took give gave put see saw
    look looked find found bring brought keep kept start started begin began
    continue continued end ended
    up out back still even also so that than then there here this these those
    dont don't not no
    deepen strengthen strengthening
    program course class workshop cohort journey experience participate participation
    """.split()
)

_QUOTES_RE = re.compile(r"[“”\"'`]+")
_SEPARATORS_RE = re.compile(r"[/_]+")
_AMPERSAND_RE = re.compile(r"\s*&\s*")
_NON_WORD_RE = re.compile(r"[^a-zA-Z0-9\s\-]")
_SPACES_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"^\d+$")
_ORDINAL_RE = re.compile(r"^\d+(st|nd|rd|th)$")


def _keep(token: str) -> bool:
    if not token or token in _STOP_WORDS:
        return False
    if _NUMBER_RE.match(token) or _ORDINAL_RE.match(token):
        return False
    return len(token) >= 3


def normalize_reason_tag(raw: str) -> str:
    """Compact a free-text reason into a 2–4 word title-cased tag.

    Returns an empty string when nothing informative is left.

    >>> normalize_reason_tag("I want to find community & support!")
    'Community Support'
    """

    value = unicodedata.normalize("NFKC", raw or "")
    value = _QUOTES_RE.sub("", value)
    value = _SEPARATORS_RE.sub(" ", value)
    value = _AMPERSAND_RE.sub(" and ", value)
    value = _NON_WORD_RE.sub(" ", value)
    lower = _SPACES_RE.sub(" ", value.lower()).strip()
    if not lower or _NUMBER_RE.match(lower):
        return ""

    tokens: List[str] = []
    seen_roots = set()
    for token in lower.split(" "):
        if not _keep(token):
            continue
        # burn / burned / burnout share a root
        root = token[:4]
        if root in seen_roots:
            continue
        seen_roots.add(root)
        tokens.append(token)
    if not tokens:
        return ""

    compact = tokens[: min(_MAX_WORDS, max(_MIN_WORDS, len(tokens)))]
    titled = " ".join(
        word if word in _SMALL_WORDS and idx > 0 else word[:1].upper() + word[1:]
        for idx, word in enumerate(compact)
    )
    return titled[:_MAX_TAG_CHARS]


def normalize_reason_tags(reasons: Iterable[str]) -> List[str]:
    """Normalize *reasons* and drop empty or repeated tags, preserving order."""
    return list(dict.fromkeys(tag for tag in map(normalize_reason_tag, reasons) if tag))
