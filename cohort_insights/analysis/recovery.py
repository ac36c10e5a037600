"""Best-effort JSON recovery from noisy text.

Model responses and document footers are untrusted: they may wrap JSON in
prose, code fences or trailing commentary. :func:`recover_json` tries three
tiers in order and logs whichever one produced the value:

1. strict ``json.loads`` of the whole (fence-stripped) string;
2. bracket matching: the first balanced ``{...}`` or ``[...]`` span;
3. the caller-supplied placeholder.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*([\s\S]*?)\s*```\s*$", re.IGNORECASE)


def _strip_fence(content: str) -> str:
    match = _FENCE_RE.match(content)
    return match.group(1) if match else content


def _balanced_span(content: str, opener: str) -> Optional[str]:
    """Return the first balanced span starting with *opener*, honouring strings."""
    closer = "}" if opener == "{" else "]"
    start = content.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(content)):
            char = content[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == opener:
                depth += 1
            elif char == closer:
                depth -= 1
                if depth == 0:
                    return content[start : idx + 1]
        start = content.find(opener, start + 1)
    return None


def recover_json(content: Optional[str], placeholder: Any = None, *, label: str = "payload") -> Any:
    """Parse *content* as JSON, degrading through the recovery tiers.

    Parameters
    ----------
    content
        Raw text that should contain a JSON document.
    placeholder
        Value returned when no tier succeeds.
    label
        Short description used in log messages.
    """

    if not content or not content.strip():
        logger.warning("No %s content to parse; using placeholder", label)
        return placeholder

    text = _strip_fence(content.strip())
    try:
        value = json.loads(text)
        logger.debug("Parsed %s strictly", label)
        return value
    except json.JSONDecodeError:
        pass

    candidates = []
    for opener in ("{", "["):
        span = _balanced_span(text, opener)
        if span is not None:
            candidates.append((text.find(span), span))
    for _, span in sorted(candidates):
        try:
            value = json.loads(span)
        except json.JSONDecodeError:
            continue
        logger.warning("Recovered %s via bracket matching", label)
        return value

    logger.warning("Could not recover JSON from %s; using placeholder", label)
    return placeholder
