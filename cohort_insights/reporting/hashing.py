"""Deterministic content hash for cohort facts."""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Mapping

HASH_FIELD = "factsHash"


def canonicalize_facts(facts: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of *facts* without the hash field and with assessments sorted by key.

    Ranked lists (tags, quotes, notes) keep their order; it is part of the
    content.
    """

    canonical = {key: value for key, value in facts.items() if key != HASH_FIELD}
    assessments = canonical.get("assessments")
    if isinstance(assessments, list):
        canonical["assessments"] = sorted(assessments, key=lambda entry: str(entry.get("key", "")))
    return canonical


def hash_facts(facts: Mapping[str, Any]) -> str:
    """Return the SHA-256 hex digest of the canonical JSON form of *facts*.

    Object keys are sorted, so the digest is independent of field order.
    """

    payload = json.dumps(
        canonicalize_facts(facts),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
