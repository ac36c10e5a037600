"""Configuration constants for the cohort pipeline."""
from __future__ import annotations

import os

# Maximum concurrent calls to the text-signal extractor within one batch
EXTRACTION_CONCURRENCY: int = int(os.getenv("COHORT_EXTRACTION_CONCURRENCY", "8"))

# Model id used by the OpenAI-backed extractor
EXTRACTION_MODEL: str = os.getenv("COHORT_EXTRACTION_MODEL", "gpt-4o-mini")

# Narrative context sent to the extractor is truncated to this many characters
EXTRACTION_CONTEXT_CHARS: int = int(os.getenv("COHORT_EXTRACTION_CONTEXT_CHARS", "1200"))

# Top-N size for every cohort tag list
TAG_LIMIT: int = int(os.getenv("COHORT_TAG_LIMIT", "6"))

# Maximum exemplar quotes kept per cohort
QUOTE_LIMIT: int = int(os.getenv("COHORT_QUOTE_LIMIT", "8"))

# Maximum data-quality notes attached to cohort facts
MAX_DATA_QUALITY_NOTES: int = int(os.getenv("COHORT_MAX_DATA_QUALITY_NOTES", "12"))

# Median completion (0–100) under which the cohort is flagged as early-stage
LOW_COMPLETION_PCT: float = float(os.getenv("COHORT_LOW_COMPLETION_PCT", "50"))

# Version stamped on every SessionFacts record
SESSION_FACTS_VERSION: str = os.getenv("COHORT_SESSION_FACTS_VERSION", "session-facts@0.1.0")
