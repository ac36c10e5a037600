"""Project-wide custom exception types."""
from __future__ import annotations

from typing import Optional


class ParseError(ValueError):
    """Raised when a session document cannot be trusted structurally.

    Either a mandatory section is missing or a value violates a hard
    constraint (e.g. a scale answer outside its declared range).
    """

    def __init__(self, message: str, *, section: Optional[str] = None) -> None:
        super().__init__(message)
        self.section = section


class CohortContractError(ValueError):
    """Raised when the aggregator receives an empty or mixed-program input."""


class ExtractionError(RuntimeError):
    """Raised when the text-signal extractor fails for a session."""

    def __init__(self, message: str, *, session_id: Optional[str] = None) -> None:  # noqa: D401 – simple constructor
        super().__init__(message)
        self.session_id = session_id


class PipelineError(RuntimeError):
    """Raised when the inline pipeline has no session left to reduce."""
