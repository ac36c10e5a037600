"""Process bootstrap for the ``cohort-insights`` command.

Environment loading and logging setup live here (instead of in
``cohort_insights.cli``) so the command module can be imported by unit tests
without side-effects.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv

from cohort_insights.cli import run

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging_level = os.environ.get("COHORT_LOG_LEVEL", "INFO")
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging_level
    )


def main(argv: Optional[Sequence[str]] = None) -> None:  # pragma: no cover – manual run path
    """Load ``.env``, configure logging and run the CLI, exiting with its status."""

    load_dotenv()
    configure_logging()
    try:
        status = run(argv)
    except KeyboardInterrupt:  # pragma: no cover
        logger.info("Interrupted. Exiting…")
        status = 130
    except Exception as exc:
        logger.exception("Command failed: %s", exc)
        status = 1
    sys.exit(status)


if __name__ == "__main__":  # pragma: no cover
    main()
