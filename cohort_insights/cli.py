"""Command-line front end: ``parse``, ``map`` and ``reduce`` stages over files.

Each stage reads the previous stage's JSON output from disk, so the three
commands can run independently (and be re-run) in a batch job.
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from cohort_insights import config
from cohort_insights.analysis.extract import OpenAISignalExtractor
from cohort_insights.mapping.session_facts import build_session_facts_batch
from cohort_insights.parsing.cohort import extract_sessions_from_cohort
from cohort_insights.parsing.document import parse_document
from cohort_insights.parsing.models import RawSession
from cohort_insights.readiness.config import load_readiness_overrides
from cohort_insights.reporting.models import SessionFacts
from cohort_insights.reporting.readiness_input import build_cohort_facts_with_readiness

logger = logging.getLogger(__name__)

RAW_SCHEMA_VERSION = "v1"
SESSION_FACTS_SUFFIX = ".session-facts.json"


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _list_json_files(directory: Path, suffix: str = ".json") -> List[Path]:
    return sorted(p for p in directory.iterdir() if p.is_file() and p.name.endswith(suffix))


def load_raw_session(path: Path) -> RawSession:
    """Read one RawSession JSON file.

    Raises
    ------
    ValueError
        If the file declares a raw schema version other than ``v1``.
    """

    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or data.get("rawSchemaVersion") != RAW_SCHEMA_VERSION:
        raise ValueError(f"Unsupported raw schema version in {path}")
    return RawSession.model_validate(data)


def _load_session_facts(path: Path) -> SessionFacts:
    return SessionFacts.model_validate_json(path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_parse(args: argparse.Namespace) -> int:
    document = Path(args.document).read_text(encoding="utf-8")
    out_dir = Path(args.out)

    if args.cohort:
        extraction = extract_sessions_from_cohort(document)
        sessions = extraction.sessions
        for skip in extraction.skipped:
            print(f"skipped #{skip.index} (version {skip.version_id or '?'}): {skip.error}")
    else:
        sessions = [parse_document(document, use_footer=args.use_footer)]

    for raw in sessions:
        _write_json(out_dir / f"{raw.session_id}.json", raw.to_dict())
    print(f"Wrote {len(sessions)} RawSession(s) to {out_dir}")
    return 0


def cmd_map(args: argparse.Namespace) -> int:
    in_dir = Path(args.input)
    out_dir = Path(args.out)
    files = _list_json_files(in_dir)
    if not files:
        logger.error("No JSON files found in %s", in_dir)
        return 1

    raws: List[RawSession] = []
    names: Dict[str, str] = {}
    duplicates: List[str] = []
    for path in files:
        raw = load_raw_session(path)
        if raw.session_id in names:
            # one output file per session id; later files would overwrite it
            duplicates.append(
                f"{path.name}: duplicate sessionId {raw.session_id} "
                f"(already read from {names[raw.session_id]}.json)"
            )
            logger.warning("Skipping %s: duplicate sessionId %s", path, raw.session_id)
            continue
        names[raw.session_id] = path.name[: -len(".json")]
        raws.append(raw)

    extractor = OpenAISignalExtractor(model=args.model)
    batch = build_session_facts_batch(raws, extractor, max_workers=args.concurrency)

    for facts in batch.facts:
        _write_json(out_dir / f"{names[facts.session_id]}{SESSION_FACTS_SUFFIX}", facts.to_dict())

    print(f"Wrote {len(batch.facts)} SessionFacts to {out_dir}")
    for meta in batch.metas:
        print(
            f"- {meta.session_id}: paired={meta.paired_assessments} "
            f"available={meta.available_assessments} model={meta.extraction_model}"
        )
    for failure in batch.failures:
        print(f"! {failure.session_id}: {failure.error}")
    for duplicate in duplicates:
        print(f"! {duplicate}")
    return 0 if batch.facts else 1


def cmd_reduce(args: argparse.Namespace) -> int:
    in_dir = Path(args.input)
    files = _list_json_files(in_dir, SESSION_FACTS_SUFFIX)
    if not files:
        logger.error("No SessionFacts files found in %s", in_dir)
        return 1

    sessions = [_load_session_facts(path) for path in files]
    overrides: Optional[Dict[str, Any]] = None
    if args.readiness_config:
        overrides = load_readiness_overrides(args.readiness_config)

    combined = build_cohort_facts_with_readiness(
        sessions, program_id=args.program, readiness_overrides=overrides
    )
    _write_json(Path(args.out), combined.to_dict())
    print(
        f"Wrote CohortFacts for {combined.facts.program_id} "
        f"(n={combined.facts.n_sessions}, paired={combined.facts.n_with_pre_post}) to {args.out}"
    )
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer") from None
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"{value!r} must be a positive integer")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cohort-insights",
        description="Parse session documents, map them to SessionFacts and reduce to cohort facts.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Set log level to DEBUG")
    sub = parser.add_subparsers(dest="command", required=True)

    p_parse = sub.add_parser("parse", help="Parse a session or cohort document into RawSession JSON")
    p_parse.add_argument("document", help="Path to the markdown document")
    p_parse.add_argument("--cohort", action="store_true", help="Treat the document as a cohort of sessions")
    p_parse.add_argument("--use-footer", action="store_true", help="Prefer an embedded JSON footer")
    p_parse.add_argument("--out", required=True, metavar="DIR", help="Output directory")
    p_parse.set_defaults(handler=cmd_parse)

    p_map = sub.add_parser("map", help="Build SessionFacts from RawSession JSON files")
    p_map.add_argument("--in", dest="input", required=True, metavar="DIR", help="RawSession directory")
    p_map.add_argument("--out", required=True, metavar="DIR", help="SessionFacts output directory")
    p_map.add_argument(
        "--concurrency",
        type=_positive_int,
        default=config.EXTRACTION_CONCURRENCY,
        help="Maximum concurrent extractor calls",
    )
    p_map.add_argument("--model", default=config.EXTRACTION_MODEL, help="Extraction model id")
    p_map.set_defaults(handler=cmd_map)

    p_reduce = sub.add_parser("reduce", help="Reduce SessionFacts files into cohort facts and readiness")
    p_reduce.add_argument("--in", dest="input", required=True, metavar="DIR", help="SessionFacts directory")
    p_reduce.add_argument("--out", required=True, metavar="FILE", help="Output JSON file")
    p_reduce.add_argument("--program", default=None, help="Program id to reduce")
    p_reduce.add_argument(
        "--readiness-config", default=None, metavar="FILE", help="JSON file of readiness overrides"
    )
    p_reduce.set_defaults(handler=cmd_reduce)
    return parser


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Parse *argv* and dispatch to the selected command. Returns an exit code."""

    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    return args.handler(args)
