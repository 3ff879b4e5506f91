#!/usr/bin/env python3
"""
Oddsflow Engine Entry Point

Usage:
  python run_engine.py analyze request.json          # Analyze one request
  python run_engine.py analyze - < request.json      # Read the request from stdin
  python run_engine.py mark MATCH_KEY home           # Confirm an outcome (home/draw/away)
  python run_engine.py stats                         # Baseline values and alphas
"""
import argparse
import sys
from pathlib import Path

import orjson
import structlog

from oddsflow.config.settings import settings
from oddsflow.core.schemas import InvalidRequestError
from oddsflow.core.storage import SqlStore, StoreError, get_store
from oddsflow.engine import AnalysisEngine, CaseNotFoundError, get_profile


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Oddsflow analysis engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help=f"SQLite file for the learning state (default: {settings.DB_PATH})"
    )
    parser.add_argument(
        "--profile",
        default=None,
        help=f"Scoring profile (default: {settings.SCORING_PROFILE})"
    )
    sub = parser.add_subparsers(dest="command", required=True)
    
    analyze = sub.add_parser("analyze", help="Analyze a JSON request file")
    analyze.add_argument("file", help="Path to the request JSON, or - for stdin")
    
    mark = sub.add_parser("mark", help="Record the confirmed outcome of a case")
    mark.add_argument("match_key")
    mark.add_argument("outcome", choices=["home", "draw", "away"])
    
    sub.add_parser("stats", help="Dump baseline values and alphas")
    return parser.parse_args(argv)


def _dump(obj) -> None:
    sys.stdout.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode())
    sys.stdout.write("\n")


def _read_payload(path: str):
    raw = sys.stdin.buffer.read() if path == "-" else Path(path).read_bytes()
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise InvalidRequestError(f"request is not valid JSON: {e}") from e


def configure_logging() -> None:
    """Send log lines to stderr so stdout carries only the JSON result"""
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    configure_logging()
    
    try:
        store = SqlStore(db_path=args.db) if args.db else get_store()
        profile = get_profile(args.profile) if args.profile else None
        engine = AnalysisEngine(store, profile=profile)
        
        if args.command == "analyze":
            result = engine.analyze(_read_payload(args.file))
            _dump(result.to_dict())
        elif args.command == "mark":
            _dump(engine.record_outcome(args.match_key, args.outcome))
        elif args.command == "stats":
            _dump({"baselines": engine.baseline_snapshot(), "stats": engine.get_stats()})
    except InvalidRequestError as e:
        print(f"ERROR: invalid request: {e}", file=sys.stderr)
        return 2
    except CaseNotFoundError as e:
        print(f"ERROR: unknown match key {e}", file=sys.stderr)
        return 3
    except (StoreError, KeyError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
