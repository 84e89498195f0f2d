#!/usr/bin/env python3
"""
Lifecycle -- Application health scoring and lifecycle task generation.
The end-of-life feed is free and public. No API keys required.

Usage:
  python main.py score portfolio.json
  python main.py score portfolio.json --weighted --json
  python main.py generate-tasks portfolio.json
  python main.py generate-tasks portfolio.json --dry-run
  python main.py refresh-eol
  python main.py refresh-eol --framework python --framework nodejs
  python main.py refresh-eol --no-cache --json

Environment variables:
  DATABASE_URL              SQLAlchemy URL for tasks and framework versions
                            (default: sqlite:///lifecycle.db)
  TASK_GENERATION_ENABLED   Set to false to disable the task rules
  LOG_LEVEL                 Logging level (default: INFO)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from cache.store import FeedCache
from core.config import LOG_FORMAT, get_settings, utc_now
from core.formatter import (
    breakdown_to_dict,
    disable_color,
    eol_refresh_to_dict,
    print_breakdown,
    print_eol_refresh,
    print_score_summary,
    print_task_run,
    task_run_to_dict,
    to_json,
)
from core.models import FrameworkType
from core.pipeline import refresh_eol
from core.scoring import DocumentationWeights, calculate_health_score, summarize_portfolio
from core.tasks import generate_tasks
from portfolio.ingest import Portfolio, parse_portfolio
from portfolio.store import PortfolioStore


def _load_portfolio(path: str) -> Optional[Portfolio]:
    """Read a JSON portfolio export. Returns None if the file is unreadable.

    Resolves symlinks and verifies the path is a regular file before reading.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return None
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"  [!] Could not read file '{path}': {e}")
        return None
    portfolio = parse_portfolio(content)
    if not portfolio.applications:
        print(f"  [!] No applications found in '{path}'.")
        return None
    return portfolio


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_score(args: argparse.Namespace) -> int:
    portfolio = _load_portfolio(args.file)
    if portfolio is None:
        return 1

    now = utc_now()
    tasks = portfolio.tasks_by_application()
    weights = DocumentationWeights() if args.weighted else None

    scored = []
    for app in portfolio.applications:
        breakdown = calculate_health_score(app, tasks.get(app.id, ()), portfolio.incidents_for(app.id), weights, now)
        scored.append((app, breakdown))

    summary = summarize_portfolio([b for _, b in scored])

    if args.json:
        print(
            to_json(
                {
                    "results": [
                        {"application_id": app.id, "name": app.name, **breakdown_to_dict(b)} for app, b in scored
                    ],
                    "summary": {
                        "total_applications": summary.total_applications,
                        "healthy": summary.healthy,
                        "needs_attention": summary.needs_attention,
                        "at_risk": summary.at_risk,
                        "critical": summary.critical,
                        "average_score": summary.average_score,
                        "healthy_percentage": summary.healthy_percentage,
                    },
                }
            )
        )
        return 0

    if len(scored) == 1:
        app, breakdown = scored[0]
        print_breakdown(app.name, breakdown)
    else:
        print_score_summary([(app.name, b) for app, b in scored], summary)
        if args.full:
            for app, breakdown in scored:
                print_breakdown(app.name, breakdown)
    return 0


def cmd_generate_tasks(args: argparse.Namespace) -> int:
    portfolio = _load_portfolio(args.file)
    if portfolio is None:
        return 1

    settings = get_settings()
    config = settings.task_generation_config()
    store = PortfolioStore(args.db or settings.database_url)
    try:
        existing = store.tasks_by_application(a.id for a in portfolio.applications)
        # Tasks carried in the export count as existing too.
        for app_id, tasks in portfolio.tasks_by_application().items():
            existing.setdefault(app_id, []).extend(tasks)

        result = generate_tasks(portfolio.applications, existing, config, utc_now())
        if not args.dry_run:
            store.save_generated(result)
    finally:
        store.close()

    if args.json:
        print(to_json(task_run_to_dict(result)))
    else:
        print_task_run(result, dry_run=args.dry_run)
    return 1 if result.errors else 0


def cmd_refresh_eol(args: argparse.Namespace) -> int:
    settings = get_settings()
    families = [FrameworkType(f) for f in args.framework] if args.framework else None
    cache = None if args.no_cache else FeedCache(ttl=settings.eol_cache_ttl_seconds)
    store = PortfolioStore(args.db or settings.database_url)
    try:
        result = refresh_eol(store.versions_by_family(), families=families, cache=cache)
        store.apply_eol_refresh(result)
    finally:
        store.close()
        if cache is not None:
            cache.close()

    if args.json:
        print(to_json(eol_refresh_to_dict(result)))
    else:
        print_eol_refresh(result)
    return 0 if result.success else 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lifecycle",
        description="Application health scoring, lifecycle tasks and framework end-of-life tracking.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py score portfolio.json
  python main.py score portfolio.json --full
  python main.py generate-tasks portfolio.json --dry-run
  python main.py refresh-eol --framework dotnet
  DATABASE_URL=sqlite:///ops.db python main.py refresh-eol
        """,
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI color codes in terminal output",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    score = sub.add_parser("score", help="Compute health scores for a portfolio export")
    score.add_argument("file", metavar="PATH", help="JSON portfolio export")
    score.add_argument("--json", action="store_true", help="Output structured JSON")
    score.add_argument(
        "--weighted",
        action="store_true",
        help="Use the weighted documentation variant instead of the flag count",
    )
    score.add_argument(
        "--full",
        action="store_true",
        help="Print the full breakdown for every application after the summary",
    )
    score.set_defaults(func=cmd_score)

    gen = sub.add_parser("generate-tasks", help="Run the lifecycle task rules against a portfolio export")
    gen.add_argument("file", metavar="PATH", help="JSON portfolio export")
    gen.add_argument("--db", metavar="URL", help="Database URL (default: DATABASE_URL setting)")
    gen.add_argument("--dry-run", action="store_true", help="Show what would be created without saving")
    gen.add_argument("--json", action="store_true", help="Output structured JSON")
    gen.set_defaults(func=cmd_generate_tasks)

    eol = sub.add_parser("refresh-eol", help="Refresh framework versions from the end-of-life feed")
    eol.add_argument(
        "--framework",
        action="append",
        choices=[f.value for f in FrameworkType],
        metavar="FAMILY",
        help="Framework family to refresh (repeatable; default: all published families)",
    )
    eol.add_argument("--db", metavar="URL", help="Database URL (default: DATABASE_URL setting)")
    eol.add_argument("--no-cache", action="store_true", help="Skip the local feed cache")
    eol.add_argument("--json", action="store_true", help="Output structured JSON")
    eol.set_defaults(func=cmd_refresh_eol)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=get_settings().log_level.upper(), format=LOG_FORMAT, stream=sys.stderr)

    # Apply color preference before any output
    if args.no_color:
        disable_color()

    if args.command is None:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
