"""PACER — Command Line Entry Point.

Each subcommand is one independent run, meant for cron:

    pacer sync      [--start-date D --end-date D]
    pacer resync    [--start-date D --end-date D]
    pacer backfill
    pacer track     [--date D]

Exit code 0 on success, 1 on a run-fatal error (a failed resync reset or
an unreachable store). Partial per-unit failures are logged, not fatal.
"""

import argparse
import asyncio
import sys
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from pacer.config import settings
from pacer.core.errors import ResyncAbortedError
from pacer.core.logging import get_logger
from pacer.database import engine, get_session, init_db, test_connection
from pacer.sync.backfill import BackfillConfig
from pacer.sync.pipeline import run_backfill, run_goal_tracking, run_sync

logger = get_logger("cli")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (YYYY-MM-DD): {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pacer", description="PACER: Meta ads sync and lead goal tracking"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("sync", "Incremental sync of structure, insights and leads"),
        ("resync", "Full resync: reset insights in the window, then sync"),
    ):
        cmd = commands.add_parser(name, help=help_text)
        cmd.add_argument("--start-date", type=_parse_date, default=None,
                         help=f"Window start YYYY-MM-DD (default: {settings.insight_days} days ago)")
        cmd.add_argument("--end-date", type=_parse_date, default=None,
                         help="Window end YYYY-MM-DD (default: today)")

    commands.add_parser("backfill", help="Repair missing parent references")

    track = commands.add_parser("track", help="Evaluate active goals and emit alerts")
    track.add_argument("--date", type=_parse_date, default=None,
                       help="Evaluation date YYYY-MM-DD (default: today)")
    return parser


def _run(args: argparse.Namespace) -> None:
    session = next(get_session())
    try:
        if args.command in ("sync", "resync"):
            summary = asyncio.run(
                run_sync(
                    session=session,
                    date_start=args.start_date,
                    date_stop=args.end_date,
                    full_resync=args.command == "resync",
                )
            )
            print(summary.model_dump_json(indent=2))
        elif args.command == "backfill":
            results = run_backfill(session, BackfillConfig.from_settings())
            for result in results:
                print(result.model_dump_json())
        elif args.command == "track":
            summary = run_goal_tracking(session, today=args.date)
            print(summary.model_dump_json(indent=2))
    finally:
        session.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if not test_connection(engine):
        logger.error("💥 Store unreachable; aborting")
        return 1
    init_db(engine)

    try:
        _run(args)
    except ResyncAbortedError as e:
        logger.error(f"💥 Resync aborted: {e}")
        return 1
    except SQLAlchemyError as e:
        logger.error(f"💥 Store failure: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
