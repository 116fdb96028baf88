"""Command-line entry points for schema setup and the auto-close sweep."""

from __future__ import annotations

import argparse
import sys
import threading
from datetime import date
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import TripflowSettings
from .logging_config import configure_logging
from .storage import Database
from .sweep import AutoCloseSweep


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to tripflow.yaml (defaults to TRIPFLOW_CONFIG or config/tripflow.yaml).",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override the configured SQLAlchemy database URL.",
    )


def _build_sweep_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tripflow-sweep",
        description="Close booked trips whose last travel date has passed.",
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Reference date in YYYY-MM-DD form (defaults to today in the configured timezone).",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running and sweep every sweep_interval_seconds until interrupted.",
    )
    return parser


def _build_init_db_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tripflow-init-db",
        description="Create the trip, approval, itinerary and file tables.",
    )
    _add_common_arguments(parser)
    return parser


def _load_settings(args: argparse.Namespace) -> TripflowSettings:
    settings = TripflowSettings.from_environment(args.config)
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})
    return settings


def _wait_for_interrupt() -> None:
    threading.Event().wait()


def _watch(sweep: AutoCloseSweep, interval_seconds: int) -> int:
    sweep.schedule(interval_seconds)
    print(f"Sweeping every {interval_seconds}s; press Ctrl+C to stop")
    try:
        _wait_for_interrupt()
    except KeyboardInterrupt:
        pass
    finally:
        sweep.stop()
    return 0


def sweep_main(argv: list[str] | None = None) -> int:
    parser = _build_sweep_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args)
        configure_logging(settings.log_level, settings.log_format)
        with Database(settings.database_url) as database:
            sweep = AutoCloseSweep(database, timezone=settings.tzinfo)
            if args.watch:
                return _watch(sweep, settings.sweep_interval_seconds)
            closed = sweep.run(args.today)
    except ValidationError as exc:
        print("Error: invalid settings.", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1
    except (OSError, ValueError, SQLAlchemyError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Closed {len(closed)} trip(s)")
    return 0


def init_db_main(argv: list[str] | None = None) -> int:
    parser = _build_init_db_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args)
        configure_logging(settings.log_level, settings.log_format)
        with Database(settings.database_url) as database:
            database.create_all()
    except ValidationError as exc:
        print("Error: invalid settings.", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1
    except (OSError, ValueError, SQLAlchemyError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Schema ready at {settings.database_url}")
    return 0


if __name__ == "__main__":
    raise SystemExit(sweep_main())
