"""
main.py — Recurrent Entry Point

Usage:
    recurrent run                               # run tasks from config/config.yaml
    recurrent run --config path/to/config.yaml
    recurrent run --log-level DEBUG             # verbose logging
    recurrent tasks                             # list configured tasks and next runs
    python -m recurrent run
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv


def _find_env_file() -> Path | None:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="recurrent",
        description="Recurrent — in-process recurring task scheduler",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "tasks"],
        default="run",
        help="'run' — start the scheduler (default). 'tasks' — list configured tasks.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $RECURRENT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable coloured output for 'tasks'",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from recurrent.config.settings import ConfigError, load_settings
    from recurrent.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your environment and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    log_level = args.log_level or settings.log_level

    setup_logging(
        level=log_level,
        log_dir=settings.log_dir,
        json_format=settings.log_json_format,
        console_output=settings.log_console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("recurrent.main")
    return settings, log


def _print_tasks(scheduler, no_color: bool = False) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console(no_color=no_color)
    rows = scheduler.describe()
    if not rows:
        console.print("No tasks configured.")
        return

    table = Table(title="Recurrent Tasks", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Schedule")
    table.add_column("Every (s)", justify="right")
    table.add_column("Next occurrence")
    for row in rows:
        table.add_row(
            row["name"],
            row["schedule"],
            str(row["frequency_seconds"]),
            row["next_occurrence"].isoformat(),
        )
    console.print(table)
    console.print(f"\n{len(rows)} task(s)")


def main(argv: Optional[Sequence[str]] = None) -> int:
    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    args = parse_args(argv)
    settings, log = bootstrap(args)

    from recurrent.exceptions import ConfigurationError, ScheduleComputationError
    from recurrent.scheduler.loader import build_scheduler

    try:
        scheduler = build_scheduler(settings)
    except ConfigurationError as exc:
        log.error("recurrent.startup_failed", error=str(exc))
        print(f"\n❌  Invalid task configuration: {exc}\n", file=sys.stderr)
        return 1

    try:
        if args.command == "tasks":
            _print_tasks(scheduler, no_color=args.no_color)
            return 0

        log.info("recurrent.starting", tasks=len(scheduler.tasks))
        scheduler.run(install_signals=settings.scheduler.install_signal_handlers)
    except ScheduleComputationError as exc:
        log.error("recurrent.schedule_failed", task=exc.task, error=str(exc))
        print(f"\n❌  Scheduling failed: {exc}\n", file=sys.stderr)
        return 1

    log.info("recurrent.exited", reason=scheduler.shutdown.reason)
    return 0


if __name__ == "__main__":
    sys.exit(main())
