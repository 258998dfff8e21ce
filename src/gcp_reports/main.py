import argparse
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Any

from pydantic import ValidationError
from rich.console import Console

from .core import ReportConfig, parse_duration
from .logger import logger, setup_logger
from .modes import apps, backup

# CLI flag -> ReportConfig field
CONFIG_FLAGS = {
    "within": "freshness_window",
    "version_limit": "version_limit",
    "backup_key": "backup_label_key",
    "env_key": "env_label_key",
    "component_key": "component_label_key",
    "concurrency": "max_in_flight",
    "timeout": "call_timeout",
}


def build_config(args: argparse.Namespace) -> ReportConfig:
    """
    Environment (GCP_REPORTS_*) first, then any flag given on the command line.
    """
    overrides: dict[str, Any] = {}
    for flag, field_name in CONFIG_FLAGS.items():
        value = getattr(args, flag, None)
        if value is not None:
            overrides[field_name] = value
    return ReportConfig(**overrides)


def build_parser() -> argparse.ArgumentParser:
    try:
        ver = version("gcp-reports")
    except PackageNotFoundError:
        ver = "unknown"

    shared = argparse.ArgumentParser(add_help=False)
    shared.add_argument(
        "components",
        nargs="*",
        metavar="COMPONENT",
        help="Only report projects whose component label is one of these",
    )
    shared.add_argument(
        "--env",
        dest="envs",
        action="append",
        default=[],
        help="Only report projects with this env label (repeatable)",
    )
    shared.add_argument("--env-key", help="Project label holding the environment")
    shared.add_argument("--component-key", help="Project label holding the component")
    shared.add_argument(
        "--concurrency",
        type=int,
        help="Maximum remote calls in flight across the run (default: 16)",
    )
    shared.add_argument(
        "--timeout",
        type=float,
        help="Deadline in seconds for each remote call (default: 60)",
    )
    shared.add_argument("--json", action="store_true", help="Output results as JSON")
    shared.add_argument(
        "--verbose", "-v", action="store_true", help="Show details and progress logs"
    )
    shared.add_argument("--debug", action="store_true", help="Enable debug logging")

    parser = argparse.ArgumentParser(
        description="gcp-reports: App Engine topology and backup freshness reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # App Engine topology of every production project
  gcp-reports apps --env prod

  # Backup freshness of two components, flagging anything older than 2 days
  gcp-reports backup billing search --within 2d

  # Save the backup findings for a dashboard
  gcp-reports backup --html backups.html --csv backups.csv
""",
    )
    parser.add_argument("--version", action="version", version=f"gcp-reports v{ver}")

    sub = parser.add_subparsers(dest="mode", required=True)

    apps_parser = sub.add_parser(
        "apps", parents=[shared], help="Report App Engine applications"
    )
    apps_parser.add_argument(
        "--version-limit",
        type=int,
        help="Most recent versions kept per service (default: 3)",
    )

    backup_parser = sub.add_parser(
        "backup", parents=[shared], help="Check backup buckets and SQL backups"
    )
    backup_parser.add_argument(
        "--within",
        type=parse_duration,
        metavar="DURATION",
        help="Freshness window, e.g. 24h, 90m, 2d (default: 24h)",
    )
    backup_parser.add_argument(
        "--backup-key", help="Bucket label marking backup buckets (default: backup)"
    )
    backup_parser.add_argument("--csv", help="Write findings to a CSV file")
    backup_parser.add_argument("--html", help="Write findings to an HTML file")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        setup_logger(level=logging.DEBUG)
    elif args.verbose:
        setup_logger(level=logging.INFO)

    try:
        config = build_config(args)
    except ValidationError as e:
        parser.error(str(e))

    # Use stderr for logs/progress if stdout is piped for JSON
    log_console = Console(stderr=True, quiet=args.json)
    out_console = Console(quiet=args.json)

    modes = {"apps": apps.run_apps, "backup": backup.run_backup}
    try:
        code = modes[args.mode](args, config, log_console, out_console)
    except KeyboardInterrupt:
        log_console.print("\n[bold red]Operation cancelled by user.[/bold red]")
        sys.exit(130)
    except Exception as e:
        logger.error(f"{args.mode} report failed: {e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
