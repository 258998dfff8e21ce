import argparse

from rich.console import Console

from ..core import ReportConfig
from ..ingest import BACKUP_FAMILIES, Ingestor
from ..reporter import render_backups, results_to_json, write_csv, write_html
from ..walkers.sql import SQLAdminWalker
from ..walkers.storage import StorageWalker
from .common import exit_code, select_projects, summarize_errors


def run_backup(
    args: argparse.Namespace,
    config: ReportConfig,
    log_console: Console,
    out_console: Console,
) -> int:
    """
    Checks backup buckets and Cloud SQL backup runs of the selected projects
    against the freshness window.
    """
    projects = select_projects(args, config, log_console)
    if not projects:
        log_console.print("[yellow]No projects matched the filters.[/yellow]")
        return 0

    ingestor = Ingestor(
        config,
        storage=StorageWalker(timeout=config.call_timeout),
        sql=SQLAdminWalker(timeout=config.call_timeout),
    )
    log_console.print(
        f"Freshness window: [bold]{config.freshness_window}[/bold], "
        f"backup label: [bold]{config.backup_label_key}=true[/bold]"
    )

    with log_console.status(
        f"[bold green]Checking backups in {len(projects)} project(s)..."
    ):
        results = ingestor.ingest_projects(projects, families=BACKUP_FAMILIES)

    if args.json:
        print(results_to_json(results))
    else:
        render_backups(results, out_console, verbose=args.verbose)

    if args.csv:
        write_csv(results, args.csv)
        log_console.print(f"[green]CSV report saved to {args.csv}[/green]")

    if args.html:
        write_html(results, args.html, scan_time=ingestor.now)
        log_console.print(f"[green]HTML report saved to {args.html}[/green]")

    summarize_errors(results, log_console)
    return exit_code(results)
