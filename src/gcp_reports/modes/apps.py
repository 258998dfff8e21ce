import argparse

from rich.console import Console

from ..core import ReportConfig
from ..ingest import APPS, Ingestor
from ..reporter import render_apps, results_to_json
from ..walkers.appengine import AppEngineWalker
from .common import exit_code, select_projects, summarize_errors


def run_apps(
    args: argparse.Namespace,
    config: ReportConfig,
    log_console: Console,
    out_console: Console,
) -> int:
    """
    Reports the App Engine topology of the selected projects.
    """
    projects = select_projects(args, config, log_console)
    if not projects:
        log_console.print("[yellow]No projects matched the filters.[/yellow]")
        return 0

    ingestor = Ingestor(config, apps=AppEngineWalker(timeout=config.call_timeout))

    with log_console.status(
        f"[bold green]Walking App Engine in {len(projects)} project(s)..."
    ):
        results = ingestor.ingest_projects(projects, families=(APPS,))

    if args.json:
        print(results_to_json(results))
    else:
        render_apps(results, out_console, verbose=args.verbose)

    summarize_errors(results, log_console)
    return exit_code(results)
