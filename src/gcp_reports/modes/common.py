import argparse

from rich.console import Console

from ..core import ReportConfig
from ..filters import filter_projects
from ..ingest import IngestResult
from ..models import Project
from ..walkers import org


def select_projects(
    args: argparse.Namespace, config: ReportConfig, log_console: Console
) -> list[Project]:
    """
    Discovers every active project and keeps the ones matching the
    requested components and environments.
    """
    with log_console.status("[bold green]Discovering projects..."):
        all_projects = org.list_all_projects()

    projects = filter_projects(
        all_projects,
        components=args.components,
        envs=args.envs,
        env_key=config.env_label_key,
        component_key=config.component_label_key,
    )
    log_console.print(
        f"Selected [bold]{len(projects)}[/bold] of {len(all_projects)} projects."
    )
    return projects


def exit_code(results: list[IngestResult]) -> int:
    failed = [r for r in results if not r.ok]
    return 2 if failed else 0


def summarize_errors(results: list[IngestResult], log_console: Console) -> None:
    failed = [r for r in results if not r.ok]
    if not failed:
        return
    total = sum(len(r.errors) for r in failed)
    log_console.print(
        f"[yellow]{total} ingestion error(s) across {len(failed)} project(s); "
        "the report above is incomplete for those projects.[/yellow]"
    )
