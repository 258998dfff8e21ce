import json
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import humanize
import jinja2
import pandas as pd
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .facts import UNKNOWN_TIME, BackupFinding
from .ingest import IngestResult
from .models import Application, Bucket, Project, Service, SQLInstance, Version

VERSIONS_SHOWN = 3

RECORD_COLUMNS = [
    "project_id",
    "env",
    "component",
    "resource_type",
    "name",
    "status",
    "last_backup",
    "age_hours",
    "detail",
]

FINDING_STYLES = {
    BackupFinding.OK: "green",
    BackupFinding.DISABLED: "dim",
    BackupFinding.MISSING: "bold red",
    BackupFinding.STALE: "red",
    BackupFinding.UNKNOWN: "yellow",
}


def ellipsize(s: str, lhs: int, rhs: int) -> str:
    """Shortens long object names to their first `lhs` and last `rhs` chars."""
    if len(s) < lhs + rhs + 3:
        return s
    return s[:lhs] + "..." + s[len(s) - rhs :]


def format_time(ts: datetime) -> str:
    if ts == UNKNOWN_TIME:
        return "unknown"
    return ts.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_age(delta: timedelta | None) -> str:
    if delta is None:
        return "unknown"
    return f"{humanize.naturaldelta(delta)} ago"


def _bucket_status(bucket: Bucket) -> str:
    return "STALE" if bucket.stale else "fresh"


def _print_errors(result: IngestResult, console: Console) -> None:
    for error in result.errors:
        console.print(f"  [red]error[/red] {escape(str(error))}")


# App Engine topology


def _render_version(version: Version, console: Console, verbose: bool) -> None:
    gcp = version.gcp
    if not verbose:
        return

    console.print(
        f"      deployed by[{gcp.created_by}] at [{format_time(version.create_time)}]",
        markup=False,
    )
    console.print(f"      url[{gcp.version_url}]", markup=False)
    if gcp.env_variables:
        console.print(f"      env-vars{gcp.env_variables}", markup=False)
    if gcp.basic_scaling is not None:
        console.print(
            f"      basic-scaling max[{gcp.basic_scaling.max_instances}] "
            f"idle-timeout[{gcp.basic_scaling.idle_timeout}]",
            markup=False,
        )
    if gcp.automatic_scaling is not None:
        auto = gcp.automatic_scaling
        console.print(
            f"      auto-scaling max pending latency[{auto.max_pending_latency}] "
            f"max concurrent reqs[{auto.max_concurrent_requests}] "
            f"max total instances[{auto.max_total_instances}]",
            markup=False,
        )
    for handler in gcp.handlers:
        console.print(
            f"      handler: URL regex[{handler.url_regex}], "
            f"scriptpath[{handler.script_path}]",
            markup=False,
        )


def _render_service(service: Service, console: Console, verbose: bool) -> None:
    shard_by = escape(f"[{service.gcp.shard_by}]")
    console.print(f"  service [bold]{service.gcp.id}[/bold], shard strategy{shard_by}")

    shown = service.versions if verbose else service.versions[:VERSIONS_SHOWN]

    table = Table(show_header=True, box=None, padding=(0, 2), pad_edge=False)
    table.add_column("    Version", style="cyan")
    table.add_column("Runtime")
    table.add_column("Env")
    table.add_column("Serving")
    table.add_column("Instances", justify="right")
    table.add_column("Created", style="dim")
    for version in shown:
        table.add_row(
            f"    {version.gcp.id}",
            version.gcp.runtime,
            version.env,
            version.gcp.serving_status,
            str(version.instance_count),
            format_time(version.create_time),
        )
    console.print(table)

    if len(service.versions) > len(shown):
        console.print("    [dim]...earlier versions elided...[/dim]")

    for version in shown:
        if verbose:
            console.print(f"    [cyan]{version.gcp.id}[/cyan]")
        _render_version(version, console, verbose)


def _render_application(app: Application, console: Console, verbose: bool) -> None:
    status = escape(f"[{app.gcp.serving_status}]")
    console.print(f"application [bold]{app.gcp.id}[/bold]: status{status}")
    for rule in app.gcp.dispatch_rules:
        console.print(
            f"  route: domain[{rule.domain}] dispatch[{rule.path}] "
            f"service[{rule.service}]",
            markup=False,
        )
    for service in app.services:
        _render_service(service, console, verbose)


def render_apps(
    results: Sequence[IngestResult], console: Console, verbose: bool = False
) -> None:
    """Prints the App Engine topology of every ingested project."""
    for result in results:
        project = result.project
        if project.application is None:
            console.print(
                f"[dim]project {project.project_id}: no App Engine application[/dim]"
            )
        else:
            _render_application(project.application, console, verbose)
        _print_errors(result, console)


# Backups


def _render_project_header(project: Project, console: Console) -> None:
    labels = escape(f"env[{project.env}], component[{project.component}]")
    console.print(
        f"project ID[[bold cyan]{project.project_id}[/bold cyan]]: {labels}"
    )


def _render_buckets(project: Project, console: Console, verbose: bool) -> None:
    backup_buckets = project.backup_buckets
    skipped = len(project.buckets) - len(backup_buckets)

    if not backup_buckets:
        console.print("  [yellow]no backup buckets[/yellow]")
        return

    for bucket in backup_buckets:
        style = "red" if bucket.stale else "green"
        console.print(
            f"  backup bucket [bold]{bucket.gcp.name}[/bold] "
            f"[{style}]{_bucket_status(bucket)}[/{style}], "
            f"updated {format_age(bucket.age)}"
        )

        if bucket.state.value == "ingested" and not bucket.objects and not bucket.errors:
            console.print("    [yellow]no backup listings seen![/yellow]")

        for kind, latest in bucket.latest_by_kind().items():
            console.print(
                f"    kind[{kind}] most recently updated object"
                f"[{ellipsize(latest.gcp.name, 8, 12)}] at [{format_time(latest.updated)}], "
                f"size[{humanize.naturalsize(latest.size)}]",
                markup=False,
            )

        if verbose:
            for obj in bucket.objects:
                console.print(
                    f"      object[{obj.gcp.name}] at [{format_time(obj.updated)}], "
                    f"size[{humanize.naturalsize(obj.size)}]",
                    markup=False,
                )

    if skipped and verbose:
        console.print(f"  [dim]{skipped} other bucket(s) not labelled as backups[/dim]")


def _render_sql(instance: SQLInstance, console: Console) -> None:
    style = FINDING_STYLES[instance.finding]
    enabled = escape(f"backup enabled[{instance.backup_enabled}]")
    console.print(
        f"  sql instance [bold]{instance.gcp.name}[/bold] {enabled} "
        f"[{style}]{instance.finding.value}[/{style}]"
    )
    for index, run in enumerate(instance.recent):
        console.print(
            f"    backup [{index:2d}]: enqueued[{format_time(run.enqueued)}] "
            f"start[{format_time(run.started)}] end[{format_time(run.ended)}]",
            markup=False,
        )


def render_backups(
    results: Sequence[IngestResult], console: Console, verbose: bool = False
) -> None:
    """Prints backup bucket freshness and SQL backup history per project."""
    for result in results:
        project = result.project
        _render_project_header(project, console)
        _render_buckets(project, console, verbose)
        for instance in project.sql_instances:
            _render_sql(instance, console)
        _print_errors(result, console)


def results_to_records(results: Sequence[IngestResult]) -> list[dict[str, Any]]:
    """Flattens backup findings into one row per backup bucket / SQL instance."""
    records = []
    for result in results:
        project = result.project
        base = {
            "project_id": project.project_id,
            "env": project.env,
            "component": project.component,
        }
        for bucket in project.backup_buckets:
            records.append(
                {
                    **base,
                    "resource_type": "bucket",
                    "name": bucket.gcp.name,
                    "status": "stale" if bucket.stale else "fresh",
                    "last_backup": (
                        None if bucket.updated == UNKNOWN_TIME else bucket.updated.isoformat()
                    ),
                    "age_hours": (
                        round(bucket.age.total_seconds() / 3600, 1)
                        if bucket.age is not None
                        else None
                    ),
                    "detail": ", ".join(sorted(bucket.kind_map)),
                }
            )
        for instance in project.sql_instances:
            latest = instance.recent[0] if instance.recent else None
            records.append(
                {
                    **base,
                    "resource_type": "sql",
                    "name": instance.gcp.name,
                    "status": instance.finding.value,
                    "last_backup": (
                        latest.completed.isoformat()
                        if latest is not None and latest.completed != UNKNOWN_TIME
                        else None
                    ),
                    "age_hours": None,
                    "detail": instance.gcp.database_version,
                }
            )
    return records


def write_csv(results: Sequence[IngestResult], output_path: str) -> None:
    df = pd.DataFrame(results_to_records(results), columns=RECORD_COLUMNS)
    df.to_csv(output_path, index=False)


def write_html(
    results: Sequence[IngestResult], output_path: str, scan_time: datetime
) -> None:
    """
    Renders the backup report as a standalone HTML page.
    """
    template_dir = Path(__file__).parent / "templates"
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(template_dir)),
        autoescape=jinja2.select_autoescape(["html", "xml"]),
    )

    template = env.get_template("backup_report.html")
    html_content = template.render(
        records=results_to_records(results),
        errors=[e for r in results for e in r.errors],
        project_count=len(results),
        scan_time=scan_time.strftime("%Y-%m-%d %H:%M:%S"),
    )

    with Path(output_path).open("w") as f:
        f.write(html_content)


def results_to_json(results: Sequence[IngestResult]) -> str:
    payload = [
        {
            **r.project.to_dict(),
            "errors": [e.model_dump() for e in r.errors],
        }
        for r in results
    ]
    return json.dumps(payload, indent=2)
