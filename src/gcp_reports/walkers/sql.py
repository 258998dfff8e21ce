from tenacity import retry

from ..clients import get_sql_client, paginate
from ..core import RETRY_CONFIG
from ..models import Project, SQLInstance
from ..schemas.sql import GCPBackupRun, GCPSQLInstance


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_instances(project_id: str, timeout: float | None = None) -> list[GCPSQLInstance]:
    """
    Lists all Cloud SQL instances in the project using the SQL Admin API.
    """
    service = get_sql_client()
    instances = service.instances()

    # response["items"] holds the instances (dicts)
    raw_instances = paginate(
        instances,
        instances.list(project=project_id),
        "items",
        f"SQL instances of {project_id}",
        timeout,
    )

    results = []
    for instance in raw_instances:
        settings = instance.get("settings", {})
        backup_config = settings.get("backupConfiguration", {})

        results.append(
            GCPSQLInstance(
                name=instance.get("name"),
                region=instance.get("region", ""),
                database_version=instance.get("databaseVersion", ""),
                state=instance.get("state", ""),
                backup_enabled=bool(backup_config.get("enabled", False)),
            )
        )

    return results


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_backup_runs(
    project_id: str, instance_name: str, timeout: float | None = None
) -> list[GCPBackupRun]:
    """
    Lists the backup run history of an instance (newest first, as returned).
    """
    service = get_sql_client()
    backup_runs = service.backupRuns()

    raw_runs = paginate(
        backup_runs,
        backup_runs.list(project=project_id, instance=instance_name),
        "items",
        f"backup runs of {project_id}/{instance_name}",
        timeout,
    )

    return [
        GCPBackupRun(
            id=str(run.get("id", "")),
            status=run.get("status", ""),
            type=run.get("type", ""),
            enqueued_time=run.get("enqueuedTime"),
            start_time=run.get("startTime"),
            end_time=run.get("endTime"),
        )
        for run in raw_runs
    ]


class SQLAdminWalker:
    """SQLAdminSource backed by the Cloud SQL Admin API."""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout

    def list_instances(self, project: Project) -> list[GCPSQLInstance]:
        return list_instances(project.project_id, self.timeout)  # type: ignore[no-any-return]

    def list_backup_runs(
        self, project: Project, instance: SQLInstance
    ) -> list[GCPBackupRun]:
        return list_backup_runs(  # type: ignore[no-any-return]
            project.project_id, instance.gcp.name, self.timeout
        )
