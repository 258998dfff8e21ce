from pydantic import BaseModel, Field


class GCPSQLInstance(BaseModel):
    name: str
    region: str = ""
    database_version: str = ""
    state: str = ""
    backup_enabled: bool = Field(
        default=False, description="settings.backupConfiguration.enabled"
    )


class GCPBackupRun(BaseModel):
    id: str = ""
    status: str = ""
    type: str = ""
    enqueued_time: str | None = None
    start_time: str | None = None
    end_time: str | None = None
