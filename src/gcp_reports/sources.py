"""
Data-source capabilities used by the ingestion engine.

One protocol per resource family. Each operation performs exactly one remote
listing (or fetch) for an already-ingested parent node and returns the raw
facts of its immediate children. Failures are raised as ``NotFoundError`` or
``TransportError``; implementations must not mutate provider state.

``gcp_reports.walkers`` provides the live implementations and
``gcp_reports.stub`` the in-memory ones used by the tests.
"""

from typing import Protocol

from .models import Application, Bucket, Project, Service, SQLInstance, Version
from .schemas.appengine import (
    GCPApplication,
    GCPService,
    GCPVersion,
    GCPVersionInstance,
)
from .schemas.sql import GCPBackupRun, GCPSQLInstance
from .schemas.storage import GCPBucket, GCPObject


class AppEngineSource(Protocol):
    def get_application(self, project: Project) -> GCPApplication:
        """Raises NotFoundError when the project has no App Engine app."""
        ...

    def list_services(self, application: Application) -> list[GCPService]: ...

    def list_versions(self, service: Service) -> list[GCPVersion]:
        """Full view: create time and scaling settings must be populated."""
        ...

    def list_version_instances(self, version: Version) -> list[GCPVersionInstance]: ...


class StorageSource(Protocol):
    def list_buckets(self, project: Project) -> list[GCPBucket]: ...

    def list_objects(self, bucket: Bucket) -> list[GCPObject]: ...


class SQLAdminSource(Protocol):
    def list_instances(self, project: Project) -> list[GCPSQLInstance]: ...

    def list_backup_runs(
        self, project: Project, instance: SQLInstance
    ) -> list[GCPBackupRun]: ...
