"""
Deterministic in-memory data sources.

They answer from static maps keyed by identifier and can be handed to the
``Ingestor`` in place of the live walkers. Keys:

- applications: project id
- services: app id
- versions: "app/service"
- instances: "app/service/version"
- buckets: project id
- objects: bucket name
- sql instances: project id
- backup runs: "project/instance"

``failures`` maps "<operation>:<key>" to the exception that call raises,
e.g. ``{"list_versions:app-1/default": TransportError("boom")}``.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import TypeVar

from .exceptions import NotFoundError, ReportError
from .models import (
    Application,
    Bucket,
    Project,
    Service,
    SQLInstance,
    Version,
)
from .schemas.appengine import (
    GCPApplication,
    GCPService,
    GCPVersion,
    GCPVersionInstance,
)
from .schemas.sql import GCPBackupRun, GCPSQLInstance
from .schemas.storage import GCPBucket, GCPObject

T = TypeVar("T")


class _StubSource:
    def __init__(
        self,
        failures: Mapping[str, ReportError] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls: Counter[str] = Counter()
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def _enter(self, op: str, key: str) -> None:
        with self._lock:
            self.calls[f"{op}:{key}"] += 1
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            failure = self.failures.get(f"{op}:{key}")
            if failure is not None:
                raise failure
        finally:
            with self._lock:
                self._in_flight -= 1

    def _list(self, op: str, key: str, table: Mapping[str, Sequence[T]]) -> list[T]:
        self._enter(op, key)
        return list(table.get(key, []))


def _key(*parts: str) -> str:
    return "/".join(parts)


def _app_id(node: Service | Version) -> str:
    parent = node.parent
    while parent is not None and not isinstance(parent, Application):
        parent = parent.parent
    if parent is None:
        raise ValueError(f"{node.path} is not attached to an application")
    return parent.gcp.id


class StubAppEngineSource(_StubSource):
    def __init__(
        self,
        applications: Mapping[str, GCPApplication] | None = None,
        services: Mapping[str, Sequence[GCPService]] | None = None,
        versions: Mapping[str, Sequence[GCPVersion]] | None = None,
        instances: Mapping[str, Sequence[GCPVersionInstance]] | None = None,
        failures: Mapping[str, ReportError] | None = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(failures, delay)
        self.applications = dict(applications or {})
        self.services = dict(services or {})
        self.versions = dict(versions or {})
        self.instances = dict(instances or {})

    def get_application(self, project: Project) -> GCPApplication:
        self._enter("get_application", project.project_id)
        app = self.applications.get(project.project_id)
        if app is None:
            raise NotFoundError(f"application {project.project_id} not found")
        return app

    def list_services(self, application: Application) -> list[GCPService]:
        return self._list("list_services", application.gcp.id, self.services)

    def list_versions(self, service: Service) -> list[GCPVersion]:
        key = _key(_app_id(service), service.gcp.id)
        return self._list("list_versions", key, self.versions)

    def list_version_instances(self, version: Version) -> list[GCPVersionInstance]:
        service = version.parent
        assert isinstance(service, Service)
        key = _key(_app_id(version), service.gcp.id, version.gcp.id)
        return self._list("list_version_instances", key, self.instances)


class StubStorageSource(_StubSource):
    def __init__(
        self,
        buckets: Mapping[str, Sequence[GCPBucket]] | None = None,
        objects: Mapping[str, Sequence[GCPObject]] | None = None,
        failures: Mapping[str, ReportError] | None = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(failures, delay)
        self.buckets = dict(buckets or {})
        self.objects = dict(objects or {})

    def list_buckets(self, project: Project) -> list[GCPBucket]:
        return self._list("list_buckets", project.project_id, self.buckets)

    def list_objects(self, bucket: Bucket) -> list[GCPObject]:
        return self._list("list_objects", bucket.gcp.name, self.objects)


class StubSQLAdminSource(_StubSource):
    def __init__(
        self,
        instances: Mapping[str, Sequence[GCPSQLInstance]] | None = None,
        backup_runs: Mapping[str, Sequence[GCPBackupRun]] | None = None,
        failures: Mapping[str, ReportError] | None = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(failures, delay)
        self.instances = dict(instances or {})
        self.backup_runs = dict(backup_runs or {})

    def list_instances(self, project: Project) -> list[GCPSQLInstance]:
        return self._list("list_instances", project.project_id, self.instances)

    def list_backup_runs(
        self, project: Project, instance: SQLInstance
    ) -> list[GCPBackupRun]:
        key = _key(project.project_id, instance.gcp.name)
        return self._list("list_backup_runs", key, self.backup_runs)
