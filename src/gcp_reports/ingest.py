"""
Concurrent hierarchical ingestion.

Every node issues one listing call for its immediate children, creates the
child nodes, then ingests each child's subtree as its own unit of work and
waits for all of them before returning (a join barrier per level). Remote
calls across the whole run are gated by a single bounded semaphore; permits
are held only while a call is in flight, never across a join, so nested
fan-out cannot starve itself.

Failures never escape: a failed listing is recorded on the node it belongs
to, logged with the node path, and returned upwards as an ``IngestError``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from itertools import chain
from typing import Any, TypeVar

from .core import ReportConfig
from .exceptions import IngestError, NotFoundError, TransportError
from .facts import (
    age,
    backup_finding,
    is_backup_bucket,
    is_stale,
    kind_of,
    most_recent_first,
    parse_timestamp,
)
from .logger import logger
from .models import (
    Application,
    BackupObject,
    BackupRun,
    Bucket,
    Project,
    NodeState,
    ReportNode,
    Service,
    SQLInstance,
    Version,
    VersionInstance,
)
from .sources import AppEngineSource, SQLAdminSource, StorageSource

N = TypeVar("N", bound=ReportNode)
R = TypeVar("R")

APPS = "apps"
STORAGE = "storage"
SQL = "sql"
FAMILIES = (APPS, STORAGE, SQL)
BACKUP_FAMILIES = (STORAGE, SQL)


@dataclass
class IngestResult:
    """A project's tree, complete or partial, with the failures met on the way."""

    project: Project
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _flatten(groups: Iterable[list[IngestError]]) -> list[IngestError]:
    return list(chain.from_iterable(groups))


class Ingestor:
    def __init__(
        self,
        config: ReportConfig,
        apps: AppEngineSource | None = None,
        storage: StorageSource | None = None,
        sql: SQLAdminSource | None = None,
        now: datetime | None = None,
    ) -> None:
        self.config = config
        self.apps = apps
        self.storage = storage
        self.sql = sql
        # One reference time per run keeps staleness consistent across nodes
        self.now = now or datetime.now(timezone.utc)
        self._gate = threading.BoundedSemaphore(config.max_in_flight)

    # Plumbing

    def _call(self, fn: Callable[..., R], *args: Any) -> R:
        with self._gate:
            return fn(*args)

    def _list(
        self, node: ReportNode, fn: Callable[..., list[R]], *args: Any
    ) -> tuple[list[R], IngestError | None]:
        """
        Performs the single listing call for `node`. NotFound yields an empty
        listing; a transport failure is recorded on the node and returned.
        """
        try:
            return self._call(fn, *args), None
        except NotFoundError as e:
            logger.info(f"{node.path}: {e}")
            return [], None
        except TransportError as e:
            logger.warning(f"{node.path}: {e}")
            return [], node.fail("transport", str(e))

    def _fan_out(
        self, work: Callable[[N], list[IngestError]], nodes: Sequence[N], what: str
    ) -> list[list[IngestError]]:
        """
        Runs `work` on every node concurrently and blocks until all finish.
        Returns the errors of each node, in node order.
        """
        if not nodes:
            return []

        with ThreadPoolExecutor(
            max_workers=len(nodes), thread_name_prefix=f"ingest-{what}"
        ) as executor:
            futures = [executor.submit(work, node) for node in nodes]
            wait(futures)

        results = []
        for node, future in zip(nodes, futures):
            try:
                results.append(future.result())
            except Exception as e:
                logger.error(f"{node.path}: unexpected failure ingesting {what}: {e!r}")
                results.append([node.fail("unexpected", repr(e))])
        return results

    def _require(self, source: R | None, family: str) -> R:
        if source is None:
            raise ValueError(f"no data source configured for {family}")
        return source

    # App Engine topology

    def ingest_apps(self, project: Project) -> list[IngestError]:
        """
        Ingests project -> application -> services -> versions -> instances.
        A project without an App Engine app is not a failure.
        """
        apps = self._require(self.apps, APPS)
        project.application = None
        try:
            raw_app = self._call(apps.get_application, project)
        except NotFoundError:
            logger.info(f"{project.path}: no App Engine application")
            return []
        except TransportError as e:
            logger.warning(f"{project.path}: cannot get application: {e}")
            return [project.fail("transport", str(e))]

        application = Application(gcp=raw_app)
        application.attach(project)
        project.application = application
        return self._ingest_application(application)

    def _ingest_application(self, application: Application) -> list[IngestError]:
        assert self.apps is not None
        raw_services, failure = self._list(
            application, self.apps.list_services, application
        )
        if failure is not None:
            application.mark_ingested()
            return [failure]

        for raw in raw_services:
            service = Service(gcp=raw)
            service.attach(application)
            application.services.append(service)

        errors = _flatten(
            self._fan_out(self._ingest_service, application.services, "service")
        )
        application.mark_ingested()
        return errors

    def _ingest_service(self, service: Service) -> list[IngestError]:
        assert self.apps is not None
        raw_versions, failure = self._list(service, self.apps.list_versions, service)
        if failure is not None:
            service.mark_ingested()
            return [failure]

        candidates = []
        for raw in raw_versions:
            version = Version(gcp=raw)
            version.attach(service)
            version.create_time = parse_timestamp(raw.create_time, version.path)
            candidates.append(version)

        # Provider order is roughly chronological but not guaranteed, so keep
        # the most recent by parsed create time.
        candidates.sort(key=lambda v: v.create_time, reverse=True)
        service.versions = candidates[: self.config.version_limit]

        errors = _flatten(
            self._fan_out(self._ingest_version, service.versions, "version")
        )
        service.mark_ingested()
        return errors

    def _ingest_version(self, version: Version) -> list[IngestError]:
        assert self.apps is not None
        raw_instances, failure = self._list(
            version, self.apps.list_version_instances, version
        )
        if failure is not None:
            version.mark_ingested()
            return [failure]

        for raw in raw_instances:
            instance = VersionInstance(gcp=raw)
            instance.attach(version)
            instance.mark_ingested()
            version.instances.append(instance)

        version.mark_ingested()
        return []

    # Cloud Storage

    def ingest_storage(self, project: Project) -> list[IngestError]:
        """
        Ingests buckets, flags backup buckets and their staleness, then lists
        the objects of every backup bucket.
        """
        storage = self._require(self.storage, STORAGE)
        project.buckets = []
        raw_buckets, failure = self._list(project, storage.list_buckets, project)
        if failure is not None:
            return [failure]

        backup_buckets = []
        for raw in raw_buckets:
            bucket = Bucket(gcp=raw)
            bucket.attach(project)
            bucket.is_backup = is_backup_bucket(raw.labels, self.config.backup_label_key)
            project.buckets.append(bucket)

            if not bucket.is_backup:
                bucket.mark_ingested()
                continue

            # Point check on the bucket's own metadata, independent of objects
            bucket.updated = parse_timestamp(raw.updated, bucket.path)
            bucket.stale = is_stale(bucket.updated, self.now, self.config.freshness_window)
            bucket.age = age(bucket.updated, self.now)
            if bucket.stale:
                logger.info(f"{bucket.path}: not backed up since {raw.updated}")
            backup_buckets.append(bucket)

        return _flatten(self._fan_out(self._ingest_bucket, backup_buckets, "bucket"))

    def _ingest_bucket(self, bucket: Bucket) -> list[IngestError]:
        assert self.storage is not None
        raw_objects, failure = self._list(bucket, self.storage.list_objects, bucket)
        if failure is not None:
            bucket.mark_ingested()
            return [failure]

        objects = []
        for raw in raw_objects:
            obj = BackupObject(gcp=raw)
            obj.attach(bucket)
            obj.updated = parse_timestamp(raw.updated, obj.path)
            obj.kind = kind_of(raw.name)
            obj.mark_ingested()
            objects.append(obj)

        bucket.objects = most_recent_first(objects)
        bucket.rebuild_kind_map()
        logger.info(
            f"{bucket.path}: {len(bucket.objects)} objects, "
            f"{len(bucket.kind_map)} backup kinds"
        )
        if not bucket.objects:
            logger.warning(f"{bucket.path}: no backup listings seen")

        bucket.mark_ingested()
        return []

    # Cloud SQL

    def ingest_sql(self, project: Project) -> list[IngestError]:
        """
        Ingests SQL instances and the backup runs of every instance that has
        backups enabled.
        """
        sql = self._require(self.sql, SQL)
        project.sql_instances = []
        raw_instances, failure = self._list(project, sql.list_instances, project)
        if failure is not None:
            return [failure]

        enabled = []
        for raw in raw_instances:
            instance = SQLInstance(gcp=raw)
            instance.attach(project)
            project.sql_instances.append(instance)
            logger.info(f"{instance.path}: backup enabled[{raw.backup_enabled}]")

            if raw.backup_enabled:
                enabled.append(instance)
            else:
                instance.finding = backup_finding(
                    False, [], self.now, self.config.freshness_window
                )
                instance.mark_ingested()

        work = partial(self._ingest_sql_instance, project)
        return _flatten(self._fan_out(work, enabled, "sql-instance"))

    def _ingest_sql_instance(
        self, project: Project, instance: SQLInstance
    ) -> list[IngestError]:
        assert self.sql is not None
        raw_runs, failure = self._list(
            instance, self.sql.list_backup_runs, project, instance
        )
        if failure is not None:
            instance.mark_ingested()
            return [failure]

        runs = []
        for raw in raw_runs:
            run = BackupRun(gcp=raw)
            run.attach(instance)
            run.enqueued = parse_timestamp(raw.enqueued_time, f"{run.path} enqueued")
            run.started = parse_timestamp(raw.start_time, f"{run.path} start")
            run.ended = parse_timestamp(raw.end_time, f"{run.path} end")
            run.mark_ingested()
            runs.append(run)

        runs.sort(key=lambda r: r.enqueued, reverse=True)
        instance.backup_runs = runs
        instance.keep_recent(self.config.backup_run_limit)
        instance.finding = backup_finding(
            True, runs, self.now, self.config.freshness_window
        )
        if not runs:
            logger.warning(f"{instance.path}: backups enabled but no backup runs")

        instance.mark_ingested()
        return []

    # Projects

    def _family(self, name: str) -> Callable[[Project], list[IngestError]]:
        families = {
            APPS: self.ingest_apps,
            STORAGE: self.ingest_storage,
            SQL: self.ingest_sql,
        }
        if name not in families:
            raise ValueError(f"unknown resource family: {name}")
        return families[name]

    def ingest_project(
        self, project: Project, families: Sequence[str] = FAMILIES
    ) -> list[IngestError]:
        """
        Ingests the requested resource families of one project concurrently.
        """
        # Start from a clean slate so re-ingesting yields the same tree
        project.errors = []
        project.state = NodeState.PENDING
        work = [self._family(name) for name in families]

        with ThreadPoolExecutor(
            max_workers=max(len(work), 1), thread_name_prefix="ingest-family"
        ) as executor:
            futures = [executor.submit(fn, project) for fn in work]
            wait(futures)

        errors: list[IngestError] = []
        for name, future in zip(families, futures):
            try:
                errors.extend(future.result())
            except Exception as e:
                logger.error(f"{project.path}: unexpected failure ingesting {name}: {e!r}")
                errors.append(project.fail("unexpected", repr(e)))

        project.mark_ingested()
        return errors

    def ingest_backups(self, project: Project) -> list[IngestError]:
        return self.ingest_project(project, BACKUP_FAMILIES)

    def ingest_projects(
        self, projects: Sequence[Project], families: Sequence[str] = FAMILIES
    ) -> list[IngestResult]:
        """
        Ingests every project concurrently and waits for all of them.
        One project's failure never stops the others.
        """
        # Fail fast on a bad family or missing source rather than once per project
        sources = {APPS: self.apps, STORAGE: self.storage, SQL: self.sql}
        for name in families:
            self._family(name)
            self._require(sources[name], name)

        work = partial(self.ingest_project, families=families)
        per_project = self._fan_out(work, projects, "project")

        results = []
        for project, errors in zip(projects, per_project):
            if errors:
                logger.warning(f"{project.path}: ingested with {len(errors)} error(s)")
            else:
                logger.info(f"{project.path}: ingested")
            results.append(IngestResult(project=project, errors=errors))
        return results
