"""
The in-memory resource tree built by the ingestion engine.

Each node wraps the raw provider facts (see ``schemas``) and owns its
children. Parents are held through weak references and are used only for
read-only traversal, e.g. to build the diagnostic path in log lines.
"""

from __future__ import annotations

import enum
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .core import DEFAULT_ENV
from .exceptions import IngestError
from .facts import UNKNOWN_TIME, BackupFinding, group_by_kind, recent_runs
from .schemas.appengine import (
    GCPApplication,
    GCPService,
    GCPVersion,
    GCPVersionInstance,
)
from .schemas.project import GCPProject
from .schemas.sql import GCPBackupRun, GCPSQLInstance
from .schemas.storage import GCPBucket, GCPObject


class NodeState(enum.Enum):
    PENDING = "pending"
    INGESTED = "ingested"


class ReportNode:
    """Parent lookup, path and ingestion state shared by every tree node."""

    _parent_ref: weakref.ReferenceType[ReportNode] | None = None
    state: NodeState = NodeState.PENDING
    errors: list[IngestError]

    @property
    def ident(self) -> str:
        raise NotImplementedError

    @property
    def parent(self) -> ReportNode | None:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    def attach(self, parent: ReportNode) -> None:
        self._parent_ref = weakref.ref(parent)

    @property
    def path(self) -> str:
        parts = []
        node: ReportNode | None = self
        while node is not None:
            parts.append(node.ident)
            node = node.parent
        return "/".join(reversed(parts))

    def mark_ingested(self) -> None:
        self.state = NodeState.INGESTED

    def fail(self, kind: str, message: str) -> IngestError:
        error = IngestError(path=self.path, kind=kind, message=message)
        self.errors.append(error)
        return error

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError


def _iso(ts: datetime) -> str | None:
    return None if ts == UNKNOWN_TIME else ts.isoformat()


# App Engine topology


@dataclass(eq=False)
class VersionInstance(ReportNode):
    gcp: GCPVersionInstance
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return self.gcp.id

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.gcp.id, "availability": self.gcp.availability}


@dataclass(eq=False)
class Version(ReportNode):
    gcp: GCPVersion
    create_time: datetime = UNKNOWN_TIME
    instances: list[VersionInstance] = field(default_factory=list)
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return self.gcp.id

    @property
    def env(self) -> str:
        return self.gcp.env or DEFAULT_ENV

    @property
    def instance_count(self) -> int:
        return len(self.instances)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.gcp.id,
            "runtime": self.gcp.runtime,
            "env": self.env,
            "serving_status": self.gcp.serving_status,
            "create_time": _iso(self.create_time),
            "instances": [i.to_dict() for i in self.instances],
        }


@dataclass(eq=False)
class Service(ReportNode):
    gcp: GCPService
    versions: list[Version] = field(default_factory=list)
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return self.gcp.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.gcp.id,
            "shard_by": self.gcp.shard_by,
            "versions": [v.to_dict() for v in self.versions],
        }


@dataclass(eq=False)
class Application(ReportNode):
    gcp: GCPApplication
    services: list[Service] = field(default_factory=list)
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return f"app:{self.gcp.id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.gcp.id,
            "serving_status": self.gcp.serving_status,
            "dispatch_rules": [r.model_dump() for r in self.gcp.dispatch_rules],
            "services": [s.to_dict() for s in self.services],
        }


# Cloud Storage


@dataclass(eq=False)
class BackupObject(ReportNode):
    gcp: GCPObject
    updated: datetime = UNKNOWN_TIME
    kind: str | None = None
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return self.gcp.name

    @property
    def size(self) -> int:
        return self.gcp.size

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.gcp.name,
            "updated": _iso(self.updated),
            "size": self.gcp.size,
            "kind": self.kind,
        }


@dataclass(eq=False)
class Bucket(ReportNode):
    gcp: GCPBucket
    is_backup: bool = False
    updated: datetime = UNKNOWN_TIME
    stale: bool | None = None
    age: timedelta | None = None
    objects: list[BackupObject] = field(default_factory=list)
    kind_map: dict[str, list[BackupObject]] = field(default_factory=dict)
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return f"gs://{self.gcp.name}"

    def rebuild_kind_map(self) -> None:
        self.kind_map = group_by_kind(self.objects)

    def latest_by_kind(self) -> dict[str, BackupObject]:
        return {kind: objs[0] for kind, objs in sorted(self.kind_map.items())}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.gcp.name,
            "labels": dict(self.gcp.labels),
            "is_backup": self.is_backup,
            "updated": _iso(self.updated),
            "stale": self.stale,
            "objects": [o.to_dict() for o in self.objects],
            "kinds": {k: [o.gcp.name for o in v] for k, v in self.kind_map.items()},
        }


# Cloud SQL


@dataclass(eq=False)
class BackupRun(ReportNode):
    gcp: GCPBackupRun
    enqueued: datetime = UNKNOWN_TIME
    started: datetime = UNKNOWN_TIME
    ended: datetime = UNKNOWN_TIME
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return f"run:{self.gcp.id or self.gcp.enqueued_time or '?'}"

    @property
    def status(self) -> str:
        return self.gcp.status

    @property
    def completed(self) -> datetime:
        """Best known completion time: end, else start, else enqueue."""
        for ts in (self.ended, self.started, self.enqueued):
            if ts != UNKNOWN_TIME:
                return ts
        return UNKNOWN_TIME

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.gcp.id,
            "status": self.gcp.status,
            "enqueued": _iso(self.enqueued),
            "start": _iso(self.started),
            "end": _iso(self.ended),
        }


@dataclass(eq=False)
class SQLInstance(ReportNode):
    gcp: GCPSQLInstance
    backup_runs: list[BackupRun] = field(default_factory=list)
    recent: list[BackupRun] = field(default_factory=list)
    finding: BackupFinding = BackupFinding.UNKNOWN
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return f"sql:{self.gcp.name}"

    @property
    def backup_enabled(self) -> bool:
        return self.gcp.backup_enabled

    def keep_recent(self, limit: int) -> None:
        self.recent = recent_runs(self.backup_runs, limit)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.gcp.name,
            "database_version": self.gcp.database_version,
            "backup_enabled": self.backup_enabled,
            "finding": self.finding.value,
            "backup_runs": [r.to_dict() for r in self.recent],
        }


# Root


@dataclass(eq=False)
class Project(ReportNode):
    gcp: GCPProject
    env: str = ""
    component: str = ""
    application: Application | None = None
    buckets: list[Bucket] = field(default_factory=list)
    sql_instances: list[SQLInstance] = field(default_factory=list)
    errors: list[IngestError] = field(default_factory=list)

    @property
    def ident(self) -> str:
        return self.gcp.project_id

    @property
    def project_id(self) -> str:
        return self.gcp.project_id

    @property
    def backup_buckets(self) -> list[Bucket]:
        return [b for b in self.buckets if b.is_backup]

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "env": self.env,
            "component": self.component,
            "application": self.application.to_dict() if self.application else None,
            "buckets": [b.to_dict() for b in self.buckets],
            "sql_instances": [i.to_dict() for i in self.sql_instances],
        }
