from datetime import timedelta

import pytest

from conftest import ts
from gcp_reports.exceptions import NotFoundError, TransportError
from gcp_reports.facts import UNKNOWN_TIME, BackupFinding
from gcp_reports.filters import filter_projects
from gcp_reports.ingest import APPS, BACKUP_FAMILIES, SQL, STORAGE, Ingestor
from gcp_reports.models import NodeState
from gcp_reports.schemas.appengine import GCPApplication, GCPService, GCPVersion
from gcp_reports.schemas.project import GCPProject
from gcp_reports.schemas.sql import GCPBackupRun, GCPSQLInstance
from gcp_reports.schemas.storage import GCPBucket, GCPObject
from gcp_reports.stub import (
    StubAppEngineSource,
    StubSQLAdminSource,
    StubStorageSource,
)


def projects(*ids):
    return filter_projects(GCPProject(project_id=i) for i in ids)


def selected(fleet):
    return filter_projects(fleet, components=["c1", "c3"], envs=["e1", "e2"])


# App Engine topology


def test_ingest_app_topology(fleet, config, now, app_source):
    ingestor = Ingestor(config, apps=app_source, now=now)

    results = ingestor.ingest_projects(selected(fleet), families=(APPS,))

    assert len(results) == 2
    assert all(r.ok for r in results)

    app = results[0].project.application
    assert app.gcp.id == "test1-000"
    assert [s.gcp.id for s in app.services] == ["default", "test1S1", "test1S2"]

    service = app.services[1]
    assert [v.gcp.id for v in service.versions] == ["v2", "v1"]
    assert service.versions[0].instance_count == 1
    assert service.versions[1].instance_count == 0
    assert service.versions[0].env == "standard"

    default = app.services[0]
    assert default.versions[0].gcp.id == "mahjong"
    assert [i.gcp.id for i in default.versions[0].instances] == ["1", "2", "2a"]

    assert app.state is NodeState.INGESTED
    assert all(v.state is NodeState.INGESTED for s in app.services for v in s.versions)


def test_version_cap_keeps_most_recent(config, now):
    versions = [
        GCPVersion(id="v1", create_time=ts(3)),
        GCPVersion(id="v2", create_time=ts(1)),
        GCPVersion(id="v3", create_time=ts(2)),
        GCPVersion(id="v4", create_time="garbage"),
    ]
    source = StubAppEngineSource(
        applications={"p1": GCPApplication(id="p1")},
        services={"p1": [GCPService(id="default")]},
        versions={"p1/default": versions},
    )
    capped = config.model_copy(update={"version_limit": 2})

    (result,) = Ingestor(capped, apps=source, now=now).ingest_projects(
        projects("p1"), families=(APPS,)
    )

    service = result.project.application.services[0]
    assert [v.gcp.id for v in service.versions] == ["v2", "v3"]
    # Only retained versions have their instances listed
    assert source.calls["list_version_instances:p1/default/v1"] == 0
    assert source.calls["list_version_instances:p1/default/v2"] == 1


def test_version_cap_larger_than_listing(config, now):
    source = StubAppEngineSource(
        applications={"p1": GCPApplication(id="p1")},
        services={"p1": [GCPService(id="default")]},
        versions={
            "p1/default": [
                GCPVersion(id="old", create_time="not-a-time"),
                GCPVersion(id="new", create_time=ts(1)),
            ]
        },
    )

    (result,) = Ingestor(config, apps=source, now=now).ingest_projects(
        projects("p1"), families=(APPS,)
    )

    versions = result.project.application.services[0].versions
    assert [v.gcp.id for v in versions] == ["new", "old"]
    assert versions[1].create_time is UNKNOWN_TIME


def test_project_without_application(config, now, app_source):
    (result,) = Ingestor(config, apps=app_source, now=now).ingest_projects(
        projects("test1-project-001"), families=(APPS,)
    )

    assert result.ok
    assert result.project.application is None
    assert result.project.state is NodeState.INGESTED


def test_transport_failure_is_isolated(config, now, app_source):
    app_source.failures = {
        "list_versions:test1-000/test1S1": TransportError("HTTP 503"),
    }

    (result,) = Ingestor(config, apps=app_source, now=now).ingest_projects(
        projects("test1-project-000"), families=(APPS,)
    )

    assert not result.ok
    (error,) = result.errors
    assert error.kind == "transport"
    assert error.path == "test1-project-000/app:test1-000/test1S1"

    services = result.project.application.services
    assert services[1].versions == []
    assert services[1].errors == [error]
    # Siblings are complete
    assert [v.gcp.id for v in services[0].versions] == ["mahjong", "holdem"]
    assert [v.gcp.id for v in services[2].versions] == ["v2", "v1"]


def test_continue_past_failure(config, now, app_source):
    app_source.failures = {
        "get_application:test1-project-000": TransportError("connection reset"),
    }

    results = Ingestor(config, apps=app_source, now=now).ingest_projects(
        projects("test1-project-000", "test1-project-006"), families=(APPS,)
    )

    assert [r.ok for r in results] == [False, True]
    assert results[0].project.application is None
    assert results[0].errors[0].path == "test1-project-000"
    assert len(results[1].project.application.services) == 2


def test_unexpected_exception_is_captured(config, now, app_source, mocker):
    mocker.patch.object(
        app_source, "list_services", side_effect=RuntimeError("bad payload")
    )

    (result,) = Ingestor(config, apps=app_source, now=now).ingest_projects(
        projects("test1-project-006"), families=(APPS,)
    )

    (error,) = result.errors
    assert error.kind == "unexpected"
    assert "bad payload" in error.message


def test_reingest_is_idempotent(fleet, config, now, app_source):
    ingestor = Ingestor(config, apps=app_source, now=now)
    targets = selected(fleet)

    first = [
        r.project.to_dict() for r in ingestor.ingest_projects(targets, families=(APPS,))
    ]
    second = [
        r.project.to_dict() for r in ingestor.ingest_projects(targets, families=(APPS,))
    ]

    assert first == second


def test_reingest_does_not_repeat_errors(config, now):
    source = StubStorageSource(failures={"list_buckets:p1": TransportError("HTTP 503")})
    ingestor = Ingestor(config, storage=source, now=now)
    (project,) = projects("p1")

    (first,) = ingestor.ingest_projects([project], families=(STORAGE,))
    first_errors = list(project.errors)
    (second,) = ingestor.ingest_projects([project], families=(STORAGE,))

    assert len(project.errors) == 1
    assert project.errors == first_errors
    assert second.errors == first.errors
    assert project.state is NodeState.INGESTED


def test_concurrency_is_bounded(config, now, app_source):
    app_source.delay = 0.01
    limited = config.model_copy(update={"max_in_flight": 2})

    results = Ingestor(limited, apps=app_source, now=now).ingest_projects(
        projects("test1-project-000", "test1-project-006"), families=(APPS,)
    )

    assert all(r.ok for r in results)
    assert 1 <= app_source.max_in_flight <= 2


def test_unknown_family_rejected(config, now, app_source):
    with pytest.raises(ValueError):
        Ingestor(config, apps=app_source, now=now).ingest_projects(
            projects("p1"), families=("compute",)
        )


def test_missing_source_rejected(config, now):
    with pytest.raises(ValueError):
        Ingestor(config, now=now).ingest_projects(projects("p1"), families=(SQL,))


# Cloud Storage


@pytest.fixture
def storage_source():
    return StubStorageSource(
        buckets={
            "p1": [
                GCPBucket(name="fresh", labels={"backup": "true"}, updated=ts(2)),
                GCPBucket(name="stale", labels={"backup": "true"}, updated=ts(30)),
                GCPBucket(name="logs", labels={"backup": "false"}, updated=ts(100)),
                GCPBucket(name="undated", labels={"backup": "true"}),
            ]
        },
        objects={
            "fresh": [
                GCPObject(name="2021-01-01.foo.backup_info", updated=ts(26), size=10),
                GCPObject(name="2021-01-02.foo.backup_info", updated=ts(2), size=20),
                GCPObject(name="2021-01-02.bar.backup_info", updated=ts(3), size=5),
                GCPObject(name="2021-01-02.foo.export", updated=ts(1), size=99),
            ],
            "stale": [
                GCPObject(name="2021-01-01.foo.backup_info", updated=ts(30)),
            ],
        },
    )


def test_ingest_storage(config, now, storage_source):
    (result,) = Ingestor(config, storage=storage_source, now=now).ingest_projects(
        projects("p1"), families=(STORAGE,)
    )

    assert result.ok
    buckets = {b.gcp.name: b for b in result.project.buckets}
    assert [b.gcp.name for b in result.project.backup_buckets] == [
        "fresh",
        "stale",
        "undated",
    ]

    assert buckets["fresh"].stale is False
    assert buckets["stale"].stale is True
    assert buckets["stale"].age == timedelta(hours=30)
    assert buckets["undated"].stale is True
    assert buckets["undated"].age is None

    # Non-backup buckets are never descended into
    assert buckets["logs"].stale is None
    assert storage_source.calls["list_objects:logs"] == 0


def test_kind_grouping(config, now, storage_source):
    (result,) = Ingestor(config, storage=storage_source, now=now).ingest_projects(
        projects("p1"), families=(STORAGE,)
    )

    bucket = result.project.buckets[0]
    assert [o.gcp.name for o in bucket.objects] == [
        "2021-01-02.foo.export",
        "2021-01-02.foo.backup_info",
        "2021-01-02.bar.backup_info",
        "2021-01-01.foo.backup_info",
    ]
    assert sorted(bucket.kind_map) == ["bar", "foo"]
    assert [o.gcp.name for o in bucket.kind_map["foo"]] == [
        "2021-01-02.foo.backup_info",
        "2021-01-01.foo.backup_info",
    ]
    assert bucket.objects[0].kind is None
    latest = bucket.latest_by_kind()
    assert latest["foo"].size == 20


def test_staleness_boundary_is_fresh(config, now):
    source = StubStorageSource(
        buckets={"p1": [GCPBucket(name="b", labels={"backup": "true"}, updated=ts(24))]}
    )

    (result,) = Ingestor(config, storage=source, now=now).ingest_projects(
        projects("p1"), families=(STORAGE,)
    )

    assert result.project.buckets[0].stale is False


def test_missing_bucket_is_empty(config, now, storage_source):
    storage_source.failures = {"list_objects:stale": NotFoundError("gone")}

    (result,) = Ingestor(config, storage=storage_source, now=now).ingest_projects(
        projects("p1"), families=(STORAGE,)
    )

    assert result.ok
    assert result.project.buckets[1].objects == []


def test_object_listing_failure_is_isolated(config, now, storage_source):
    storage_source.failures = {"list_objects:fresh": TransportError("HTTP 503")}

    (result,) = Ingestor(config, storage=storage_source, now=now).ingest_projects(
        projects("p1"), families=(STORAGE,)
    )

    assert not result.ok
    (error,) = result.errors
    assert error.kind == "transport"
    assert error.path == "p1/gs://fresh"

    buckets = {b.gcp.name: b for b in result.project.buckets}
    assert buckets["fresh"].state is NodeState.INGESTED
    assert buckets["fresh"].errors == [error]
    assert buckets["fresh"].objects == []
    # Bucket metadata is still judged without the objects
    assert buckets["fresh"].stale is False
    # Siblings are complete
    assert [o.gcp.name for o in buckets["stale"].objects] == [
        "2021-01-01.foo.backup_info"
    ]
    assert buckets["stale"].errors == []


def test_out_of_range_bucket_date_is_stale(config, now):
    source = StubStorageSource(
        buckets={
            "p1": [
                GCPBucket(
                    name="ancient",
                    labels={"backup": "true"},
                    updated="0001-01-01T00:00:00+01:00",
                ),
                GCPBucket(name="fresh", labels={"backup": "true"}, updated=ts(1)),
            ]
        }
    )

    (result,) = Ingestor(config, storage=source, now=now).ingest_projects(
        projects("p1"), families=(STORAGE,)
    )

    assert result.ok
    ancient, fresh = result.project.buckets
    assert ancient.updated is UNKNOWN_TIME
    assert ancient.stale is True
    assert fresh.stale is False


# Cloud SQL


@pytest.fixture
def sql_source():
    return StubSQLAdminSource(
        instances={
            "p1": [
                GCPSQLInstance(name="db-ok", backup_enabled=True),
                GCPSQLInstance(name="db-missing", backup_enabled=True),
                GCPSQLInstance(name="db-off", backup_enabled=False),
                GCPSQLInstance(name="db-stale", backup_enabled=True),
            ]
        },
        backup_runs={
            "p1/db-ok": [
                GCPBackupRun(id=str(i), enqueued_time=ts(h), end_time=ts(h - 0.5))
                for i, h in enumerate([50, 2, 26, 74])
            ],
            "p1/db-stale": [
                GCPBackupRun(id="1", enqueued_time=ts(40), end_time=ts(39)),
            ],
        },
    )


def test_ingest_sql(config, now, sql_source):
    (result,) = Ingestor(config, sql=sql_source, now=now).ingest_projects(
        projects("p1"), families=(SQL,)
    )

    assert result.ok
    instances = {i.gcp.name: i for i in result.project.sql_instances}

    assert instances["db-ok"].finding is BackupFinding.OK
    assert [r.gcp.id for r in instances["db-ok"].backup_runs] == ["1", "2", "0", "3"]
    assert [r.gcp.id for r in instances["db-ok"].recent] == ["1", "2", "0"]

    assert instances["db-missing"].finding is BackupFinding.MISSING
    assert instances["db-stale"].finding is BackupFinding.STALE
    assert instances["db-off"].finding is BackupFinding.DISABLED
    assert sql_source.calls["list_backup_runs:p1/db-off"] == 0


def test_ingest_backups_runs_both_families(config, now, storage_source, sql_source):
    ingestor = Ingestor(config, storage=storage_source, sql=sql_source, now=now)
    (project,) = projects("p1")

    errors = ingestor.ingest_backups(project)

    assert errors == []
    assert len(project.buckets) == 4
    assert len(project.sql_instances) == 4

    (result,) = ingestor.ingest_projects(projects("p1"), families=BACKUP_FAMILIES)
    assert result.ok


def test_backup_run_listing_failure_is_isolated(config, now, sql_source):
    sql_source.failures = {"list_backup_runs:p1/db-ok": TransportError("HTTP 500")}

    (result,) = Ingestor(config, sql=sql_source, now=now).ingest_projects(
        projects("p1"), families=(SQL,)
    )

    assert not result.ok
    (error,) = result.errors
    assert error.kind == "transport"
    assert error.path == "p1/sql:db-ok"

    instances = {i.gcp.name: i for i in result.project.sql_instances}
    failed = instances["db-ok"]
    assert failed.state is NodeState.INGESTED
    assert failed.errors == [error]
    assert failed.backup_runs == []
    assert failed.finding is BackupFinding.UNKNOWN
    # Siblings are complete
    assert instances["db-stale"].finding is BackupFinding.STALE
    assert instances["db-missing"].finding is BackupFinding.MISSING
    assert instances["db-off"].finding is BackupFinding.DISABLED
