from datetime import datetime, timedelta, timezone

import pytest

from gcp_reports.core import ReportConfig
from gcp_reports.schemas.appengine import (
    GCPApplication,
    GCPService,
    GCPVersion,
    GCPVersionInstance,
)
from gcp_reports.schemas.project import GCPProject
from gcp_reports.stub import StubAppEngineSource

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def ts(hours_ago: float) -> str:
    """RFC 3339 timestamp `hours_ago` before NOW."""
    return (NOW - timedelta(hours=hours_ago)).isoformat().replace("+00:00", "Z")


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config(monkeypatch):
    # Keep the developer's environment out of the tests
    for key in (
        "FRESHNESS_WINDOW",
        "VERSION_LIMIT",
        "BACKUP_LABEL_KEY",
        "ENV_LABEL_KEY",
        "COMPONENT_LABEL_KEY",
        "BACKUP_RUN_LIMIT",
        "MAX_IN_FLIGHT",
        "CALL_TIMEOUT",
    ):
        monkeypatch.delenv(f"GCP_REPORTS_{key}", raising=False)
    return ReportConfig()


@pytest.fixture
def no_retry_wait(mocker):
    """Skip tenacity's backoff between attempts."""
    return mocker.patch("tenacity.nap.time.sleep")


@pytest.fixture
def fleet():
    """Projects with a mix of env/component labels."""
    labels = [
        {"env": "e1", "component": "c1"},
        {"component": "c1"},
        {"env": "e1"},
        {"component": "c2"},
        {"component": "c1"},
        {"extraneous": "polevault"},
        {"extraneous": "polevault", "env": "e1", "component": "c1"},
        {"extraneous": "polevault", "altenv": "e1", "component": "c1"},
        {"envbad": "ebad", "component": "c1"},
        {},
        {"extraneous": "polevault", "env": "e1", "altcomponent": "c1"},
    ]
    return [
        GCPProject(project_id=f"test1-project-{i:03d}", labels=project_labels)
        for i, project_labels in enumerate(labels)
    ]


@pytest.fixture
def app_source():
    env_vars = {"envOne": "one", "envTwo": "two"}
    return StubAppEngineSource(
        applications={
            "test1-project-000": GCPApplication(id="test1-000"),
            "test1-project-006": GCPApplication(id="test1-006"),
        },
        services={
            "test1-000": [
                GCPService(id="default"),
                GCPService(id="test1S1"),
                GCPService(id="test1S2"),
            ],
            "test1-006": [GCPService(id="default"), GCPService(id="test1.6S1")],
        },
        versions={
            "test1-000/default": [
                GCPVersion(
                    id="mahjong",
                    env="flexible",
                    env_variables=env_vars,
                    create_time=ts(10),
                ),
                GCPVersion(id="holdem", env="standard", create_time=ts(20)),
            ],
            "test1-000/test1S1": [
                GCPVersion(
                    id="v1", env="flexible", env_variables=env_vars, create_time=ts(48)
                ),
                GCPVersion(id="v2", create_time=ts(24)),
            ],
            "test1-000/test1S2": [
                GCPVersion(id="v1", env="flexible", create_time=ts(30)),
                GCPVersion(id="v2", env="standard", create_time=ts(5)),
            ],
            "test1-006/default": [
                GCPVersion(id="foo", env="flexible", create_time=ts(3)),
                GCPVersion(id="bar", env="standard", create_time=ts(4)),
            ],
            "test1-006/test1.6S1": [
                GCPVersion(id="one", env="flexible", create_time=ts(7)),
                GCPVersion(id="two", env="standard", create_time=ts(6)),
            ],
        },
        instances={
            "test1-000/default/mahjong": [
                GCPVersionInstance(id="1"),
                GCPVersionInstance(id="2"),
                GCPVersionInstance(id="2a"),
            ],
            "test1-000/test1S1/v2": [GCPVersionInstance(id="3")],
            "test1-000/test1S2/v2": [GCPVersionInstance(id="4")],
            "test1-006/default/bar": [
                GCPVersionInstance(id="5"),
                GCPVersionInstance(id="6"),
            ],
        },
    )
