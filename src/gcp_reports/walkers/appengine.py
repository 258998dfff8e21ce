from typing import Any

from tenacity import retry

from ..clients import execute, get_appengine_client, paginate
from ..core import RETRY_CONFIG
from ..models import Application, Project, Service, Version
from ..schemas.appengine import (
    GCPApplication,
    GCPAutomaticScaling,
    GCPBasicScaling,
    GCPDispatchRule,
    GCPHandler,
    GCPService,
    GCPVersion,
    GCPVersionInstance,
)


def _to_version(raw: dict[str, Any]) -> GCPVersion:
    basic = raw.get("basicScaling")
    auto = raw.get("automaticScaling")
    scheduler = (auto or {}).get("standardSchedulerSettings", {})

    return GCPVersion(
        id=raw["id"],
        runtime=raw.get("runtime", ""),
        env=raw.get("env", ""),
        create_time=raw.get("createTime"),
        serving_status=raw.get("servingStatus", ""),
        created_by=raw.get("createdBy", ""),
        version_url=raw.get("versionUrl", ""),
        env_variables=raw.get("envVariables", {}),
        basic_scaling=(
            GCPBasicScaling(
                max_instances=basic.get("maxInstances", 0),
                idle_timeout=basic.get("idleTimeout", ""),
            )
            if basic is not None
            else None
        ),
        automatic_scaling=(
            GCPAutomaticScaling(
                max_pending_latency=auto.get("maxPendingLatency", ""),
                max_concurrent_requests=auto.get("maxConcurrentRequests", 0),
                # Flexible reports maxTotalInstances, standard nests it
                max_total_instances=auto.get(
                    "maxTotalInstances", scheduler.get("maxInstances", 0)
                ),
            )
            if auto is not None
            else None
        ),
        handlers=[
            GCPHandler(
                url_regex=h.get("urlRegex", ""),
                script_path=h.get("script", {}).get("scriptPath", ""),
            )
            for h in raw.get("handlers", [])
        ],
    )


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def get_application(app_id: str, timeout: float | None = None) -> GCPApplication:
    """
    Fetches the App Engine application of a project (app id == project id).
    Raises NotFoundError when the project never created one.
    """
    service = get_appengine_client()
    app = execute(
        service.apps().get(appsId=app_id), f"application {app_id}", timeout
    )

    return GCPApplication(
        id=app.get("id", app_id),
        serving_status=app.get("servingStatus", ""),
        location=app.get("locationId", ""),
        default_hostname=app.get("defaultHostname", ""),
        dispatch_rules=[
            GCPDispatchRule(
                domain=r.get("domain", "*"),
                path=r.get("path", ""),
                service=r.get("service", ""),
            )
            for r in app.get("dispatchRules", [])
        ],
    )


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_services(app_id: str, timeout: float | None = None) -> list[GCPService]:
    """
    Lists the services of an application with their traffic split.
    """
    services = get_appengine_client().apps().services()
    raw_services = paginate(
        services,
        services.list(appsId=app_id),
        "services",
        f"services of {app_id}",
        timeout,
    )

    results = []
    for s in raw_services:
        split = s.get("split", {})
        results.append(
            GCPService(
                id=s["id"],
                shard_by=split.get("shardBy", "UNSPECIFIED"),
                allocations=split.get("allocations", {}),
            )
        )
    return results


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_versions(
    app_id: str, service_id: str, timeout: float | None = None
) -> list[GCPVersion]:
    """
    Lists every version of a service in FULL view.
    The basic view omits createTime and scaling settings.
    """
    versions = get_appengine_client().apps().services().versions()
    raw_versions = paginate(
        versions,
        versions.list(appsId=app_id, servicesId=service_id, view="FULL"),
        "versions",
        f"versions of {app_id}/{service_id}",
        timeout,
    )
    return [_to_version(v) for v in raw_versions]


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_instances(
    app_id: str, service_id: str, version_id: str, timeout: float | None = None
) -> list[GCPVersionInstance]:
    """
    Lists the instances currently running a version.
    """
    instances = get_appengine_client().apps().services().versions().instances()
    raw_instances = paginate(
        instances,
        instances.list(appsId=app_id, servicesId=service_id, versionsId=version_id),
        "instances",
        f"instances of {app_id}/{service_id}/{version_id}",
        timeout,
    )

    return [
        GCPVersionInstance(
            id=i["id"],
            availability=i.get("availability", ""),
            start_time=i.get("startTime"),
            vm_status=i.get("vmStatus", ""),
        )
        for i in raw_instances
    ]


def _application_of(node: Service | Version) -> Application:
    parent = node.parent
    while parent is not None and not isinstance(parent, Application):
        parent = parent.parent
    if parent is None:
        raise ValueError(f"{node.path} is not attached to an application")
    return parent


class AppEngineWalker:
    """AppEngineSource backed by the App Engine Admin API."""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout

    def get_application(self, project: Project) -> GCPApplication:
        return get_application(project.project_id, self.timeout)  # type: ignore[no-any-return]

    def list_services(self, application: Application) -> list[GCPService]:
        return list_services(application.gcp.id, self.timeout)  # type: ignore[no-any-return]

    def list_versions(self, service: Service) -> list[GCPVersion]:
        app = _application_of(service)
        return list_versions(app.gcp.id, service.gcp.id, self.timeout)  # type: ignore[no-any-return]

    def list_version_instances(self, version: Version) -> list[GCPVersionInstance]:
        app = _application_of(version)
        service = version.parent
        assert isinstance(service, Service)
        return list_instances(  # type: ignore[no-any-return]
            app.gcp.id, service.gcp.id, version.gcp.id, self.timeout
        )
