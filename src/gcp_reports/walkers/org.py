from google.api_core import exceptions
from google.auth.exceptions import GoogleAuthError
from google.cloud import resourcemanager_v3
from tenacity import retry

from ..clients import get_projects_client
from ..core import RETRY_CONFIG
from ..exceptions import TransportError
from ..schemas.project import GCPProject


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_all_projects() -> list[GCPProject]:
    """
    Lists all ACTIVE projects that the current credentials can see,
    with their labels, sorted by project id.
    """
    projects = []
    try:
        client = get_projects_client()

        # We don't specify a parent to list all projects the user can see
        # filtering for ACTIVE state.
        request = resourcemanager_v3.SearchProjectsRequest(query="state:ACTIVE")

        for project in client.search_projects(request=request):
            projects.append(
                GCPProject(
                    project_id=project.project_id,
                    name=project.display_name or "",
                    state="ACTIVE",
                    labels=dict(project.labels or {}),
                )
            )
    except (exceptions.GoogleAPIError, GoogleAuthError, OSError) as e:
        raise TransportError(
            f"Failed to discover projects: {e}", status=getattr(e, "code", None)
        ) from e

    return sorted(projects, key=lambda p: p.project_id)
