from collections.abc import Iterable, Sequence

from .models import Project
from .schemas.project import GCPProject


def filter_projects(
    projects: Iterable[GCPProject],
    components: Sequence[str] = (),
    envs: Sequence[str] = (),
    env_key: str = "env",
    component_key: str = "component",
) -> list[Project]:
    """
    Keeps the projects whose env and component labels are in the requested
    lists. An empty list places no constraint on that label.
    """
    wanted = [(env_key, set(envs)), (component_key, set(components))]

    results = []
    for gcp in projects:
        labels = gcp.labels
        if all(not values or labels.get(key) in values for key, values in wanted):
            results.append(
                Project(
                    gcp=gcp,
                    env=labels.get(env_key, ""),
                    component=labels.get(component_key, ""),
                )
            )
    return results
