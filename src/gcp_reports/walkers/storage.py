from datetime import datetime

from google.api_core import exceptions
from google.auth.exceptions import GoogleAuthError
from tenacity import retry

from ..clients import get_storage_client
from ..core import RETRY_CONFIG
from ..exceptions import NotFoundError, TransportError
from ..models import Bucket, Project
from ..schemas.storage import GCPBucket, GCPObject


def _rfc3339(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_buckets(project_id: str, timeout: float | None = None) -> list[GCPBucket]:
    """
    Lists all GCS buckets in a project with their labels and update time.
    """
    results = []
    try:
        storage_client = get_storage_client()
        # The shared client is not bound to a project, so pass it explicitly.
        # The iterator pages lazily, so errors surface inside this block.
        for bucket in storage_client.list_buckets(project=project_id, timeout=timeout):
            results.append(
                GCPBucket(
                    name=bucket.name,
                    location=bucket.location or "",
                    storage_class=bucket.storage_class or "",
                    labels=dict(bucket.labels or {}),
                    time_created=_rfc3339(bucket.time_created),
                    updated=_rfc3339(bucket.updated),
                )
            )
    except exceptions.NotFound as e:
        raise NotFoundError(f"buckets of {project_id} not found") from e
    except (exceptions.GoogleAPIError, GoogleAuthError, OSError) as e:
        raise TransportError(
            f"Failed to list buckets for {project_id}: {e}",
            status=getattr(e, "code", None),
        ) from e

    return results


@retry(**RETRY_CONFIG)  # type: ignore[call-overload, untyped-decorator]
def list_objects(bucket_name: str, timeout: float | None = None) -> list[GCPObject]:
    """
    Lists every object in a bucket (all pages).
    """
    results = []
    try:
        storage_client = get_storage_client()
        for blob in storage_client.list_blobs(bucket_name, timeout=timeout):
            results.append(
                GCPObject(
                    name=blob.name,
                    bucket=bucket_name,
                    updated=_rfc3339(blob.updated),
                    size=blob.size or 0,
                )
            )
    except exceptions.NotFound as e:
        raise NotFoundError(f"bucket {bucket_name} not found") from e
    except (exceptions.GoogleAPIError, GoogleAuthError, OSError) as e:
        raise TransportError(
            f"Failed to list objects in {bucket_name}: {e}",
            status=getattr(e, "code", None),
        ) from e

    return results


class StorageWalker:
    """StorageSource backed by the Cloud Storage JSON API."""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout

    def list_buckets(self, project: Project) -> list[GCPBucket]:
        return list_buckets(project.project_id, self.timeout)  # type: ignore[no-any-return]

    def list_objects(self, bucket: Bucket) -> list[GCPObject]:
        return list_objects(bucket.gcp.name, self.timeout)  # type: ignore[no-any-return]
