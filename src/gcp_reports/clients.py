from __future__ import annotations

import threading
from functools import lru_cache
from typing import Any

import google.auth
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.cloud import resourcemanager_v3
from google.cloud import storage  # type: ignore # noqa: I001
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient import discovery
from googleapiclient.errors import HttpError

from .core import READ_ONLY_SCOPES
from .exceptions import NotFoundError, TransportError

# Shared Client Registry (Lazy-loaded and cached)

_local = threading.local()


@lru_cache(maxsize=1)
def get_credentials() -> Any:
    credentials, _ = google.auth.default(scopes=READ_ONLY_SCOPES)
    return credentials


def get_http(timeout: float | None = None) -> Any:
    """
    Authorized transport for discovery-based requests, one per thread.
    httplib2 connections must not be shared between threads.
    """
    cache = getattr(_local, "http", None)
    if cache is None:
        cache = _local.http = {}
    if timeout not in cache:
        cache[timeout] = AuthorizedHttp(
            get_credentials(), http=httplib2.Http(timeout=timeout)
        )
    return cache[timeout]


@lru_cache(maxsize=1)
def get_projects_client() -> Any:
    return resourcemanager_v3.ProjectsClient()


@lru_cache(maxsize=1)
def get_appengine_client() -> Any:
    return discovery.build(
        "appengine", "v1", credentials=get_credentials(), cache_discovery=False
    )


@lru_cache(maxsize=1)
def get_sql_client() -> Any:
    return discovery.build(
        "sqladmin", "v1beta4", credentials=get_credentials(), cache_discovery=False
    )


@lru_cache(maxsize=1)
def get_storage_client() -> Any:
    return storage.Client()


def execute(request: Any, what: str, timeout: float | None = None) -> dict[str, Any]:
    """
    Executes a discovery request, translating failures into the report's
    error taxonomy. 404 becomes NotFoundError, everything else TransportError.
    """
    try:
        return request.execute(http=get_http(timeout))  # type: ignore[no-any-return]
    except HttpError as e:
        status = int(e.resp.status)
        if status == 404:
            raise NotFoundError(f"{what} not found") from e
        raise TransportError(f"{what}: HTTP {status}: {e.reason}", status=status) from e
    except (httplib2.HttpLib2Error, GoogleAuthError, OSError) as e:
        raise TransportError(f"{what}: {e}") from e


def paginate(
    collection: Any,
    request: Any,
    key: str,
    what: str,
    timeout: float | None = None,
) -> list[dict[str, Any]]:
    """Follows nextPageToken until the listing is exhausted."""
    items: list[dict[str, Any]] = []
    while request is not None:
        response = execute(request, what, timeout)
        items.extend(response.get(key, []))
        request = collection.list_next(request, response)
    return items
