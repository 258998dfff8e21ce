from datetime import datetime, timezone

import pytest
from google.api_core import exceptions

from gcp_reports.exceptions import NotFoundError, TransportError
from gcp_reports.walkers.storage import list_buckets, list_objects


def test_list_buckets_mock(mocker):
    mock_get_storage = mocker.patch("gcp_reports.walkers.storage.get_storage_client")
    mock_storage = mock_get_storage.return_value

    mock_bucket = mocker.Mock()
    mock_bucket.name = "my-backups"
    mock_bucket.location = "US"
    mock_bucket.storage_class = "NEARLINE"
    mock_bucket.labels = {"backup": "true"}
    mock_bucket.time_created = datetime(2023, 1, 1, tzinfo=timezone.utc)
    mock_bucket.updated = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)

    mock_storage.list_buckets.return_value = [mock_bucket]

    results = list_buckets("test-project", timeout=30)

    assert len(results) == 1
    assert results[0].name == "my-backups"
    assert results[0].labels == {"backup": "true"}
    assert results[0].updated == "2024-06-01T10:00:00+00:00"
    mock_storage.list_buckets.assert_called_once_with(project="test-project", timeout=30)


def test_list_buckets_without_labels(mocker):
    mock_storage = mocker.patch(
        "gcp_reports.walkers.storage.get_storage_client"
    ).return_value
    mock_bucket = mocker.Mock()
    mock_bucket.name = "plain"
    mock_bucket.location = "US"
    mock_bucket.storage_class = "STANDARD"
    mock_bucket.time_created = None
    mock_bucket.labels = None
    mock_bucket.updated = None
    mock_storage.list_buckets.return_value = [mock_bucket]

    (bucket,) = list_buckets("test-project")

    assert bucket.labels == {}
    assert bucket.updated is None


def test_list_objects_mock(mocker):
    mock_storage = mocker.patch(
        "gcp_reports.walkers.storage.get_storage_client"
    ).return_value

    mock_blob = mocker.Mock()
    mock_blob.name = "2021-01-01.foo.backup_info"
    mock_blob.updated = datetime(2021, 1, 1, 3, 0, tzinfo=timezone.utc)
    mock_blob.size = 2048
    mock_storage.list_blobs.return_value = [mock_blob]

    (obj,) = list_objects("my-backups")

    assert obj.name == "2021-01-01.foo.backup_info"
    assert obj.bucket == "my-backups"
    assert obj.size == 2048
    assert obj.updated == "2021-01-01T03:00:00+00:00"


def test_list_objects_not_found(mocker):
    mock_storage = mocker.patch(
        "gcp_reports.walkers.storage.get_storage_client"
    ).return_value
    mock_storage.list_blobs.side_effect = exceptions.NotFound("no such bucket")

    with pytest.raises(NotFoundError):
        list_objects("gone")

    assert mock_storage.list_blobs.call_count == 1


def test_list_buckets_forbidden(mocker, no_retry_wait):
    mock_storage = mocker.patch(
        "gcp_reports.walkers.storage.get_storage_client"
    ).return_value
    mock_storage.list_buckets.side_effect = exceptions.Forbidden("denied")

    with pytest.raises(TransportError) as exc_info:
        list_buckets("locked-project")

    # Permission errors are final
    assert exc_info.value.status == 403
    assert mock_storage.list_buckets.call_count == 1


def test_list_objects_unavailable_retried(mocker, no_retry_wait):
    mock_storage = mocker.patch(
        "gcp_reports.walkers.storage.get_storage_client"
    ).return_value
    mock_storage.list_blobs.side_effect = exceptions.ServiceUnavailable("busy")

    with pytest.raises(TransportError) as exc_info:
        list_objects("backups")

    assert exc_info.value.status == 503
    assert mock_storage.list_blobs.call_count == 3
