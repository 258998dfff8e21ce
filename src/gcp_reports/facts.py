"""
Derived facts computed from ingested leaves: timestamps, backup bucket
detection, staleness, kind grouping of backup objects, recent backup runs.
"""

import enum
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError

from .logger import logger

# Sorts after every real timestamp when ordering most-recent-first.
UNKNOWN_TIME = datetime.min.replace(tzinfo=timezone.utc)

# e.g. "2021-01-01.foo.backup_info" -> "foo"
BACKUP_KIND_PATTERN = re.compile(r"\.([^.]+)\.backup_info")

_TIMESTAMP = TypeAdapter(datetime)


class Timestamped(Protocol):
    updated: datetime


class Kinded(Timestamped, Protocol):
    kind: str | None


T = TypeVar("T", bound=Timestamped)
K = TypeVar("K", bound=Kinded)
R = TypeVar("R")


def parse_timestamp(raw: str | datetime | None, what: str = "") -> datetime:
    """
    Parses an RFC 3339 timestamp into an aware UTC datetime.
    Missing or malformed values are logged and mapped to UNKNOWN_TIME.
    """
    if isinstance(raw, datetime):
        parsed = raw
    elif not raw:
        logger.debug(f"missing timestamp for {what or 'resource'}")
        return UNKNOWN_TIME
    else:
        try:
            parsed = _TIMESTAMP.validate_python(raw)
        except ValidationError:
            logger.warning(f"cannot parse date {raw!r} for {what or 'resource'}")
            return UNKNOWN_TIME

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        logger.warning(f"date {raw!r} out of range for {what or 'resource'}")
        return UNKNOWN_TIME


def is_backup_bucket(labels: Mapping[str, str] | None, key: str) -> bool:
    """A bucket holds backups iff its label `key` is exactly "true"."""
    if not labels:
        return False
    return labels.get(key) == "true"


def is_stale(updated: datetime, now: datetime, window: timedelta) -> bool:
    """
    True when `updated` is unknown or older than `window` at `now`.
    A timestamp exactly `window` old is still fresh.
    """
    if updated == UNKNOWN_TIME:
        return True
    return now - updated > window


def age(updated: datetime, now: datetime) -> timedelta | None:
    if updated == UNKNOWN_TIME:
        return None
    return now - updated


def kind_of(name: str) -> str | None:
    match = BACKUP_KIND_PATTERN.search(name)
    if match:
        return match.group(1)
    return None


def most_recent_first(items: Iterable[T]) -> list[T]:
    # sorted() is stable, so equal timestamps keep provider order
    return sorted(items, key=lambda item: item.updated, reverse=True)


def group_by_kind(objects: Iterable[K]) -> dict[str, list[K]]:
    """
    Builds kind -> objects (most recent first). Objects without a kind are
    left out. Always rebuilt from scratch from the full object list.
    """
    kind_map: dict[str, list[K]] = {}
    for obj in most_recent_first(objects):
        if obj.kind is None:
            continue
        kind_map.setdefault(obj.kind, []).append(obj)
    return kind_map


def recent_runs(runs: Sequence[R], limit: int = 3) -> list[R]:
    """The `limit` most recent entries of an already ordered sequence."""
    return list(runs[: max(limit, 0)])


class BackupFinding(str, enum.Enum):
    OK = "ok"
    DISABLED = "disabled"
    MISSING = "missing"
    STALE = "stale"
    UNKNOWN = "unknown"


class Run(Protocol):
    @property
    def status(self) -> str: ...

    @property
    def completed(self) -> datetime: ...


def backup_finding(
    enabled: bool, runs: Sequence[Run], now: datetime, window: timedelta
) -> BackupFinding:
    """
    Classifies a database instance's backup history. Only successful runs
    (or runs without a reported status) count towards freshness.
    """
    if not enabled:
        return BackupFinding.DISABLED
    if not runs:
        return BackupFinding.MISSING
    succeeded = [r.completed for r in runs if r.status in ("", "SUCCESSFUL")]
    if not succeeded or is_stale(max(succeeded), now, window):
        return BackupFinding.STALE
    return BackupFinding.OK
