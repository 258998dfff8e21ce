import re
from datetime import timedelta
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from tenacity import retry_if_exception, stop_after_attempt, wait_exponential

from .exceptions import TransportError


def is_transient(exc: BaseException) -> bool:
    """Connection faults, throttling and 5xx answers are worth another attempt."""
    if not isinstance(exc, TransportError):
        return False
    return exc.status is None or exc.status == 429 or exc.status >= 500


# Shared retry configuration for the live data sources.
# usage: @retry(**RETRY_CONFIG)
# NotFound and other 4xx answers are final.
RETRY_CONFIG = {
    "stop": stop_after_attempt(3),
    "wait": wait_exponential(multiplier=1, min=4, max=10),
    "retry": retry_if_exception(is_transient),
    "reraise": True,
}

# Read-only scope is all the tool ever needs.
READ_ONLY_SCOPES = ["https://www.googleapis.com/auth/cloud-platform.read-only"]

DEFAULT_ENV = "standard"

_SECONDS = re.compile(r"\d+(?:\.\d+)?")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)([smhd])")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """
    Parses short durations such as "24h", "90m", "1h30m" or "2d".
    A bare number is taken as seconds.
    """
    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")

    if _SECONDS.fullmatch(text):
        return timedelta(seconds=float(text))

    pos = 0
    total = timedelta()
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        amount, unit = match.groups()
        total += timedelta(**{_DURATION_UNITS[unit]: float(amount)})
        pos = match.end()

    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return total


class ReportConfig(BaseSettings):
    """
    Runtime policy shared by every ingestion path.
    Immutable; built once per run and passed down explicitly.
    """

    model_config = SettingsConfigDict(
        env_prefix="GCP_REPORTS_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    freshness_window: timedelta = Field(
        default=timedelta(hours=24),
        description="Maximum age of a backup before it is flagged stale",
    )
    version_limit: int = Field(
        default=3, ge=0, description="Most recent versions kept per service"
    )
    backup_label_key: str = "backup"
    env_label_key: str = "env"
    component_label_key: str = "component"
    backup_run_limit: int = Field(default=3, ge=0)
    max_in_flight: int = Field(
        default=16, ge=1, description="Concurrent remote calls across the run"
    )
    call_timeout: float | None = Field(
        default=60.0, gt=0, description="Deadline in seconds for each remote call"
    )

    @field_validator("freshness_window", mode="before")
    @classmethod
    def _short_duration(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return parse_duration(value)
            except ValueError:
                # Let pydantic try ISO 8601 ("PT24H") before giving up
                return value
        return value
