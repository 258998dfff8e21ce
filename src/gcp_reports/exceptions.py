"""Error taxonomy shared by the data sources and the ingestion engine."""

from typing import Literal

from pydantic import BaseModel


class ReportError(Exception):
    """Base class for every failure raised by a data source."""


class NotFoundError(ReportError):
    """The requested resource does not exist (e.g. no App Engine app).

    Not a failure: the engine records an empty subtree and moves on.
    """


class TransportError(ReportError):
    """A remote listing or fetch failed (network, auth, quota, 5xx)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class IngestError(BaseModel):
    """A failure captured at the node where it happened."""

    path: str
    kind: Literal["transport", "unexpected"] = "transport"
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"
