from pydantic import BaseModel, Field


class GCPBucket(BaseModel):
    name: str
    location: str = ""
    storage_class: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    time_created: str | None = None
    updated: str | None = Field(default=None, description="RFC 3339 metadata update time")


class GCPObject(BaseModel):
    name: str
    bucket: str = ""
    updated: str | None = None
    size: int = 0
