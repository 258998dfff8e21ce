from pydantic import BaseModel, Field


class GCPDispatchRule(BaseModel):
    domain: str = "*"
    path: str = ""
    service: str = ""


class GCPApplication(BaseModel):
    id: str
    serving_status: str = "SERVING"
    location: str = ""
    default_hostname: str = ""
    dispatch_rules: list[GCPDispatchRule] = Field(default_factory=list)


class GCPService(BaseModel):
    id: str
    shard_by: str = Field(
        default="UNSPECIFIED", description="Traffic split strategy: IP, COOKIE, RANDOM"
    )
    allocations: dict[str, float] = Field(default_factory=dict)


class GCPBasicScaling(BaseModel):
    max_instances: int = 0
    idle_timeout: str = ""


class GCPAutomaticScaling(BaseModel):
    max_pending_latency: str = ""
    max_concurrent_requests: int = 0
    max_total_instances: int = 0


class GCPHandler(BaseModel):
    url_regex: str
    script_path: str = ""


class GCPVersion(BaseModel):
    id: str
    runtime: str = ""
    env: str = Field(default="", description="standard or flexible; empty means standard")
    create_time: str | None = Field(default=None, description="RFC 3339, as returned")
    serving_status: str = ""
    created_by: str = ""
    version_url: str = ""
    env_variables: dict[str, str] = Field(default_factory=dict)
    basic_scaling: GCPBasicScaling | None = None
    automatic_scaling: GCPAutomaticScaling | None = None
    handlers: list[GCPHandler] = Field(default_factory=list)


class GCPVersionInstance(BaseModel):
    id: str
    availability: str = ""
    start_time: str | None = None
    vm_status: str = ""
