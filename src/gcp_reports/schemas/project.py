from pydantic import BaseModel, Field


class GCPProject(BaseModel):
    project_id: str
    name: str = ""
    state: str = "ACTIVE"
    labels: dict[str, str] = Field(default_factory=dict)
