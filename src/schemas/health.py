from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str


class UpstreamHealthResponse(BaseModel):
    healthy: bool
    url: str
