from fastapi import APIRouter

from src.config import settings
from src.schemas.health import HealthResponse, UpstreamHealthResponse
from src.services import grayscale_client

router = APIRouter(prefix="/health")


@router.get("", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/upstream", response_model=UpstreamHealthResponse)
async def upstream_health() -> UpstreamHealthResponse:
    healthy = await grayscale_client.check_api_health()
    url = f"{settings.api_base_url.rstrip('/')}{settings.health_check_path}"
    return UpstreamHealthResponse(healthy=healthy, url=url)
