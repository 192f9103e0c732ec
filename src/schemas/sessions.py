from pydantic import BaseModel

from src.schemas.conversion import ConversionOptions


class ImageRef(BaseModel):
    media_type: str
    src: str


class SessionResponse(BaseModel):
    id: str
    state: str
    busy: bool
    options: ConversionOptions
    original: ImageRef | None = None
    converted: ImageRef | None = None
    error: str | None = None
    download_url: str | None = None
