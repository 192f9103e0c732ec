from enum import StrEnum

import structlog
from fastapi import UploadFile

from src.services.image_handles import InlineImage
from src.services.image_hosting import detect_mime_type

logger = structlog.get_logger()

GENERIC_CONTENT_TYPES = ("", "application/octet-stream")


class IngestSource(StrEnum):
    SELECT = "select"
    DROP = "drop"


def _declared_type(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def accepts(content_type: str | None, source: IngestSource) -> bool:
    if source is IngestSource.DROP:
        return _declared_type(content_type).startswith("image/")
    return True


async def read_image(upload: UploadFile, source: IngestSource = IngestSource.SELECT) -> InlineImage | None:
    if not accepts(upload.content_type, source):
        logger.info("ingestion_skipped", filename=upload.filename, content_type=upload.content_type)
        return None

    data = await upload.read()
    media_type = _declared_type(upload.content_type)
    if media_type in GENERIC_CONTENT_TYPES:
        media_type = detect_mime_type(data)

    logger.info("image_ingested", filename=upload.filename, media_type=media_type, size=len(data))
    return InlineImage.from_bytes(data, media_type)
