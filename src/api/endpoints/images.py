from fastapi import APIRouter
from fastapi.responses import FileResponse

from src.core.exceptions import AppError
from src.services import image_hosting

router = APIRouter(prefix="/images")


def validate_path_segment(value: str, name: str) -> None:
    if not value or ".." in value or "/" in value:
        raise AppError(status_code=400, detail=f"Invalid {name}")


@router.get("/{namespace}/{image_id}")
async def get_image(namespace: str, image_id: str) -> FileResponse:
    validate_path_segment(namespace, "namespace")
    validate_path_segment(image_id, "image_id")

    result = image_hosting.get_image_path(namespace, image_id)
    if not result:
        raise AppError(status_code=404, detail="Image not found")

    image_path, media_type = result
    return FileResponse(
        path=image_path,
        media_type=media_type,
        headers={"Cache-Control": "private, no-store"},
    )
