import contextlib
import secrets
import uuid
from pathlib import Path

import structlog

from src.config import settings
from src.services.image_handles import HostedImage

logger = structlog.get_logger()

IMAGES_DIR = Path(settings.uploads_path) / "images"

MEDIA_TYPE_TO_EXT = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

EXT_TO_MEDIA_TYPE = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


def detect_mime_type(image_bytes: bytes) -> str:
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:2] == b"\xff\xd8":
        return "image/jpeg"
    if image_bytes[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def extension_for(media_type: str) -> str:
    return MEDIA_TYPE_TO_EXT.get(media_type, "jpg")


def _ensure_namespace_dir(namespace: str) -> Path:
    namespace_dir = IMAGES_DIR / namespace
    namespace_dir.mkdir(parents=True, exist_ok=True)
    return namespace_dir


def generate_image_id() -> str:
    return f"{uuid.uuid4().hex}-{secrets.token_urlsafe(8)}"


def save_image_bytes(namespace: str, image_bytes: bytes, media_type: str) -> HostedImage:
    if media_type not in MEDIA_TYPE_TO_EXT:
        media_type = detect_mime_type(image_bytes)
    ext = extension_for(media_type)
    namespace_dir = _ensure_namespace_dir(namespace)
    image_id = generate_image_id()
    image_path = namespace_dir / f"{image_id}.{ext}"
    image_path.write_bytes(image_bytes)

    logger.info("image_saved", namespace=namespace, image_id=image_id, size=len(image_bytes))
    return HostedImage(namespace=namespace, image_id=image_id, path=image_path, media_type=media_type)


def get_image_path(namespace: str, image_id: str) -> tuple[Path, str] | None:
    namespace_dir = IMAGES_DIR / namespace
    for ext, media_type in EXT_TO_MEDIA_TYPE.items():
        image_path = namespace_dir / f"{image_id}.{ext}"
        if image_path.exists():
            return image_path, media_type
    return None


def delete_image(handle: HostedImage) -> bool:
    handle.released = True
    try:
        handle.path.unlink()
    except FileNotFoundError:
        return False
    logger.info("image_released", namespace=handle.namespace, image_id=handle.image_id)
    return True


def delete_namespace_images(namespace: str) -> int:
    namespace_dir = IMAGES_DIR / namespace
    if not namespace_dir.exists():
        return 0

    count = 0
    for ext in EXT_TO_MEDIA_TYPE:
        for image_file in namespace_dir.glob(f"*.{ext}"):
            try:
                image_file.unlink()
                count += 1
            except OSError as e:
                logger.error("image_delete_failed", path=str(image_file), error=str(e))

    with contextlib.suppress(OSError):
        namespace_dir.rmdir()

    logger.info("namespace_images_deleted", namespace=namespace, count=count)
    return count
