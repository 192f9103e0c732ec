import structlog

from src.core.exceptions import AppError
from src.services import image_hosting
from src.services.grayscale_client import ConversionOutcome, Failure, convert
from src.services.image_handles import HostedImage, ImageHandle, RawImage
from src.services.session import SessionRegistry, UploadSession

logger = structlog.get_logger()

DOWNLOAD_STEM = "grayscale-image"


def materialize(session: UploadSession, attempt: int, outcome: ConversionOutcome) -> ImageHandle | None:
    if not session.is_current(attempt):
        logger.info("conversion_result_discarded", session_id=session.id, attempt=attempt)
        return None

    if isinstance(outcome, Failure):
        session.fail(attempt, outcome.reason)
        return None

    image = outcome.image
    handle: ImageHandle
    if isinstance(image, RawImage):
        handle = image_hosting.save_image_bytes(session.id, image.data, image.media_type)
    else:
        handle = image
    session.complete(attempt, handle)

    if session.on_converted is not None and session.original is not None:
        try:
            session.on_converted(session.original, handle)
        except Exception:
            logger.exception("completion_callback_failed", session_id=session.id)
    return handle


async def run_conversion(session: UploadSession) -> bool:
    original = session.original
    if original is None:
        return False
    attempt = session.begin_conversion()
    if attempt is None:
        return False

    logger.info("conversion_started", session_id=session.id, attempt=attempt, technique=session.options.technique)
    outcome = await convert(original, session.options)
    materialize(session, attempt, outcome)
    return True


def release(handle: ImageHandle | None) -> None:
    if isinstance(handle, HostedImage):
        image_hosting.delete_image(handle)


def reset(session: UploadSession) -> None:
    release(session.converted)
    image_hosting.delete_namespace_images(session.id)
    session.reset()
    logger.info("session_reset", session_id=session.id)


def evict_expired(registry: SessionRegistry, ttl: float) -> int:
    expired = registry.pop_expired(ttl)
    for session in expired:
        reset(session)
    if expired:
        logger.info("sessions_evicted", count=len(expired), ttl=ttl)
    return len(expired)


def download(handle: ImageHandle) -> tuple[bytes, str, str]:
    try:
        data = handle.read_bytes()
        media_type = handle.media_type
    except ValueError as e:
        raise AppError(status_code=502, detail="Converted image could not be decoded") from e
    return data, media_type, f"{DOWNLOAD_STEM}.{image_hosting.extension_for(media_type)}"
