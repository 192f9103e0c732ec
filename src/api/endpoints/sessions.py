import structlog
from fastapi import APIRouter, File, Request, Response, UploadFile

from src.config import settings
from src.core.exceptions import AppError
from src.schemas.conversion import ConversionOptions
from src.schemas.sessions import ImageRef, SessionResponse
from src.services import materializer
from src.services.image_handles import HostedImage, ImageHandle
from src.services.image_ingest import IngestSource, read_image
from src.services.session import UploadSession, registry

logger = structlog.get_logger()

router = APIRouter(prefix="/sessions")


def _log_conversion(original: ImageHandle, converted: ImageHandle) -> None:
    logger.info(
        "conversion_completed",
        original_media_type=original.media_type,
        converted_media_type=converted.media_type,
        hosted=isinstance(converted, HostedImage),
    )


def _get_session(session_id: str) -> UploadSession:
    materializer.evict_expired(registry, settings.session_ttl)
    return registry.get(session_id)


def _image_ref(handle: ImageHandle, base_url: str) -> ImageRef:
    src = f"{base_url}{handle.src}" if isinstance(handle, HostedImage) else handle.src
    return ImageRef(media_type=handle.media_type, src=src)


def _snapshot(session: UploadSession, request: Request) -> SessionResponse:
    base_url = str(request.base_url).rstrip("/")
    return SessionResponse(
        id=session.id,
        state=session.state.value,
        busy=session.busy,
        options=session.options,
        original=_image_ref(session.original, base_url) if session.original else None,
        converted=_image_ref(session.converted, base_url) if session.converted else None,
        error=session.error,
        download_url=f"{base_url}/sessions/{session.id}/download" if session.converted else None,
    )


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(request: Request) -> SessionResponse:
    materializer.evict_expired(registry, settings.session_ttl)
    session = registry.create(on_converted=_log_conversion)
    return _snapshot(session, request)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, request: Request) -> SessionResponse:
    return _snapshot(_get_session(session_id), request)


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str) -> Response:
    session = _get_session(session_id)
    materializer.reset(session)
    registry.remove(session_id)
    return Response(status_code=204)


@router.post("/{session_id}/image", response_model=SessionResponse)
async def upload_image(
    session_id: str,
    request: Request,
    file: UploadFile = File(...),
    source: IngestSource = IngestSource.SELECT,
) -> SessionResponse:
    session = _get_session(session_id)
    image = await read_image(file, source)
    if image is not None:
        session.load(image)
    return _snapshot(session, request)


@router.put("/{session_id}/options", response_model=SessionResponse)
async def set_options(session_id: str, request: Request, body: ConversionOptions) -> SessionResponse:
    session = _get_session(session_id)
    session.select(body)
    return _snapshot(session, request)


@router.post("/{session_id}/convert", response_model=SessionResponse)
async def convert_image(session_id: str, request: Request) -> SessionResponse:
    session = _get_session(session_id)
    await materializer.run_conversion(session)
    return _snapshot(session, request)


@router.post("/{session_id}/reset", response_model=SessionResponse)
async def reset_session(session_id: str, request: Request) -> SessionResponse:
    session = _get_session(session_id)
    materializer.reset(session)
    return _snapshot(session, request)


@router.get("/{session_id}/original")
async def get_original(session_id: str) -> Response:
    session = _get_session(session_id)
    if session.original is None:
        raise AppError(status_code=404, detail="No image loaded")
    return Response(content=session.original.read_bytes(), media_type=session.original.media_type)


@router.get("/{session_id}/download")
async def download_converted(session_id: str) -> Response:
    session = _get_session(session_id)
    if session.converted is None:
        raise AppError(status_code=404, detail="No converted image")
    data, media_type, filename = materializer.download(session.converted)
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
