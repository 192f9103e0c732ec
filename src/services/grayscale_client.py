import json
from dataclasses import dataclass
from enum import StrEnum

import httpx
import structlog
from resilient_httpx import AsyncProxyHttpClient, RetryPolicy

from src.config import settings
from src.schemas.conversion import ConversionOptions, ConversionRequest
from src.services.image_handles import DATA_URL_PREFIX, InlineImage, RawImage
from src.services.image_hosting import detect_mime_type

logger = structlog.get_logger()

IMAGE_FIELD = "image"
UPLOAD_FILENAME = "image.jpg"
IMAGE_KEYS = ("converted_image", "image", "url", "processedImageUrl")

INVALID_RESPONSE = "Invalid API response"
GENERIC_FAILURE = "Failed to convert image"

_client: AsyncProxyHttpClient | None = None


class FailureKind(StrEnum):
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Success:
    image: InlineImage | RawImage


@dataclass(frozen=True)
class Failure:
    reason: str
    kind: FailureKind


ConversionOutcome = Success | Failure


@dataclass(frozen=True)
class EncodedRequest:
    params: dict[str, str]
    files: dict[str, tuple[str, bytes, str]]


def get_http_client() -> AsyncProxyHttpClient:
    global _client
    if _client is None:
        _client = AsyncProxyHttpClient(
            proxies=settings.proxies or None,
            proxy_strategy=settings.proxy_strategy,
            retry=RetryPolicy(max_attempts=settings.convert_max_attempts, retry_on=[]),
            timeout=settings.convert_timeout,
            fallback_to_direct=True,
        )
    return _client


def build_request(image: InlineImage, request: ConversionRequest) -> EncodedRequest:
    return EncodedRequest(
        params=request.query_params(),
        files={IMAGE_FIELD: (UPLOAD_FILENAME, image.read_bytes(), image.media_type)},
    )


def _media_type(content_type: str) -> str:
    return content_type.split(";")[0].strip().lower()


def is_structured(content_type: str) -> bool:
    media_type = _media_type(content_type)
    return media_type == "application/json" or media_type.endswith("+json")


def find_image_reference(payload: object) -> object:
    if not isinstance(payload, dict):
        return None
    for key in IMAGE_KEYS:
        value = payload.get(key)
        if value:
            return value
    return None


def classify_response(status_code: int, content_type: str, body: bytes) -> ConversionOutcome:
    if not 200 <= status_code < 300:
        return Failure(f"API error: {status_code}", FailureKind.TRANSPORT)

    if is_structured(content_type):
        reference = find_image_reference(json.loads(body))
        if not isinstance(reference, str):
            return Failure(INVALID_RESPONSE, FailureKind.MALFORMED_RESPONSE)
        if reference.startswith(DATA_URL_PREFIX):
            return Success(InlineImage(reference))
        return Success(InlineImage.from_base64(reference))

    media_type = _media_type(content_type)
    if not media_type.startswith("image/"):
        media_type = detect_mime_type(body)
    return Success(RawImage(data=body, media_type=media_type))


async def convert(image: InlineImage, options: ConversionOptions) -> ConversionOutcome:
    request = options.to_request()
    try:
        encoded = build_request(image, request)
        client = get_http_client()
        response = await client.post(settings.convert_url, params=encoded.params, files=encoded.files)
        outcome = classify_response(response.status_code, response.headers.get("content-type", ""), response.content)
    except Exception as e:
        logger.error("conversion_request_failed", technique=request.technique, error=str(e))
        return Failure(str(e) or GENERIC_FAILURE, FailureKind.UNEXPECTED)

    if isinstance(outcome, Failure):
        logger.warning("conversion_failed", technique=request.technique, kind=outcome.kind, reason=outcome.reason)
    return outcome


async def check_api_health() -> bool:
    url = f"{settings.api_base_url.rstrip('/')}{settings.health_check_path}"
    try:
        async with httpx.AsyncClient(timeout=settings.health_check_timeout) as client:
            response = await client.get(url)
        return response.is_success
    except httpx.HTTPError as e:
        logger.error("upstream_health_failed", url=url, error=str(e))
        return False


async def close_client() -> None:
    global _client
    if _client:
        await _client.aclose()
        _client = None
