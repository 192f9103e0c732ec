import base64
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote_to_bytes

from src.core.exceptions import HandleReleased

DATA_URL_PREFIX = "data:"
DEFAULT_MEDIA_TYPE = "image/jpeg"


@dataclass(frozen=True)
class InlineImage:
    data_url: str

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str) -> "InlineImage":
        return cls(f"data:{media_type};base64,{base64.b64encode(data).decode()}")

    @classmethod
    def from_base64(cls, payload: str, media_type: str = DEFAULT_MEDIA_TYPE) -> "InlineImage":
        return cls(f"data:{media_type};base64,{payload}")

    def _split(self) -> tuple[str, str]:
        header, sep, payload = self.data_url.partition(",")
        if not header.startswith(DATA_URL_PREFIX) or not sep:
            raise ValueError("Malformed data URL")
        return header[len(DATA_URL_PREFIX) :], payload

    @property
    def media_type(self) -> str:
        meta = self.data_url[len(DATA_URL_PREFIX) :].split(",")[0]
        return meta.split(";")[0].strip() or "text/plain"

    @property
    def src(self) -> str:
        return self.data_url

    def read_bytes(self) -> bytes:
        meta, payload = self._split()
        if meta.endswith(";base64"):
            return base64.b64decode(payload)
        return unquote_to_bytes(payload)


@dataclass(frozen=True)
class RawImage:
    data: bytes
    media_type: str


@dataclass
class HostedImage:
    namespace: str
    image_id: str
    path: Path
    media_type: str
    released: bool = False

    @property
    def src(self) -> str:
        return f"/images/{self.namespace}/{self.image_id}"

    def read_bytes(self) -> bytes:
        if self.released or not self.path.exists():
            raise HandleReleased()
        return self.path.read_bytes()


ImageHandle = InlineImage | HostedImage
