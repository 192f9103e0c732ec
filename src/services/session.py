import time
import uuid
from collections.abc import Callable
from enum import StrEnum

import structlog

from src.core.exceptions import AppError, InvalidTransition
from src.schemas.conversion import ConversionOptions
from src.services.image_handles import ImageHandle, InlineImage

logger = structlog.get_logger()

CompletionCallback = Callable[[ImageHandle, ImageHandle], None]


class SessionState(StrEnum):
    EMPTY = "empty"
    LOADED = "loaded"
    CONVERTING = "converting"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadSession:
    def __init__(self, session_id: str | None = None, on_converted: CompletionCallback | None = None) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.on_converted = on_converted
        self.options = ConversionOptions()
        self.state = SessionState.EMPTY
        self.original: InlineImage | None = None
        self.converted: ImageHandle | None = None
        self.error: str | None = None
        self.attempt = 0
        self.last_seen = time.monotonic()

    @property
    def busy(self) -> bool:
        return self.state is SessionState.CONVERTING

    def load(self, image: InlineImage) -> None:
        if self.state in (SessionState.CONVERTING, SessionState.COMPLETED):
            raise InvalidTransition(self.state, "load an image")
        self.original = image
        self.error = None
        self.state = SessionState.LOADED

    def select(self, options: ConversionOptions) -> None:
        if self.busy:
            raise InvalidTransition(self.state, "change options")
        self.options = options

    def begin_conversion(self) -> int | None:
        if self.state not in (SessionState.LOADED, SessionState.FAILED):
            return None
        self.attempt += 1
        self.error = None
        self.state = SessionState.CONVERTING
        return self.attempt

    def is_current(self, attempt: int) -> bool:
        return self.busy and attempt == self.attempt

    def complete(self, attempt: int, image: ImageHandle) -> bool:
        if not self.is_current(attempt):
            return False
        self.converted = image
        self.state = SessionState.COMPLETED
        return True

    def fail(self, attempt: int, reason: str) -> bool:
        if not self.is_current(attempt):
            return False
        self.error = reason
        self.converted = None
        self.state = SessionState.FAILED
        return True

    def reset(self) -> None:
        self.attempt += 1
        self.options = ConversionOptions()
        self.original = None
        self.converted = None
        self.error = None
        self.state = SessionState.EMPTY


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, UploadSession] = {}

    def create(self, on_converted: CompletionCallback | None = None) -> UploadSession:
        session = UploadSession(on_converted=on_converted)
        self._sessions[session.id] = session
        logger.info("session_created", session_id=session.id)
        return session

    def get(self, session_id: str) -> UploadSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise AppError(status_code=404, detail="Session not found")
        session.last_seen = time.monotonic()
        return session

    def remove(self, session_id: str) -> UploadSession | None:
        return self._sessions.pop(session_id, None)

    def pop_expired(self, ttl: float, now: float | None = None) -> list[UploadSession]:
        if ttl <= 0:
            return []
        now = time.monotonic() if now is None else now
        expired = [s for s in self._sessions.values() if not s.busy and now - s.last_seen > ttl]
        for session in expired:
            del self._sessions[session.id]
        return expired

    def __len__(self) -> int:
        return len(self._sessions)


registry = SessionRegistry()
