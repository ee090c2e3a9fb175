from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .logging_config import get_logger

if TYPE_CHECKING:
    from .models import CompletionRecord


logger = get_logger(__name__)


class GameError(Exception):
    """Base class for every recoverable engine error.

    ``code`` is the stable machine-readable identifier returned to clients,
    ``status_code`` the HTTP status the API layer maps it to.
    """

    code = "GAME_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context
        logger.warning(message, extra={"code": self.code, "status_code": self.status_code, **context})

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFound(GameError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(GameError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidPosition(GameError):
    code = "INVALID_POSITION"


class InvalidNavigation(GameError):
    code = "INVALID_NAVIGATION"


class AlreadySolved(GameError):
    code = "ALREADY_SOLVED"
    status_code = 409


class AlreadyCompleted(GameError):
    code = "ALREADY_COMPLETED"
    status_code = 409


class ChallengeUnavailable(GameError):
    code = "CHALLENGE_UNAVAILABLE"


class Busy(GameError):
    code = "BUSY"
    status_code = 503


class SessionCompleted(GameError):
    code = "SESSION_COMPLETED"
    status_code = 409

    def __init__(self, message: str, completion: "CompletionRecord | None" = None, **context: Any):
        self.completion = completion
        super().__init__(message, **context)

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        if self.completion is not None:
            detail["completion"] = self.completion.model_dump(mode="json")
        return detail
