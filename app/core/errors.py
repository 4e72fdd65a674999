"""Error kinds raised by the achievement core.

Every error carries a stable ``kind`` and a human readable message. The
HTTP layer renders both; driver or store error text never reaches the
client.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class AchievementError(Exception):
    kind = "achievement_error"
    status_code = 400
    default_message = "Achievement operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidType(AchievementError):
    kind = "invalid_type"
    status_code = 400
    default_message = "Unknown achievement type"


class InvalidArgument(AchievementError):
    kind = "invalid_argument"
    status_code = 400
    default_message = "Invalid argument"


class NotFound(AchievementError):
    kind = "not_found"
    status_code = 404
    default_message = "Achievement not found"


class Forbidden(AchievementError):
    kind = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class InvalidState(AchievementError):
    kind = "invalid_state"
    status_code = 409
    default_message = "Operation not allowed in the current status"


class DocumentMissing(AchievementError):
    kind = "document_missing"
    status_code = 500
    default_message = "Achievement content is missing"


class StoreUnavailable(AchievementError):
    kind = "store_unavailable"
    status_code = 503
    default_message = "Storage temporarily unavailable"


class ReferenceCreateFailed(AchievementError):
    kind = "reference_create_failed"
    status_code = 503
    default_message = "Failed to create achievement reference"


async def achievement_error_handler(request: Request, exc: AchievementError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )
