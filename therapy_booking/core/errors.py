import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

class BookingError(Exception):
    """Base for errors surfaced to API callers with a stable code."""
    code = "booking_error"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

class ValidationError(BookingError):
    code = "validation_error"
    status_code = 422
    default_message = "Validation failed"

class SlotUnavailable(BookingError):
    code = "slot_unavailable"
    status_code = 409
    default_message = "This time slot is no longer available. Please select another."

class TokenNotFound(BookingError):
    code = "token_not_found"
    status_code = 404
    default_message = "Invalid verification token"

class TokenExpired(BookingError):
    code = "token_expired"
    status_code = 410
    default_message = "Verification token has expired"

class AuthorizationError(BookingError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to act on this booking"

class NotFound(BookingError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"

class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code = 409
    default_message = "Booking cannot move to the requested status"

class StaleState(BookingError):
    code = "stale_state"
    status_code = 409
    default_message = "Booking was changed by another request; reload and try again"

class ProviderUnavailable(BookingError):
    code = "provider_unavailable"
    status_code = 503
    default_message = "An external provider is unavailable"

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        logger.info(f"{exc.code} for {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "message": exc.message},
        )
