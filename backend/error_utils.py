import logging
from fastapi import HTTPException
from typing import Optional

logger = logging.getLogger(__name__)


class AssessmentError(Exception):
    """Base for errors raised by the submission engine.

    Each subclass carries the HTTP status and the machine readable error code
    used in the ``{"error": ..., "message": ...}`` detail returned to clients.
    """
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def to_detail(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class NotFoundError(AssessmentError):
    status_code = 404
    error_code = "not_found"


class ForbiddenError(AssessmentError):
    status_code = 403
    error_code = "forbidden"


class TimeExpiredError(ForbiddenError):
    error_code = "time_expired"


class ConflictError(AssessmentError):
    status_code = 409
    error_code = "conflict"


class PayloadValidationError(AssessmentError):
    status_code = 400
    error_code = "validation_error"


def raise_http(exc: AssessmentError) -> None:
    """Translate an engine error into the HTTPException the routers return."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    else:
        logger.info(f"Request rejected ({exc.status_code} {exc.error_code}): {exc.message}")
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc


def safe_raise_http(user_message: str, exc: Optional[Exception] = None, status_code: int = 500,
                    error_code: str = "internal_error") -> None:
    """
    Log the full exception server-side and raise a generic HTTPException for clients.

    - user_message: short, non-sensitive message returned to client
    - exc: optional exception instance; full details are logged with stack trace
    - status_code: HTTP status code to raise
    """
    safe_log(user_message, exc)
    raise HTTPException(status_code=status_code, detail={"error": error_code, "message": user_message})


def safe_log(user_message: str, exc: Optional[Exception] = None) -> None:
    """
    Log exceptions safely on the server. Prefer logger.exception to capture stack traces.
    """
    if exc is not None:
        logger.exception("%s: %s", user_message, exc)
    else:
        logger.error(user_message)
