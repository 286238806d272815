"""Domain error codes and their HTTP mapping."""
from dataclasses import dataclass
from enum import Enum

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class ErrorCode(Enum):
    """Domain error codes."""

    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


@dataclass(frozen=True)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class StoreUnavailable(DomainError):
    """Raised when the booking store cannot be reached or times out."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            code=ErrorCode.STORE_UNAVAILABLE,
            message="Booking store is unavailable",
        )
        object.__setattr__(self, "operation", operation)


def store_unavailable_handler(_: Request, exc: StoreUnavailable) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": exc.message})


def apply_error_handlers(app: FastAPI) -> None:
    """Map domain errors raised by shared components to HTTP responses."""

    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
