"""Exception handling and custom exceptions."""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger()


class BaseCustomException(Exception):
    """Base class for custom exceptions."""

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(BaseCustomException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ValidationException(BaseCustomException):
    """Exception raised when validation fails."""

    def __init__(self, message: str = "Validation error"):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)


# Mining yield calculator

class InvalidDifficulty(ValidationException):
    """Network difficulty is missing, zero, negative or not finite."""

    def __init__(self, message: str = "Network difficulty must be a positive finite number"):
        super().__init__(message)


class InvalidVolume(ValidationException):
    """Curtailed volume is not a finite number."""

    def __init__(self, message: str = "Curtailed volume must be a finite number"):
        super().__init__(message)


class InvalidBitcoinPrice(ValidationException):
    """Bitcoin price is not a positive finite number."""

    def __init__(self, message: str = "Bitcoin price must be a positive finite number"):
        super().__init__(message)


class UnknownMinerModel(ValidationException):
    """Miner model is not one of the supported hardware profiles."""

    def __init__(self, miner_model: str):
        self.miner_model = miner_model
        super().__init__(f"Unknown miner model: {miner_model}")


# Upstream data source

class UpstreamError(BaseCustomException):
    """Base class for failures talking to the settlement data source."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        settlement_date: Optional[str] = None,
        settlement_period: Optional[int] = None,
    ):
        self.settlement_date = settlement_date
        self.settlement_period = settlement_period
        super().__init__(message, status_code)


class UpstreamRateLimited(UpstreamError):
    """Data source answered HTTP 429."""

    def __init__(self, message: str = "Upstream rate limit exceeded", retry_after: Optional[float] = None, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS, **kwargs)


class UpstreamUnavailable(UpstreamError):
    """Data source failed transiently, or retries were exhausted."""

    def __init__(self, message: str = "Upstream data source unavailable", **kwargs):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, **kwargs)


class UpstreamMalformedResponse(UpstreamError):
    """Data source returned a payload that cannot be parsed."""

    def __init__(self, message: str = "Malformed upstream response", fragment: Any = None, **kwargs):
        self.fragment = fragment
        super().__init__(message, status.HTTP_502_BAD_GATEWAY, **kwargs)


# Reconciliation and aggregation

class ReconciliationGap(BaseCustomException):
    """Derived rows are missing for some curtailment rows, or outlive them."""

    def __init__(self, missing_count: int, dates: Optional[List[str]] = None, orphan_count: int = 0):
        self.missing_count = missing_count
        self.orphan_count = orphan_count
        self.dates = dates or []
        message = f"{missing_count} mining calculations missing"
        if orphan_count:
            message += f" and {orphan_count} orphaned"
        super().__init__(
            f"{message} across {len(self.dates)} date(s)",
            status.HTTP_409_CONFLICT,
        )


class AggregateInconsistency(BaseCustomException):
    """A rollup does not equal the sum of its constituent rows."""

    def __init__(self, inconsistencies: List[Dict[str, Any]]):
        self.inconsistencies = inconsistencies
        super().__init__(
            f"{len(inconsistencies)} rollup value(s) differ from the sum of their constituents",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


async def custom_exception_handler(request: Request, exc: BaseCustomException) -> JSONResponse:
    """Handle custom exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Custom exception occurred",
        request_id=request_id,
        exception_type=type(exc).__name__,
        message=exc.message,
        status_code=exc.status_code,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "type": type(exc).__name__,
                "message": exc.message,
                "request_id": request_id,
            }
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "HTTP exception occurred",
        request_id=request_id,
        status_code=exc.status_code,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "type": "HTTPException",
                "message": exc.detail,
                "request_id": request_id,
            }
        },
    )


async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic validation exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Validation exception occurred",
        request_id=request_id,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "type": "ValidationError",
                "message": "Validation failed",
                "details": exc.errors(include_url=False),
                "request_id": request_id,
            }
        },
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Database exception occurred",
        request_id=request_id,
        error=str(exc),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "type": "DatabaseError",
                "message": "Internal server error",
                "request_id": request_id,
            }
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception occurred",
        request_id=request_id,
        exception_type=type(exc).__name__,
        error=str(exc),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "type": "InternalServerError",
                "message": "Internal server error",
                "request_id": request_id,
            }
        },
    )


def add_exception_handlers(app: FastAPI) -> None:
    """Add exception handlers to the FastAPI app."""
    app.add_exception_handler(BaseCustomException, custom_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
