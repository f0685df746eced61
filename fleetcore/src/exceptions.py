"""
Centralized exception handling for the Fleetcore API.

This module provides:
- Base APIException class extending FastAPI's HTTPException.
- Domain-specific exceptions with appropriate status codes and headers.
- Utility functions for formatting DB errors, logging, and routing exceptions.
- Exception handlers rendering every failure as `{"success": false, "message": ...}`.

Usage:
    - Raise specific exceptions in route handlers or domain modules.
    - Use `handle()` to normalize raw exceptions (DB, Redis, Pydantic) into API-friendly responses.
    - Call `registerHandlers()` on every FastAPI application that serves requests.
"""

from traceback import format_exception
from logging import getLogger
from fastapi import FastAPI, Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import IntegrityError
from psycopg2.errorcodes import UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION
from pydantic import ValidationError
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------
def formatIntegrityError(e: IntegrityError) -> str:
    """
    Format a database integrity error into a user-friendly message.
    """
    diag = getattr(e.orig, "diag", None)
    if diag is None or diag.message_detail is None:
        return str(e.orig)
    errorMessage: str = diag.message_detail
    errorMessage = errorMessage.translate({ord(i): None for i in '\\"\\.\\(\\)'})
    errorMessage = errorMessage.replace("Key ", "For ")
    errorMessage = errorMessage.replace("=", " value ")
    return errorMessage


def logException(e: Exception) -> None:
    """Log an exception with traceback using Uvicorn's error logger."""
    detail = "".join(format_exception(type(e), e, e.__traceback__))
    logger = getLogger("uvicorn.error")
    logger.error(detail)


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------
class APIException(HTTPException):
    """
    Base class for all application-specific exceptions.

    Provides default handling of status_code, detail, and headers.
    `extra` holds additional fields rendered next to the message.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    detail = None
    headers = None
    extra = None

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("status_code", self.status_code)
        kwargs.setdefault("detail", self.detail)
        kwargs.setdefault("headers", self.headers)
        super().__init__(*args, **kwargs)


# ---------------------------------------------------------------------------
# Exception handling entrypoint
# ---------------------------------------------------------------------------
def handle(e: Exception):
    """
    Normalize and re-raise exceptions as API-friendly errors.

    Converts raw exceptions from DB, Pydantic, Redis, etc. into
    corresponding APIException subclasses.
    """
    if isinstance(e, APIException):
        raise e
    if isinstance(e, IntegrityError):
        diag = getattr(e.orig, "diag", None)
        if diag is not None and diag.sqlstate == FOREIGN_KEY_VIOLATION:
            raise ForeignKeyViolation(formatIntegrityError(e))
        if diag is None or diag.sqlstate == UNIQUE_VIOLATION:
            raise UniqueViolation(formatIntegrityError(e))
    if isinstance(e, ValidationError):
        raise PydanticError(e.errors())
    if isinstance(e, RedisError):
        raise RedisDBError(detail=str(e))

    logException(e)
    raise e


# ---------------------------------------------------------------------------
# Response rendering
# ---------------------------------------------------------------------------
def errorBody(message, extra: dict | None = None) -> dict:
    body = {"success": False, "message": message}
    if extra:
        body.update(extra)
    return jsonable_encoder(body)


async def apiExceptionHandler(request: Request, e: StarletteHTTPException):
    extra = getattr(e, "extra", None)
    return JSONResponse(
        status_code=e.status_code,
        content=errorBody(e.detail, extra),
        headers=getattr(e, "headers", None),
    )


async def validationExceptionHandler(request: Request, e: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in e.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=errorBody("Validation failed", {"errors": errors}),
        headers={"X-Error": "ValidationError"},
    )


async def unexpectedExceptionHandler(request: Request, e: Exception):
    logException(e)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=errorBody("Internal server error"),
    )


def registerHandlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, apiExceptionHandler)
    app.add_exception_handler(RequestValidationError, validationExceptionHandler)
    app.add_exception_handler(Exception, unexpectedExceptionHandler)


# ---------------------------------------------------------------------------
# Exception Classes
# ---------------------------------------------------------------------------
class PydanticError(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Validation failed"
    headers = {"X-Error": "PydanticError"}

    def __init__(self, errors: list):
        self.extra = {
            "errors": [
                {
                    "field": ".".join(str(part) for part in error["loc"]),
                    "message": error["msg"],
                }
                for error in errors
            ]
        }
        super().__init__()


class UniqueViolation(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "UniqueViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class ForeignKeyViolation(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    headers = {"X-Error": "ForeignKeyViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class UnknownValue(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    headers = {"X-Error": "UnknownValue"}

    def __init__(self, orm_class, identifier=None):
        if identifier is None:
            detail = f"{orm_class.__name__} not found"
        else:
            detail = f"{orm_class.__name__} {identifier} not found"
        super().__init__(detail=detail)


class InvalidCredentials(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid credentials"
    headers = {"X-Error": "InvalidCredentials"}


class InactiveAccount(APIException):
    status_code = status.HTTP_412_PRECONDITION_FAILED
    detail = "The account is not in active status"
    headers = {"X-Error": "InactiveAccount"}


class InvalidToken(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid token"
    headers = {"X-Error": "InvalidToken"}


class InvalidRefreshToken(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid or expired refresh token"
    headers = {"X-Error": "InvalidRefreshToken"}


class RefreshTokenExpired(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Refresh token expired"
    headers = {"X-Error": "RefreshTokenExpired"}


class SessionExpired(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Session expired"
    headers = {"X-Error": "SessionExpired"}


class RefreshTokenRevoked(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Refresh token revoked"
    headers = {"X-Error": "RefreshTokenRevoked"}


class NoPermission(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "This user has no permission to perform this action"
    headers = {"X-Error": "NoPermission"}


class InvalidIdentifier(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Invalid ID provided"
    headers = {"X-Error": "InvalidIdentifier"}


class TenantContextRequired(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Tenant context required"
    headers = {"X-Error": "TenantContextRequired"}


class CompanySuspended(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    detail = (
        "Your subscription has been suspended. Please contact support to reactivate."
    )
    headers = {"X-Error": "CompanySuspended"}


class CompanyCancelled(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Your subscription has been cancelled. No new resources can be created."
    headers = {"X-Error": "CompanyCancelled"}


class QuotaExceeded(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    headers = {"X-Error": "QuotaExceeded"}

    def __init__(self, resource: str, limit: int):
        self.extra = {"resource": resource, "limit": limit}
        detail = (
            f"{resource.capitalize()} limit reached ({limit}). "
            f"Upgrade your plan to add more {resource}s."
        )
        super().__init__(detail=detail)


class FeatureNotAvailable(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    headers = {"X-Error": "FeatureNotAvailable"}

    def __init__(self, feature: str):
        self.extra = {"feature": feature}
        detail = f"The {feature} feature is not available on your current plan"
        super().__init__(detail=detail)


class InvalidPlanChange(APIException):
    status_code = status.HTTP_406_NOT_ACCEPTABLE
    headers = {"X-Error": "InvalidPlanChange"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class InvalidStateTransition(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "InvalidStateTransition"}

    def __init__(self, column_name: str):
        detail = f"The {column_name} cannot be set to the provided value"
        super().__init__(detail=detail)


class ResourceConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "ResourceConflict"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class DataInUse(APIException):
    status_code = status.HTTP_409_CONFLICT
    headers = {"X-Error": "DataInUse"}

    def __init__(self, orm_class, detail: str | None = None):
        if detail is None:
            detail = f"The {orm_class.__name__} is currently in use"
        super().__init__(detail=detail)


class ProtectedAccount(APIException):
    status_code = status.HTTP_406_NOT_ACCEPTABLE
    detail = "The company owner account cannot be modified this way"
    headers = {"X-Error": "ProtectedAccount"}


class InvalidLocation(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = "Latitude must be within [-90, 90] and longitude within [-180, 180]"
    headers = {"X-Error": "InvalidLocation"}


class RateLimitExceeded(APIException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    headers = {"X-Error": "RateLimitExceeded"}

    def __init__(self, scope: str, retryAfter: int):
        self.extra = {"scope": scope}
        detail = "Too many requests, please try again later"
        super().__init__(
            detail=detail,
            headers={
                "X-Error": "RateLimitExceeded",
                "Retry-After": str(retryAfter),
            },
        )


class LockAcquireTimeout(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    headers = {"X-Error": "LockAcquireTimeout"}
    detail = "Lock acquisition timed out"


class RedisDBError(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    headers = {"X-Error": "RedisAPIError"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class InvalidValue(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    headers = {"X-Error": "InvalidValue"}
    detail = "Validation failed"

    def __init__(self, field: str = "value"):
        self.extra = {"errors": [{"field": field, "message": f"Invalid {field}"}]}
        super().__init__()
