"""
Application exceptions and their JSON rendering.

Every error response has the shape
{"success": false, "message": str, "code": str, "errors": [{"field", "message"}]?}
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppException(HTTPException):
    """Base class for errors rendered with the standard error body."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "ERROR"
    default_message = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        errors: Optional[List[Dict[str, str]]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        if code:
            self.code = code
        self.errors = errors
        self.extra = extra or {}
        super().__init__(status_code=self.status_code, detail=self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message, "code": self.code}
        if self.errors:
            body["errors"] = self.errors
        body.update(self.extra)
        return body


# --- 400 ---


class ValidationError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"


# --- 401 ---


class AuthenticationError(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"
    default_message = "Authentication required"


class NotAuthenticated(AuthenticationError):
    code = "NO_TOKEN"
    default_message = "Access token is required"


class TokenExpired(AuthenticationError):
    code = "TOKEN_EXPIRED"
    default_message = "Token has expired"


class InvalidToken(AuthenticationError):
    code = "INVALID_TOKEN"
    default_message = "Token is invalid"


class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


# --- 403 ---


class AuthorizationError(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    default_message = "You are not allowed to perform this action"


class AdminRequired(AuthorizationError):
    code = "ADMIN_REQUIRED"
    default_message = "Admin access required"


# --- 404 ---


class NotFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", **kwargs):
        super().__init__(message=f"{resource} not found", **kwargs)


# --- 409 ---


class ConflictError(AppException):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Request conflicts with the current state"


class EmailAlreadyExists(ConflictError):
    code = "EMAIL_EXISTS"
    default_message = "User already exists with this email"


class CapacityExceeded(ConflictError):
    code = "CAPACITY_EXCEEDED"
    default_message = "Chat has reached its participant limit"


# --- 429 / 5xx ---


class RateLimited(AppException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMITED"
    default_message = "Too many requests"


class ServiceError(AppException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_ERROR"
    default_message = "Service temporarily unavailable. Please try again."


# --- Handlers ---


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimited) and "retryAfter" in exc.extra:
        headers = {"Retry-After": str(exc.extra["retryAfter"])}
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    body = ValidationError(errors=errors).to_body()
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail), "code": "HTTP_ERROR"},
    )


def make_unhandled_exception_handler(debug: bool):
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body = {"success": False, "message": "Internal server error", "code": "INTERNAL_ERROR"}
        if debug:
            body["error"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)

    return unhandled_exception_handler


def register_exception_handlers(app, debug: bool = False) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, make_unhandled_exception_handler(debug))
