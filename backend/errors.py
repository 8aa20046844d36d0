from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from http import HTTPStatus
from typing import Any, Dict, List, Optional
import logging

from config import settings

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went wrong"


class AppError(Exception):
    """Base for errors that map onto an HTTP response"""
    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, error: Optional[str] = None):
        super().__init__(message or error or self.error)
        self.message = message
        if error:
            self.error = error

    def to_dict(self, expose_message: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.message:
            body["message"] = self.message if expose_message else GENERIC_MESSAGE
        return body


class ClientError(AppError):
    """4xx errors: the message describes the request, so it is always returned"""
    status_code = 400
    error = "Bad Request"

    def to_dict(self, expose_message: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class ValidationError(ClientError):
    status_code = 400
    error = "Missing required fields"

    def __init__(
        self,
        required: Optional[List[str]] = None,
        missing: Optional[List[str]] = None,
        details: Optional[List[Dict[str, Any]]] = None,
        error: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message=message, error=error)
        self.required = list(required or [])
        self.missing = list(missing or [])
        self.details = details

    def to_dict(self, expose_message: bool) -> Dict[str, Any]:
        body = super().to_dict(expose_message)
        if self.required:
            body["required"] = self.required
        if self.missing:
            body["missing"] = self.missing
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ClientError):
    status_code = 404
    error = "Not Found"


class InvalidTransitionError(ClientError):
    status_code = 409
    error = "Invalid status transition"


class PrimaryStoreError(AppError):
    status_code = 500
    error = "Primary store failure"


class SecondaryStoreError(AppError):
    # Logged only on write paths; read paths fall back to the primary store
    status_code = 503
    error = "Secondary store failure"


def field_details(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """pydantic error list -> [{field, problem}]"""
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "problem": err["msg"]}
        for err in errors
    ]


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(settings.is_development),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        # Malformed JSON, bad query parameters and path values
        error = ValidationError(error="Invalid field values", details=field_details(exc.errors()))
        return JSONResponse(status_code=error.status_code, content=error.to_dict(True))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        try:
            phrase = HTTPStatus(exc.status_code).phrase
        except ValueError:
            phrase = "Error"
        body = {"error": phrase}
        if exc.detail and exc.detail != phrase:
            body["message"] = str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": str(exc) if settings.is_development else GENERIC_MESSAGE,
            },
        )
