"""Error types and the JSON error handlers registered on the app.

Every failure leaves the API as `{"error": "<message>"}` with the status
code carried by the exception. Unexpected exceptions are logged and
reported as a generic 500 without internal details.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger("planner.errors")


class PlannerError(Exception):
    """Base class for errors that map directly onto an HTTP response."""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, headers: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers

    def to_response(self) -> dict:
        return {"error": self.message}


class ValidationFailed(PlannerError):
    status_code = 400


class AuthenticationRequired(PlannerError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Forbidden(PlannerError):
    status_code = 403


class NotFound(PlannerError):
    status_code = 404


class RateLimited(PlannerError):
    status_code = 429


class StoreError(PlannerError):
    """The relational store rejected or failed a read/write."""
    status_code = 500


def register_error_handlers(app: FastAPI) -> None:
    """Register the planner, HTTP, validation and catch-all handlers."""

    @app.exception_handler(PlannerError)
    async def planner_error_handler(request: Request, exc: PlannerError):
        if exc.status_code >= 500:
            logger.error("%s on %s", exc.message, request.url.path)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=exc.headers)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(loc) for loc in first.get("loc", ()) if loc != "body")
        message = f"{field}: {first.get('msg')}" if field else "Invalid request data"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
