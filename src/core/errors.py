"""
Error taxonomy for the chat API.

Every error raised before a reply starts streaming is a ``ChatError`` and is
rendered by the handlers in ``register_exception_handlers`` as
``{"error": message}`` with the class status code. Failures after streaming
has begun (provider errors, persistence errors) never reach these handlers.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ChatError(Exception):
    """Base API error class."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class Unauthorized(ChatError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidInput(ChatError):
    status_code = 400


class NotFound(ChatError):
    status_code = 404


class RateLimited(ChatError):
    """Quota denial. The client should not resubmit before ``retry_after`` seconds."""

    status_code = 429

    def __init__(self, retry_after: int, reason: Optional[str] = None):
        super().__init__("Rate limit exceeded")
        self.retry_after = retry_after
        self.reason = reason


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    content = {
        "error": exc.message,
        "message": "Too many requests. Please try again later.",
        "retryAfter": exc.retry_after,
    }
    if exc.reason:
        content["reason"] = exc.reason
    return JSONResponse(content, status_code=exc.status_code, headers={"Retry-After": str(exc.retry_after)})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette resolves handlers by MRO, so the subclass handler wins for RateLimited
    app.add_exception_handler(RateLimited, rate_limited_handler)
    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
