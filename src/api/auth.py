"""
Authentication middleware for Google Sign-In ID tokens.

Requests carry ``Authorization: Bearer <id_token>``. The token is verified
against Google's public keys and the configured OAuth client ID, then the
email is checked against ``ALLOWED_EMAILS`` when that list is set.

In DEV mode with AUTH_VERIFY_ENABLED=False a mock user is injected so the
backend runs locally without Google credentials.
"""

import logging

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from core.config import settings

logger = logging.getLogger(__name__)

# Public paths that bypass authentication
PUBLIC_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

MOCK_USER = {"sub": "mock-developer-id", "email": "dev@localhost", "name": "Developer"}


def _unauthorized() -> Response:
    return JSONResponse({"error": "Unauthorized"}, status_code=401)


class IdentityMiddleware(BaseHTTPMiddleware):
    """
    Attaches the verified caller to ``request.state.user`` or answers 401.

    The check runs before any other work on the request, so an unauthenticated
    call never touches storage, quotas or the model provider.
    """

    def __init__(self, app):
        super().__init__(app)
        self._request = None  # Lazy-loaded Google Auth transport

    def _get_google_request(self):
        if self._request is None:
            from google.auth.transport import requests as google_requests

            self._request = google_requests.Request()
        return self._request

    def _verify(self, token: str) -> dict:
        from google.oauth2 import id_token

        return id_token.verify_oauth2_token(token, self._get_google_request(), audience=settings.GOOGLE_CLIENT_ID)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in PUBLIC_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        if not settings.AUTH_VERIFY_ENABLED and not settings.is_prod:
            request.state.user = dict(MOCK_USER)
            return await call_next(request)

        authorization = request.headers.get("authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            logger.warning(f"Missing bearer token on {request.method} {request.url.path}")
            return _unauthorized()

        try:
            # Certificate fetch is blocking I/O
            claims = await run_in_threadpool(self._verify, token.strip())
        except ValueError as e:
            logger.warning(f"ID token validation failed: {e}")
            return _unauthorized()

        email = (claims.get("email") or "").lower()
        if not email or claims.get("email_verified") is False:
            logger.warning("ID token has no verified email")
            return _unauthorized()

        allowed = settings.allowed_emails
        if allowed and email not in allowed:
            logger.warning(f"Email not in allow-list: {email}")
            return _unauthorized()

        request.state.user = {"sub": claims.get("sub"), "email": email, "name": claims.get("name")}
        logger.debug(f"Auth successful for user: {email}")
        return await call_next(request)
