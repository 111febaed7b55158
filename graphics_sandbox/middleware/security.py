"""Security headers and request logging middleware for the Graphics Sandbox API."""

# Standard library imports
import time
from typing import Callable

# Third-party imports
import structlog
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

# Local application imports
from ..config import settings
from ..utils.id_generator import generate_request_id

logger = structlog.get_logger(__name__)


class SecurityMiddleware:
    """Adds security headers and rejects unsupported API content types."""

    def __init__(self, app: Callable):
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        """Process request through security middleware."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)

        # Helper to add security headers to a response message
        def add_security_headers(message):
            if message["type"] == "http.response.start":
                headers = dict(message.get("headers", []))
                path = scope.get("path", "")

                security_headers = {
                    b"x-content-type-options": b"nosniff",
                    b"referrer-policy": b"strict-origin-when-cross-origin",
                }
                # The stream client is embedded in a frame of the UI page
                if not path.startswith("/session/"):
                    security_headers[b"x-frame-options"] = b"SAMEORIGIN"

                for key, value in security_headers.items():
                    headers[key] = value

                message["headers"] = list(headers.items())

        # Wrapper to intercept and add headers to any response
        async def send_wrapper(message):
            add_security_headers(message)
            await send(message)

        try:
            self._validate_request(request)
        except HTTPException as e:
            response = JSONResponse(
                status_code=e.status_code,
                content={
                    "success": False,
                    "error": e.detail,
                    "error_type": "validation",
                    "request_id": generate_request_id(),
                    "timestamp": time.time(),
                },
            )
            await response(scope, receive, send_wrapper)
            return

        await self.app(scope, receive, send_wrapper)

    def _validate_request(self, request: Request):
        """Only JSON bodies are accepted on the session API."""
        if request.method == "POST" and request.url.path.startswith("/api/"):
            content_type = request.headers.get("content-type", "")
            if content_type and "application/json" not in content_type.lower():
                raise HTTPException(
                    status_code=415, detail=f"Unsupported content type: {content_type}"
                )


class RequestLoggingMiddleware:
    """Simplified request logging middleware."""

    def __init__(self, app: Callable):
        self.app = app
        self.health_logged = False

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        """Log request information."""
        if scope["type"] != "http" or not settings.enable_access_logs:
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        start_time = time.time()

        # Skip repeated health check logging
        skip_logging = request.url.path == "/health" and self.health_logged
        if request.url.path == "/health" and not self.health_logged:
            self.health_logged = True

        response_status = None

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            if not skip_logging:
                logger.error(
                    "Request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                )
            raise
        finally:
            if not skip_logging:
                duration = time.time() - start_time
                log_kwargs = dict(
                    method=request.method,
                    path=request.url.path,
                    status=response_status,
                    duration_ms=round(duration * 1000, 2),
                )
                if response_status and response_status >= 500:
                    logger.error("Request failed", **log_kwargs)
                elif response_status and response_status >= 400:
                    logger.warning("Request error", **log_kwargs)
                else:
                    logger.debug("Request processed", **log_kwargs)
