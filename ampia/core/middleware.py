from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import time

from ampia.services.logger import logger


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every API response"""

    async def dispatch(self, request: Request, call_next):

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=()"
        )

        # HSTS (HTTP Strict Transport Security)
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of API calls"""

    # Paths written to the log at warning level when they fail
    SENSITIVE_PREFIXES = [
        "/api/me/challenges",
        "/api/moderator",
        "/api/payments",
    ]

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        duration_ms = round((time.time() - start_time) * 1000, 2)
        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }

        if response.status_code >= 500 or (
            response.status_code >= 400 and self._is_sensitive(request.url.path)
        ):
            logger.warning(
                f"{request.method} {request.url.path} -> {response.status_code}",
                log_data,
            )
        else:
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code}",
                log_data,
            )

        return response

    def _is_sensitive(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.SENSITIVE_PREFIXES)
