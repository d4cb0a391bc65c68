"""
HTTP middleware for the receipt gateway:
- Security headers on every response
- One access log line per request
- Early rejection of oversized uploads
"""

import time

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

# Allowance for multipart boundaries and the form fields around the file
MULTIPART_OVERHEAD_BYTES = 64 * 1024


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses.

    Headers added:
    - Strict-Transport-Security (HSTS)
    - X-Frame-Options
    - X-Content-Type-Options
    - Referrer-Policy
    - Cross-Origin-Resource-Policy
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cross-Origin-Resource-Policy"] = "same-site"

        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request"""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{client_ip} {request.method} {request.url.path} "
            f"{response.status_code} {duration_ms:.0f}ms"
        )
        return response


class UploadSizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Reject oversized uploads from their Content-Length header, before the
    multipart body is read and spooled.

    The limit is app.state.max_upload_bytes plus room for the multipart
    boundaries and form fields. Requests without Content-Length fall through
    to the size check in the upload route.
    """

    def __init__(self, app, path_suffix: str = "/receipts/upload"):
        super().__init__(app)
        self.path_suffix = path_suffix

    async def dispatch(self, request: Request, call_next):
        if request.method == "POST" and request.url.path.endswith(self.path_suffix):
            limit = getattr(request.app.state, "max_upload_bytes", None)
            declared = request.headers.get("content-length")
            if limit and declared and declared.isdigit() and int(declared) > limit + MULTIPART_OVERHEAD_BYTES:
                logger.warning(f"[UPLOAD] Rejected {declared} byte request body (limit {limit})")
                return JSONResponse(
                    status_code=413,
                    content={"detail": f"Request body exceeds the {limit} byte upload limit"},
                )
        return await call_next(request)
