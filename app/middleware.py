import re
import time
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .core.config import MIB
from .exceptions import create_error_response

logger = logging.getLogger(__name__)

UPLOAD_PATH = re.compile(r"^/files/upload(/.*)?$")
DOWNLOAD_PATH = re.compile(r"^/files/[^/]+/download$")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client limits on upload and download endpoints.

    The limiter itself lives on app.state so one process shares one window
    (or every process shares Redis).
    """

    def _bucket(self, request: Request):
        settings = request.app.state.settings
        if request.method == "POST" and UPLOAD_PATH.match(request.url.path):
            return "upload", settings.RATE_LIMIT_UPLOADS
        if request.method == "GET" and DOWNLOAD_PATH.match(request.url.path):
            return "download", settings.RATE_LIMIT_DOWNLOADS
        return None, None

    async def dispatch(self, request: Request, call_next):
        limiter = getattr(request.app.state, "rate_limiter", None)
        bucket, limit = self._bucket(request)
        if limiter is None or bucket is None:
            return await call_next(request)

        client_ip = _client_ip(request)
        window = request.app.state.settings.RATE_LIMIT_WINDOW_SEC
        decision = limiter.hit(f"{bucket}:{client_ip}", limit, window)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {bucket} from IP: {client_ip}")
            return JSONResponse(
                status_code=429,
                content=create_error_response(f"Too many {bucket} requests, please try again later", 429, "RATE_LIMIT_EXCEEDED"),
                headers={"Retry-After": str(window), "X-RateLimit-Limit": str(limit), "X-RateLimit-Remaining": "0"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response

class SecurityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Add security headers
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Stored files are served as-is; never let them run script in our origin
        if DOWNLOAD_PATH.match(request.url.path):
            response.headers["Content-Security-Policy"] = "default-src 'none'; img-src 'self'; style-src 'unsafe-inline'; sandbox"

        return response

class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        logger.info(f"Request: {request.method} {request.url.path} from {_client_ip(request)}")

        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(f"Response: {request.method} {request.url.path} {response.status_code} in {duration:.3f}s")

        return response

class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled error: {str(e)}", exc_info=True)
            debug = request.app.state.settings.DEBUG
            message = f"Internal server error: {str(e)}" if debug else "Internal server error"
            return JSONResponse(status_code=500, content=create_error_response(message, 500, "INTERNAL_ERROR"))

class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Enforce a hard cap on request size using Content-Length when available
        settings = request.app.state.settings
        # Multipart framing adds a little on top of the files themselves
        cap = settings.MAX_FILE_SIZE * settings.MAX_FILES_PER_REQUEST + MIB
        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                size = int(content_length)
            except ValueError:
                # Malformed header; downstream file checks still apply
                size = 0
            if size > cap:
                return JSONResponse(
                    status_code=413,
                    content=create_error_response("Request entity too large", 413, "PAYLOAD_TOO_LARGE"),
                )
        return await call_next(request)
