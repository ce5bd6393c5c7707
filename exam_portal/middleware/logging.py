import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()
        method, path = request.method, request.url.path

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "[%s] %s %s - ERROR (%.2f ms): %s",
                request_id, method, path, (time.time() - start_time) * 1000, exc,
            )
            raise

        status_code = response.status_code
        level = logging.WARNING if status_code >= 400 else logging.INFO
        logger.log(level, "[%s] %s %s - %s (%.2f ms)",
                   request_id, method, path, status_code, (time.time() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        return response
