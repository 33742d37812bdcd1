import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from coopgov.lib.logger import configure_logger

logger = configure_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log one structured line per HTTP request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response: Response = await call_next(request)
        process_time = time.time() - start_time

        request_info = {
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else "unknown",
        }
        if request.query_params:
            request_info["query_params"] = dict(request.query_params)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "request": request_info,
                "response": {
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                },
                "event_type": "http_request",
            },
        )
        return response
