"""
Structured Logging

Access logging for the analytics API plus the root logging setup. Every
record carries the id of the request it was emitted under, so a recording
can be followed from the access line through the Event Store and Aggregate
Counter logs.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from contextvars import ContextVar
from datetime import datetime, timezone

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Extra attributes copied into JSON output when a log call passes them
CONTEXT_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "error_code",
    "kind",
    "subject_id",
    "owner_id",
    "event_id",
)


class RequestIdFilter(logging.Filter):
    """Stamp every record with the current request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update({key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)})
        return json.dumps(log_data, default=str)


def client_ip_for(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Emit one access record per request and echo the request id back.

    Health check and scrape endpoints are not logged. Requests slower than
    ``slow_request_ms`` are logged at WARNING even when they succeed.
    """

    def __init__(
        self,
        app: ASGIApp,
        logger_name: str = "projectshelf.access",
        quiet_paths: Iterable[str] = ("/health", "/ready", "/metrics"),
        slow_request_ms: float = 1000.0,
    ):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)
        self.quiet_paths = frozenset(quiet_paths)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        token = request_id_var.set(request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            self._log_request(request, 500, start_time, error=str(e))
            raise
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        self._log_request(request, response.status_code, start_time, request_id=request_id)
        return response

    def _log_request(
        self,
        request: Request,
        status_code: int,
        start_time: float,
        request_id: str | None = None,
        error: str | None = None,
    ) -> None:
        if request.url.path in self.quiet_paths:
            return

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        if status_code >= 500:
            log_level = logging.ERROR
        elif status_code >= 400 or duration_ms > self.slow_request_ms:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        message = f"{request.method} {request.url.path} - {status_code} ({duration_ms:.2f}ms)"
        if error:
            message += f" - Error: {error}"

        self.logger.log(
            log_level,
            message,
            extra={
                "request_id": request_id or request_id_var.get(""),
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "client_ip": client_ip_for(request),
            },
        )


def setup_structured_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure root logging for the service.

    Args:
        log_level: Level for the projectshelf loggers (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines instead of the plain text format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"))
    handler.addFilter(RequestIdFilter())
    root_logger.addHandler(handler)

    # Library chatter stays at WARNING whatever the service level is
    for logger_name in ("uvicorn", "uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    logging.getLogger("projectshelf").setLevel(getattr(logging, log_level.upper()))
