from __future__ import annotations
import json
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Per-request correlation ID
correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="-")

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # provide %(correlation_id)s to all formatters
        record.correlation_id = correlation_id_ctx.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        # gateway stages pass structured data via logger.info(..., extra={"event": {...}})
        evt = getattr(record, "event", None)
        if isinstance(evt, dict):
            payload.update(evt)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


class EventTextFormatter(logging.Formatter):
    """Text formatter that appends the structured `event` extra, if any."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        evt = getattr(record, "event", None)
        if isinstance(evt, dict):
            line += " " + " ".join(f"{k}={v}" for k, v in evt.items())
        return line


_CONFIGURED = False


def setup_logging(level: Optional[int] = None, *, json_logs: bool = False) -> None:
    """
    Idempotent logging setup that ensures %(correlation_id)s is available in all log lines.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    filt = CorrelationIdFilter()
    root = logging.getLogger()
    root.addFilter(filt)

    formatter: logging.Formatter = (
        JsonFormatter() if json_logs else EventTextFormatter(_TEXT_FORMAT)
    )

    if not root.handlers:
        handler = logging.StreamHandler()
        root.addHandler(handler)
    root.setLevel(level or logging.INFO)

    for h in root.handlers:
        h.addFilter(filt)
        h.setFormatter(formatter)

    # Common FastAPI/Uvicorn loggers
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logging.getLogger(name).addFilter(filt)

    _CONFIGURED = True


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    - Reuses an incoming X-Correlation-ID or generates one (request.state.correlation_id)
    - Logs start/end/errors (start/end gated by log_requests)
    - Adds X-Correlation-ID response header
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self._logger = logging.getLogger("request")
        self._log_requests = log_requests

    async def dispatch(self, request: Request, call_next):
        cid = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
        token = correlation_id_ctx.set(cid)
        request.state.correlation_id = cid

        method = request.method
        path = request.url.path
        client = request.client.host if request.client else "-"
        start = time.perf_counter()

        if self._log_requests:
            self._logger.info(">> %s %s client=%s", method, path, client)

        try:
            response: Response = await call_next(request)
            dur_ms = int((time.perf_counter() - start) * 1000)
            response.headers["X-Correlation-ID"] = cid
            if self._log_requests:
                self._logger.info(
                    "<< %s %s %d %dms", method, path, response.status_code, dur_ms
                )
            return response
        except Exception as e:
            dur_ms = int((time.perf_counter() - start) * 1000)
            # Always log exceptions
            self._logger.exception(
                "!! %s %s error after %dms: %s", method, path, dur_ms, e
            )
            raise
        finally:
            correlation_id_ctx.reset(token)
