from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from dbproxy.config.policy import PolicyConfig, get_policy
from dbproxy.config.settings import Settings, get_settings
from dbproxy.errors import InternalError
from dbproxy.gateway import response
from dbproxy.gateway.executor import StoreFactory
from dbproxy.gateway.pipeline import Gateway
from dbproxy.logging_utils import RequestLoggingMiddleware, setup_logging
from dbproxy.routers import db_proxy as db_proxy_router

logger = logging.getLogger("dbproxy")


def create_app(
    *,
    settings: Optional[Settings] = None,
    policy: Optional[PolicyConfig] = None,
    store_factory: Optional[StoreFactory] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(json_logs=settings.LOG_JSON)

    # Policy is loaded (and validated) once, before the first request.
    policy = policy or get_policy()

    app = FastAPI(title="DB Proxy", version=settings.VERSION)
    app.state.gateway = Gateway(policy, store_factory=store_factory, settings=settings)

    app.add_middleware(RequestLoggingMiddleware, log_requests=settings.LOG_REQUESTS)

    # ---------------------------
    # Health / version
    # ---------------------------
    @app.get("/health", response_class=PlainTextResponse)
    async def health_plain() -> str:
        return "ok"

    @app.get("/version", response_class=PlainTextResponse)
    async def version_plain() -> str:
        return settings.VERSION

    app.include_router(db_proxy_router.router)

    # ---------------------------
    # Global error handler
    # ---------------------------
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        cid = getattr(request.state, "correlation_id", "-")
        logger.error("unhandled error (cid=%s): %s", cid, exc)
        return response.error(InternalError(str(exc)), settings)

    return app
