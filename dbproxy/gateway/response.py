# dbproxy/gateway/response.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse, PlainTextResponse

from dbproxy.config.settings import Settings, get_settings
from dbproxy.errors import GatewayError


def cors_headers(settings: Optional[Settings] = None) -> Dict[str, str]:
    s = settings or get_settings()
    return {
        "Access-Control-Allow-Origin": s.CORS_ALLOW_ORIGIN,
        "Access-Control-Allow-Headers": s.CORS_ALLOW_HEADERS,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


def ok(data: Any, settings: Optional[Settings] = None) -> JSONResponse:
    return JSONResponse({"data": data}, status_code=200, headers=cors_headers(settings))


def error(exc: GatewayError, settings: Optional[Settings] = None) -> JSONResponse:
    return JSONResponse(
        {"error": exc.message}, status_code=exc.status, headers=cors_headers(settings)
    )


def preflight(settings: Optional[Settings] = None) -> PlainTextResponse:
    return PlainTextResponse("ok", status_code=200, headers=cors_headers(settings))
