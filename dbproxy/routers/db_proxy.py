# dbproxy/routers/db_proxy.py
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from dbproxy.gateway import response
from dbproxy.gateway.pipeline import Gateway

logger = logging.getLogger("db.proxy")

router = APIRouter(tags=["db-proxy"])

# Nginx convention for "client closed request"; the caller never sees it.
CLIENT_CLOSED_REQUEST = 499


async def _wait_for_disconnect(request: Request, poll_s: float) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(poll_s)


@router.options("/db-proxy")
async def db_proxy_preflight(request: Request) -> Response:
    gateway: Gateway = request.app.state.gateway
    return response.preflight(gateway.settings)


@router.post("/db-proxy")
async def db_proxy(request: Request) -> Response:
    gateway: Gateway = request.app.state.gateway
    body = await request.body()

    work = asyncio.create_task(gateway.handle(body))
    watcher = asyncio.create_task(
        _wait_for_disconnect(request, gateway.settings.DISCONNECT_POLL_S)
    )
    try:
        done, _ = await asyncio.wait(
            {work, watcher}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        watcher.cancel()

    if work in done:
        return work.result()

    # Caller went away: cancel the in-flight store call instead of orphaning it.
    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    logger.info("db.proxy request cancelled: client disconnected")
    return Response(status_code=CLIENT_CLOSED_REQUEST)
