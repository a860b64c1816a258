# dbproxy/gateway/executor.py
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from postgrest.exceptions import APIError

from dbproxy.errors import InternalError, StoreError
from dbproxy.gateway.policy import Permit
from dbproxy.gateway.query import build_query
from dbproxy.models.projection import parse_projection
from dbproxy.models.requests import SelectRequest
from dbproxy.services.supabase_service import get_service_client

logger = logging.getLogger("db.proxy")

StoreFactory = Callable[[], Awaitable[Any]]

# Common Postgres error codes -> readable prefixes
_PG_CODE_PREFIX = {
    "23505": "unique violation",
    "23503": "foreign key violation",
    "23502": "not-null violation",
    "22P02": "invalid input",
    "42703": "invalid column",
    "21000": "unsafe write",
    "23514": "check violation",
}


def _api_error_parts(e: APIError) -> tuple[Optional[str], str]:
    """Normalize a PostgREST error into (code, message); payload can be dict or string."""
    code = getattr(e, "code", None)
    msg = getattr(e, "message", None)
    if msg:
        return code, str(msg)

    first = e.args[0] if getattr(e, "args", None) else None
    if isinstance(first, dict):
        err_obj = first
    elif isinstance(first, str):
        try:
            parsed = json.loads(first)
            err_obj = parsed if isinstance(parsed, dict) else {"message": first}
        except ValueError:
            err_obj = {"message": first}
    else:
        err_obj = {"message": str(e)}
    return err_obj.get("code") or code, str(err_obj.get("message") or e)


def store_error_message(e: APIError) -> str:
    code, msg = _api_error_parts(e)
    prefix = _PG_CODE_PREFIX.get(code or "")
    return f"{prefix}: {msg}" if prefix else msg


def project_rows(rows: Any, select_csv: Optional[str]) -> Any:
    """Client-side projection for write results (PostgREST returns full rows).

    Handles plain, aliased (``alias:col``) and cast (``col::text``) columns;
    the decoder refuses anything richer on writes.
    """
    if not isinstance(rows, list) or not rows:
        return rows
    fields = parse_projection(select_csv)
    if not fields:
        return rows
    keep_all = any(f.column == "*" for f in fields)
    if keep_all and all(f.alias is None for f in fields):
        return rows
    out: List[Any] = []
    for r in rows:
        if not isinstance(r, dict):
            out.append(r)
            continue
        proj: Dict[str, Any] = dict(r) if keep_all else {}
        for f in fields:
            if f.column != "*":
                proj[f.key] = r.get(f.column)
        out.append(proj)
    return out


class Executor:
    """
    Runs permitted queries with the elevated store credential.

    The only way in is execute(Permit): there is no entry point that accepts a
    bare request, so the service-role client is never reached without a
    policy decision.
    """

    def __init__(
        self,
        store_factory: Optional[StoreFactory] = None,
        *,
        timeout_s: Optional[float] = None,
    ):
        self._store_factory = store_factory or get_service_client
        self._timeout_s = timeout_s

    async def execute(self, permit: Permit) -> Any:
        if not isinstance(permit, Permit):
            raise InternalError("refusing to execute a request without a policy permit")
        req = permit.request
        t0 = time.perf_counter()

        store = await self._store_factory()
        builder = build_query(store, req)
        try:
            if self._timeout_s and self._timeout_s > 0:
                resp = await asyncio.wait_for(builder.execute(), self._timeout_s)
            else:
                resp = await builder.execute()
        except APIError as e:
            msg = store_error_message(e)
            logger.warning(
                "db.proxy",
                extra={
                    "event": {
                        "action": "store_error",
                        "table": req.table,
                        "operation": req.operation,
                        "error": msg,
                    }
                },
            )
            raise StoreError(msg)
        except asyncio.TimeoutError:
            raise InternalError(
                f"store call on '{req.table}' timed out after {self._timeout_s}s"
            )

        data = getattr(resp, "data", None)
        if not isinstance(req, SelectRequest):
            data = project_rows(data, req.projection)

        logger.info(
            "db.proxy",
            extra={
                "event": {
                    "action": "success",
                    "table": req.table,
                    "operation": req.operation,
                    "rows": len(data) if isinstance(data, list) else int(data is not None),
                    "duration_ms": int((time.perf_counter() - t0) * 1000),
                }
            },
        )
        return data
