# dbproxy/gateway/decoder.py
from __future__ import annotations

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from dbproxy.errors import MalformedRequest
from dbproxy.models.requests import OPERATIONS, OperationRequest

_ADAPTER: TypeAdapter = TypeAdapter(OperationRequest)


def _first_errors(exc: ValidationError, limit: int = 3) -> str:
    parts = []
    for err in exc.errors()[:limit]:
        # drop the union tag ("insert", "update", ...) from the location
        loc = [str(p) for p in err.get("loc", ()) if str(p) not in OPERATIONS]
        where = ".".join(loc)
        msg = err.get("msg", "invalid value")
        parts.append(f"{where}: {msg}" if where else msg)
    return "; ".join(parts)


def parse_body(raw: bytes | str) -> Any:
    """JSON-decode a request body, mapping decode failures to MalformedRequest."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError, UnicodeDecodeError) as e:
        raise MalformedRequest(f"request body is not valid JSON: {e}")


def decode_request(body: Any) -> OperationRequest:
    """
    Shape-check a decoded JSON body and return the typed operation variant.

    Only shape is validated here: table / operation presence, payload type,
    filter operator names, projection syntax and the types of
    select/order/limit/single.
    Authorization is left entirely to the policy engine.
    """
    if not isinstance(body, dict):
        raise MalformedRequest("request body must be a JSON object")

    table = body.get("table")
    if not isinstance(table, str) or not table.strip():
        raise MalformedRequest("'table' (non-empty string) is required")

    # browser builds predating the 'operation' key send 'op'
    op = body.get("operation", body.get("op"))
    if op not in OPERATIONS:
        raise MalformedRequest(
            "'operation' must be one of " + "|".join(OPERATIONS)
        )

    data = body.get("data")
    if data is not None and not isinstance(data, (dict, list)):
        raise MalformedRequest(
            f"'data' must be an object or array of objects, got {type(data).__name__}"
        )

    doc = {k: v for k, v in body.items() if k != "op"}
    doc["operation"] = op
    if op in ("select", "delete"):
        # payload is ignored for reads and deletes
        doc.pop("data", None)

    try:
        req = _ADAPTER.validate_python(doc)
    except ValidationError as e:
        raise MalformedRequest(f"invalid {op} request: {_first_errors(e)}")

    # write results are projected locally, which only understands plain columns
    if op != "select":
        for field in req.projected_fields:
            if field.embedded or "->" in field.column:
                raise MalformedRequest(
                    f"'select' on {op} may only name columns, got '{field.key}'"
                )
    return req
