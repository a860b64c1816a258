# dbproxy/gateway/query.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from dbproxy.errors import MalformedRequest
from dbproxy.models.requests import (
    DeleteRequest,
    FilterOp,
    InsertRequest,
    OperationRequest,
    OrderSpec,
    SelectRequest,
    UpdateRequest,
    UpsertRequest,
)

# Each supported operator maps to exactly one PostgREST builder method.
# Operator names never reach getattr(); unknown names fail before this point.
_PREDICATES: Dict[FilterOp, Callable[[Any, str, Any], Any]] = {
    FilterOp.EQ: lambda q, col, val: q.eq(col, val),
    FilterOp.NEQ: lambda q, col, val: q.neq(col, val),
    FilterOp.GT: lambda q, col, val: q.gt(col, val),
    FilterOp.GTE: lambda q, col, val: q.gte(col, val),
    FilterOp.LT: lambda q, col, val: q.lt(col, val),
    FilterOp.LTE: lambda q, col, val: q.lte(col, val),
    FilterOp.LIKE: lambda q, col, val: q.like(col, val),
    FilterOp.ILIKE: lambda q, col, val: q.ilike(col, val),
    FilterOp.IS: lambda q, col, val: q.is_(col, val),
    FilterOp.IN: lambda q, col, val: q.in_(col, val),
    FilterOp.CONTAINS: lambda q, col, val: q.contains(col, val),
    FilterOp.OVERLAPS: lambda q, col, val: q.overlaps(col, val),
}


def apply_filters(qh, filters: Dict[str, Dict[str, Any]]):
    for name, preds in (filters or {}).items():
        try:
            apply = _PREDICATES[FilterOp(name)]
        except ValueError:
            raise MalformedRequest(f"unsupported filter operator '{name}'")
        for col, val in preds.items():
            qh = apply(qh, col, val)
    return qh


def apply_order(qh, order: List[OrderSpec]):
    # applied in listed order: first entry is the primary sort key
    for o in order or []:
        qh = qh.order(o.column, desc=not o.ascending)
    return qh


def apply_limit(qh, limit: Optional[int]):
    if isinstance(limit, int) and limit > 0:
        qh = qh.limit(limit)
    return qh


def build_query(store, req: OperationRequest):
    """
    Translate a permitted request into an executable builder on `store`.

    `store` is anything exposing the supabase-py `.table(name)` fluent API.
    The returned builder has not been executed yet.
    """
    table = store.table(req.table)

    if isinstance(req, SelectRequest):
        qh = table.select(req.projection or "*")
        qh = apply_filters(qh, req.filters)
        qh = apply_order(qh, req.order)
        qh = apply_limit(qh, req.limit)
        if req.single:
            qh = qh.single()
        return qh

    if isinstance(req, InsertRequest):
        return table.insert(req.payload)

    if isinstance(req, UpdateRequest):
        if not isinstance(req.payload, dict):
            raise MalformedRequest(
                "update 'data' must be a single object of column values"
            )
        return apply_filters(table.update(req.payload), req.filters)

    if isinstance(req, DeleteRequest):
        return apply_filters(table.delete(), req.filters)

    if isinstance(req, UpsertRequest):
        if req.on_conflict:
            return table.upsert(req.payload, on_conflict=",".join(req.on_conflict))
        return table.upsert(req.payload)

    raise MalformedRequest(f"unsupported operation: {getattr(req, 'operation', None)!r}")
