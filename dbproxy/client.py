# dbproxy/client.py
"""
Chained query builder that mirrors the supabase-py table API but sends every
request to the db proxy instead of hitting PostgREST directly.

    client = ProxyClient("https://example.org/db-proxy")
    res = client.table("tasks").select("id,title").eq("status", "open").limit(5).execute()
    if res.error:
        ...
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger("db.proxy.client")


@dataclass
class ProxyResponse:
    data: Any = None
    error: Optional[str] = None


class ProxyQueryBuilder:
    def __init__(self, client: "ProxyClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._filters: Dict[str, Dict[str, Any]] = {}
        self._data: Any = None
        self._select = "*"
        self._order: List[Dict[str, Any]] = []
        self._limit: Optional[int] = None
        self._single = False
        self._on_conflict: Optional[str] = None

    # --- operation setters ---
    def select(self, columns: str = "*") -> "ProxyQueryBuilder":
        self._select = columns
        self._op = "select"
        return self

    def insert(self, data: Any) -> "ProxyQueryBuilder":
        self._op, self._data = "insert", data
        return self

    def update(self, data: Dict[str, Any]) -> "ProxyQueryBuilder":
        self._op, self._data = "update", data
        return self

    def delete(self) -> "ProxyQueryBuilder":
        self._op = "delete"
        return self

    def upsert(self, data: Any, on_conflict: Optional[str] = None) -> "ProxyQueryBuilder":
        self._op, self._data, self._on_conflict = "upsert", data, on_conflict
        return self

    # --- filters ---
    def _filter(self, op: str, column: str, value: Any) -> "ProxyQueryBuilder":
        self._filters.setdefault(op, {})[column] = value
        return self

    def eq(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("eq", column, value)

    def neq(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("neq", column, value)

    def gt(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("gt", column, value)

    def gte(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("gte", column, value)

    def lt(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("lt", column, value)

    def lte(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("lte", column, value)

    def like(self, column: str, pattern: str) -> "ProxyQueryBuilder":
        return self._filter("like", column, pattern)

    def ilike(self, column: str, pattern: str) -> "ProxyQueryBuilder":
        return self._filter("ilike", column, pattern)

    def is_(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("is", column, value)

    def in_(self, column: str, values: List[Any]) -> "ProxyQueryBuilder":
        return self._filter("in", column, list(values))

    def contains(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("contains", column, value)

    def overlaps(self, column: str, value: Any) -> "ProxyQueryBuilder":
        return self._filter("overlaps", column, value)

    # --- modifiers ---
    def order(self, column: str, *, ascending: bool = True) -> "ProxyQueryBuilder":
        self._order.append({"column": column, "ascending": ascending})
        return self

    def limit(self, n: int) -> "ProxyQueryBuilder":
        self._limit = n
        return self

    def single(self) -> "ProxyQueryBuilder":
        self._single = True
        return self

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"table": self._table, "operation": self._op}
        if self._filters:
            payload["filters"] = self._filters
        if self._data is not None:
            payload["data"] = self._data
        if self._select and self._select != "*":
            payload["select"] = self._select
        if self._order:
            payload["order"] = self._order
        if self._limit is not None:
            payload["limit"] = self._limit
        if self._single:
            payload["single"] = True
        if self._on_conflict:
            payload["on_conflict"] = self._on_conflict
        return payload

    def execute(self) -> ProxyResponse:
        return self._client.send(self.to_payload())


class ProxyClient:
    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._session = session or requests.Session()

    def table(self, name: str) -> ProxyQueryBuilder:
        return ProxyQueryBuilder(self, name)

    from_ = table

    def send(self, payload: Dict[str, Any]) -> ProxyResponse:
        """POST one request; transport and decode failures come back as `error`."""
        try:
            resp = self._session.post(
                self.url, json=payload, headers=self.headers, timeout=self.timeout
            )
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("db proxy call failed: %s", e)
            return ProxyResponse(error=str(e))

        if not isinstance(body, dict):
            return ProxyResponse(error=f"unexpected response body (HTTP {resp.status_code})")
        if body.get("error"):
            return ProxyResponse(error=str(body["error"]))
        return ProxyResponse(data=body.get("data"))
