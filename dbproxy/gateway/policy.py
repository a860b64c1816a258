# dbproxy/gateway/policy.py
"""
Layered, fail-closed authorization for proxied table operations.

Checks run in a fixed order and the first one that objects wins:

  1. table must be readable (every operation, writes included); so must
     every table embedded in the projection or named as a filter/order
     column prefix
  2. insert/update/upsert need a writable table
  3. delete needs a deletable table (others are archived, not removed)
  4. update/delete on filter-required tables need at least one predicate
  5. no payload row may set a protected field

Denial messages name the rule, table and field that failed and nothing else;
the allow-lists themselves are never echoed back to the client.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from dbproxy.config.policy import PolicyConfig
from dbproxy.errors import PolicyViolation
from dbproxy.models.projection import embed_targets, iter_embeds
from dbproxy.models.requests import (
    FILTERED_MUTATIONS,
    WRITE_OPERATIONS,
    OperationRequest,
)


@dataclass(frozen=True)
class Permit:
    request: OperationRequest


@dataclass(frozen=True)
class Deny:
    reason: str
    status: int = 403

    def to_error(self) -> PolicyViolation:
        return PolicyViolation(self.reason, status=self.status)


Decision = Union[Permit, Deny]
_Check = Callable[[OperationRequest], Optional[str]]


class PolicyEngine:
    def __init__(self, config: PolicyConfig):
        self._config = config
        self._checks: List[_Check] = [
            self._check_readable,
            self._check_embedded,
            self._check_writable,
            self._check_deletable,
            self._check_filter_required,
            self._check_protected_fields,
        ]

    @property
    def config(self) -> PolicyConfig:
        return self._config

    def evaluate(self, req: OperationRequest) -> Decision:
        for check in self._checks:
            reason = check(req)
            if reason is not None:
                return Deny(reason)
        return Permit(req)

    # ---- layers ----
    def _check_readable(self, req: OperationRequest) -> Optional[str]:
        if req.table not in self._config.readable_tables:
            return f"Table '{req.table}' not allowed"
        return None

    def _check_embedded(self, req: OperationRequest) -> Optional[str]:
        fields = req.projected_fields
        for embed in iter_embeds(fields):
            if embed.name not in self._config.readable_tables:
                return f"Table '{embed.name}' not allowed"

        # "rel.col" filters/orders reach into an embed; the prefix must be one
        targets = embed_targets(fields)
        for col in req.column_refs():
            for segment in col.split(".")[:-1]:
                if segment.strip() not in targets:
                    return f"Table '{segment.strip()}' not allowed"
        return None

    def _check_writable(self, req: OperationRequest) -> Optional[str]:
        if (
            req.operation in WRITE_OPERATIONS
            and req.table not in self._config.writable_tables
        ):
            return f"Write to '{req.table}' not allowed"
        return None

    def _check_deletable(self, req: OperationRequest) -> Optional[str]:
        if req.operation == "delete" and req.table not in self._config.deletable_tables:
            return f"Delete from '{req.table}' not allowed, use archive pattern"
        return None

    def _check_filter_required(self, req: OperationRequest) -> Optional[str]:
        if (
            req.operation in FILTERED_MUTATIONS
            and req.table in self._config.filter_required_tables
            and req.predicate_count() == 0
        ):
            return (
                f"{req.operation.capitalize()} on '{req.table}' "
                "requires at least one filter"
            )
        return None

    def _check_protected_fields(self, req: OperationRequest) -> Optional[str]:
        if req.operation not in WRITE_OPERATIONS:
            return None
        protected = self._config.protected_for(req.table)
        if not protected:
            return None
        for row in req.rows:
            for field in row:
                if field in protected:
                    return f"Field '{field}' on table '{req.table}' is protected"
        return None
