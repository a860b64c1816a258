# dbproxy/config/policy.py
"""
Table-level authorization policy for the database proxy.

The policy is loaded once per process and never mutated afterwards, so every
request handler can read it concurrently without locking. Anything not listed
here is denied: extending what the browser may touch means adding an entry to
policy.json (or the file named by POLICY_PATH), never removing one.
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dbproxy.config.settings import get_settings

logger = logging.getLogger("db.policy")

DEFAULT_POLICY_PATH = Path(__file__).with_name("policy.json")

_EMPTY: FrozenSet[str] = frozenset()


class PolicyConfig(BaseModel):
    """Allow-lists consulted by the policy engine, in evaluation order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    readable_tables: FrozenSet[str] = Field(default_factory=frozenset)
    writable_tables: FrozenSet[str] = Field(default_factory=frozenset)
    deletable_tables: FrozenSet[str] = Field(default_factory=frozenset)
    filter_required_tables: FrozenSet[str] = Field(default_factory=frozenset)
    protected_fields: Mapping[str, FrozenSet[str]] = Field(
        default_factory=dict, validate_default=True
    )

    @field_validator(
        "readable_tables",
        "writable_tables",
        "deletable_tables",
        "filter_required_tables",
    )
    @classmethod
    def _no_blank_names(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        if any(not name.strip() for name in v):
            raise ValueError("table names must be non-empty strings")
        return v

    @field_validator("protected_fields", mode="after")
    @classmethod
    def _freeze_protected(
        cls, v: Mapping[str, FrozenSet[str]]
    ) -> Mapping[str, FrozenSet[str]]:
        for table, fields in v.items():
            if not table.strip() or any(not f.strip() for f in fields):
                raise ValueError("protected table/field names must be non-empty")
        return MappingProxyType({t: frozenset(f) for t, f in v.items()})

    @model_validator(mode="after")
    def _grants_require_read(self) -> "PolicyConfig":
        # Every operation is gated on readability first, so a write/delete grant
        # on an unreadable table could never take effect.
        for name in ("writable_tables", "deletable_tables"):
            orphans = getattr(self, name) - self.readable_tables
            if orphans:
                raise ValueError(
                    f"{name} must be a subset of readable_tables "
                    f"(not readable: {', '.join(sorted(orphans))})"
                )
        return self

    def protected_for(self, table: str) -> FrozenSet[str]:
        return self.protected_fields.get(table, _EMPTY)


def load_policy(path: Optional[str | Path] = None) -> PolicyConfig:
    """Read and validate a policy document. Raises on missing file or bad shape."""
    src = Path(path) if path else DEFAULT_POLICY_PATH
    with open(src, "r", encoding="utf-8") as f:
        raw: Any = json.load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"policy file {src} must contain a JSON object")
    # "_comment" style keys are allowed for documentation inside the file
    doc = {k: v for k, v in raw.items() if not k.startswith("_")}
    policy = PolicyConfig.model_validate(doc)
    logger.info(
        "policy loaded from %s: %d readable, %d writable, %d deletable, "
        "%d filter-required, %d with protected fields",
        src,
        len(policy.readable_tables),
        len(policy.writable_tables),
        len(policy.deletable_tables),
        len(policy.filter_required_tables),
        len(policy.protected_fields),
    )
    return policy


@lru_cache
def get_policy() -> PolicyConfig:
    return load_policy(get_settings().POLICY_PATH)
