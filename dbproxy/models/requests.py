# dbproxy/models/requests.py
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    field_validator,
)

from dbproxy.models.projection import ProjectedField, parse_projection


OPERATIONS = ("select", "insert", "update", "delete", "upsert")
WRITE_OPERATIONS = frozenset({"insert", "update", "upsert"})
FILTERED_MUTATIONS = frozenset({"update", "delete"})


class FilterOp(str, Enum):
    """Closed set of predicates a client may attach; nothing else is dispatched."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IS = "is"
    IN = "in"
    CONTAINS = "contains"
    OVERLAPS = "overlaps"


# op name -> {column: value}; insertion order is preserved end to end
Filters = Dict[str, Dict[str, Any]]
Row = Dict[str, Any]
Payload = Union[Row, List[Row]]


def _check_filters(v: Any) -> Any:
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise ValueError("filters must be an object of {operator: {column: value}}")
    known = {op.value for op in FilterOp}
    for name, preds in v.items():
        if name not in known:
            raise ValueError(f"unsupported filter operator '{name}'")
        if not isinstance(preds, dict):
            raise ValueError(f"filters.{name} must be an object of {{column: value}}")
        for col, val in preds.items():
            if not col.strip():
                raise ValueError(f"filters.{name} has an empty column name")
            if name == FilterOp.IN.value and not isinstance(val, list):
                raise ValueError(f"filters.in.{col} requires a list value")
            if name in (FilterOp.CONTAINS.value, FilterOp.OVERLAPS.value) and not (
                isinstance(val, (list, dict, str))
            ):
                raise ValueError(f"filters.{name}.{col} requires a list, object or string")
    return v


def _check_payload(v: Any) -> Any:
    if isinstance(v, list) and not v:
        raise ValueError("data must not be an empty array")
    return v


class OrderSpec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    column: str = Field(min_length=1)
    ascending: StrictBool = True


class _OperationBase(BaseModel):
    # Unknown / irrelevant keys are dropped by the variant, never forwarded.
    model_config = ConfigDict(frozen=True, extra="ignore")

    table: str = Field(min_length=1)
    projection: Optional[str] = Field(default=None, alias="select")

    @field_validator("projection")
    @classmethod
    def _projection_shape(cls, v: Optional[str]) -> Optional[str]:
        parse_projection(v)
        return v

    @property
    def projected_fields(self) -> Tuple[ProjectedField, ...]:
        return parse_projection(self.projection)

    def column_refs(self) -> List[str]:
        """Columns named by filters and ordering, in request order."""
        cols = [c for preds in getattr(self, "filters", {}).values() for c in preds]
        cols += [o.column for o in getattr(self, "order", [])]
        return cols

    @property
    def rows(self) -> List[Row]:
        """Payload flattened to a list of rows (empty when there is no payload)."""
        payload = getattr(self, "payload", None)
        if payload is None:
            return []
        return [payload] if isinstance(payload, dict) else list(payload)


class _Filtered(BaseModel):
    filters: Filters = Field(default_factory=dict)

    @field_validator("filters", mode="before")
    @classmethod
    def _filters_shape(cls, v: Any) -> Any:
        return _check_filters(v)

    def predicate_count(self) -> int:
        return sum(len(preds) for preds in self.filters.values())


class _WithPayload(BaseModel):
    payload: Payload = Field(alias="data")

    @field_validator("payload", mode="before")
    @classmethod
    def _payload_shape(cls, v: Any) -> Any:
        return _check_payload(v)


class SelectRequest(_Filtered, _OperationBase):
    operation: Literal["select"] = "select"
    order: List[OrderSpec] = Field(default_factory=list)
    limit: Optional[Annotated[StrictInt, Field(ge=0)]] = None
    single: StrictBool = False

    @field_validator("order", mode="before")
    @classmethod
    def _order_none(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("limit")
    @classmethod
    def _limit_zero(cls, v: Optional[int]) -> Optional[int]:
        # 0 means "no limit", as older browser builds send it
        return v or None

    @field_validator("single", mode="before")
    @classmethod
    def _single_none(cls, v: Any) -> Any:
        return False if v is None else v


class InsertRequest(_WithPayload, _OperationBase):
    operation: Literal["insert"] = "insert"


class UpdateRequest(_WithPayload, _Filtered, _OperationBase):
    operation: Literal["update"] = "update"


class DeleteRequest(_Filtered, _OperationBase):
    operation: Literal["delete"] = "delete"


class UpsertRequest(_WithPayload, _OperationBase):
    operation: Literal["upsert"] = "upsert"
    on_conflict: Optional[List[str]] = None

    @field_validator("on_conflict", mode="before")
    @classmethod
    def _conflict_csv(cls, v: Any) -> Any:
        # accept "a,b" as well as ["a", "b"]
        if isinstance(v, str):
            v = [c.strip() for c in v.split(",")]
        if isinstance(v, list):
            if not v or not all(isinstance(c, str) and c.strip() for c in v):
                raise ValueError("on_conflict must list one or more column names")
        return v


OperationRequest = Annotated[
    Union[SelectRequest, InsertRequest, UpdateRequest, DeleteRequest, UpsertRequest],
    Field(discriminator="operation"),
]
