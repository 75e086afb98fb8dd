"""
Translate search filters into a parameterized WHERE clause for certificates_stg.

Predicates are collected as (column, operator, values) objects and rendered in
one pass at the end. Each bind name is numbered from the number of values
already rendered, so placeholders ``:p1 .. :pN`` are always contiguous and line
up with ``BuiltQuery.params`` however many predicates are active.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from epc_api.services.errors import InvalidFilterError
from epc_api.utils.features import normalize_postcode

# Closed lookup table: label -> literal predicate (no bind values).
FLOOR_AREA_CONDITIONS: Dict[str, str] = {
    "1-55m²": "total_floor_area BETWEEN 1 AND 55",
    "55-70m²": "total_floor_area BETWEEN 55 AND 70",
    "70-85m²": "total_floor_area BETWEEN 70 AND 85",
    "85-110m²": "total_floor_area BETWEEN 85 AND 110",
    "110m+": "total_floor_area > 110",
    "unknown": "(total_floor_area IS NULL OR total_floor_area = 0)",
}

_OPERATORS = ("=", ">", ">=", "<", "in", "ilike", "literal")


@dataclass(frozen=True)
class Predicate:
    column: str
    operator: str
    values: Tuple[Any, ...] = ()
    literal: Optional[str] = None

    def __post_init__(self) -> None:
        if self.operator not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {self.operator}")
        if self.operator == "literal":
            if not self.literal or self.values:
                raise ValueError("literal predicates take SQL text and no values")
        elif self.operator == "in":
            if not self.values:
                raise ValueError("in-list must contain at least one item")
        elif len(self.values) != 1:
            raise ValueError(f"{self.operator!r} takes exactly one value")

    def render(self, first_index: int) -> str:
        """Render SQL with bind names starting at ``:p{first_index}``."""
        if self.operator == "literal":
            return self.literal  # type: ignore[return-value]
        names = [f":p{first_index + i}" for i in range(len(self.values))]
        if self.operator == "in":
            return f"{self.column} IN ({', '.join(names)})"
        if self.operator == "ilike":
            return f"LOWER({self.column}) LIKE {names[0]} ESCAPE '\\'"
        return f"{self.column} {self.operator} {names[0]}"


@dataclass(frozen=True)
class BuiltQuery:
    where_sql: str
    params: List[Any] = field(default_factory=list)

    @property
    def where_clause(self) -> str:
        return f"WHERE {self.where_sql}" if self.where_sql else ""

    def bind_params(self) -> Dict[str, Any]:
        return {f"p{i}": v for i, v in enumerate(self.params, start=1)}


class QueryBuilder:
    def __init__(self) -> None:
        self._predicates: List[Predicate] = []

    def __len__(self) -> int:
        return len(self._predicates)

    def add(self, column: str, operator: str, *values: Any) -> "QueryBuilder":
        self._predicates.append(Predicate(column, operator, tuple(values)))
        return self

    def add_literal(self, column: str, sql: str) -> "QueryBuilder":
        self._predicates.append(Predicate(column, "literal", literal=sql))
        return self

    def build(self) -> BuiltQuery:
        parts: List[str] = []
        params: List[Any] = []
        for predicate in self._predicates:
            parts.append(predicate.render(len(params) + 1))
            params.extend(predicate.values)
        return BuiltQuery(where_sql=" AND ".join(parts), params=params)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_where(filters: Mapping[str, Any], cursor: Optional[str] = None) -> BuiltQuery:
    """
    Build the WHERE clause for a search filter.

    ``filters`` uses the snake_case field names of SearchFilter; every key is
    optional. ``cursor`` falls back to ``filters["cursor"]``.

    The postcode rule is a range, not a true prefix match: ``[pc, pc + "Z")``
    covers every postcode starting with ``pc`` only because no postcode
    character sorts above "Z".
    """
    qb = QueryBuilder()

    postcode = normalize_postcode(filters.get("postcode"))
    if postcode:
        qb.add("postcode", ">=", postcode)
        qb.add("postcode", "<", postcode + "Z")

    rating = filters.get("rating")
    if rating:
        qb.add("current_energy_rating", "=", rating)

    fuel = filters.get("fuel")
    if fuel:
        qb.add("main_fuel", "ilike", f"%{_escape_like(str(fuel).lower())}%")

    property_types = [p for p in (filters.get("property_type") or []) if p]
    if property_types:
        qb.add("property_type", "in", *property_types)

    for column in ("local_authority", "constituency", "uprn"):
        value = filters.get(column)
        if value:
            qb.add(column, "=", value)

    floor_area = filters.get("floor_area")
    if floor_area:
        condition = FLOOR_AREA_CONDITIONS.get(floor_area)
        if condition is None:
            raise InvalidFilterError(f"Unknown floor area range: {floor_area!r}")
        qb.add_literal("total_floor_area", condition)

    cursor = cursor if cursor is not None else filters.get("cursor")
    if cursor:
        qb.add("lmk_key", ">", cursor)

    return qb.build()
