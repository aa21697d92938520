"""A chainable SQL SELECT builder with numbered ``$n`` placeholders."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

log = logging.getLogger(__name__)

_DIRECTIONS = frozenset({"ASC", "DESC"})
_STAT_FUNCTIONS = {"min": "min", "max": "max", "average": "avg", "sum": "sum"}
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class QueryError(Exception):
    """Raised when a query is malformed or the database reports a failure."""


@dataclass
class QueryResult:
    """Rows returned by the database for one statement."""

    columns: tuple[str, ...] = ()
    rows: list[tuple[Any, ...]] = field(default_factory=list)
    ok: bool = True
    error: str = ""

    def __len__(self) -> int:
        return len(self.rows)

    def value(self, row: int, column: int | str) -> Any:
        """Value at ``row`` in ``column``, given by index or by name."""
        if isinstance(column, str):
            try:
                column = self.columns.index(column)
            except ValueError as exc:
                raise QueryError(f"no such column: {column}") from exc
        return self.rows[row][column]


@dataclass
class StatResult:
    """Outcome of an aggregate such as ``min`` or ``average``."""

    stat: str
    value: str | None = None
    type: str | None = None


class Executor(Protocol):
    def exec_params(self, sql: str, params: Sequence[Any]) -> QueryResult: ...


def param_count(query: str) -> int:
    """Number of ``$`` placeholders in ``query``."""
    return query.count("$")


def _atoi(value: Any) -> int:
    match = _LEADING_INT.match(str(value)) if value is not None else None
    return int(match.group(1)) if match else 0


@dataclass
class Query:
    """Builds and runs a SELECT against one table."""

    table_name: str
    db: Executor | None = None
    sql: str | None = field(default=None, init=False)
    params: list[Any] = field(default_factory=list, init=False)
    select_conditions: list[str] = field(default_factory=list, init=False)
    where_conditions: list[str] = field(default_factory=list, init=False)
    order_conditions: list[str] = field(default_factory=list, init=False)
    having_conditions: list[str] = field(default_factory=list, init=False)
    limit_condition: str = field(default="", init=False)
    offset_condition: str = field(default="", init=False)
    joins_condition: str = field(default="", init=False)
    group_condition: str = field(default="", init=False)
    distinct_condition: bool = field(default=False, init=False)

    def _number(self, conditions: str, args: Sequence[Any]) -> str:
        expected = param_count(conditions)
        if len(args) != expected:
            raise QueryError(
                f"{conditions!r} expects {expected} parameter(s), got {len(args)}"
            )
        head, *rest = conditions.split("$")
        start = len(self.params) + 1
        numbered = head + "".join(
            f"${start + index}{part}" for index, part in enumerate(rest)
        )
        self.params.extend(args)
        return numbered

    def select(self, column: str) -> Query:
        self.select_conditions.append(column)
        return self

    def where(self, conditions: str, *args: Any) -> Query:
        """Add a condition joined with AND; each ``$`` takes one of ``args``."""
        self.where_conditions.append(self._number(conditions, args))
        return self

    def where_in(self, column: str, include: bool, values: Sequence[Any]) -> Query:
        start = len(self.params) + 1
        placeholders = ",".join(f"${start + index}" for index in range(len(values)))
        operator = "IN" if include else "NOT IN"
        self.params.extend(values)
        self.where_conditions.append(f"{column} {operator} ({placeholders})")
        return self

    def order(self, column: str, direction: str) -> Query:
        direction = direction.upper()
        if direction not in _DIRECTIONS:
            raise QueryError(f"Invalid order direction: {direction}")
        self.order_conditions.append(f"{column} {direction}")
        return self

    def limit(self, limit: int) -> Query:
        self.limit_condition = str(int(limit))
        return self

    def offset(self, offset: int) -> Query:
        self.offset_condition = str(int(offset))
        return self

    def group(self, condition: str) -> Query:
        self.group_condition = condition
        return self

    def having(self, conditions: str, *args: Any) -> Query:
        self.having_conditions.append(self._number(conditions, args))
        return self

    def joins(self, condition: str) -> Query:
        self.joins_condition = condition
        return self

    def distinct(self) -> Query:
        self.distinct_condition = True
        return self

    def to_sql(self) -> str:
        """Render the statement; the text is also kept in ``self.sql``."""
        columns = ", ".join(self.select_conditions) or "*"
        keyword = "SELECT DISTINCT" if self.distinct_condition else "SELECT"
        parts = [f"{keyword} {columns}", f" FROM {self.table_name}"]
        if self.joins_condition:
            parts.append(f" {self.joins_condition}")
        if self.where_conditions:
            parts.append(" WHERE " + " AND ".join(self.where_conditions))
        if self.group_condition:
            parts.append(f" GROUP BY {self.group_condition}")
        if self.having_conditions:
            parts.append(" HAVING " + " AND ".join(self.having_conditions))
        if self.limit_condition:
            parts.append(f" LIMIT {self.limit_condition}")
        if self.offset_condition:
            parts.append(f" OFFSET {self.offset_condition}")
        if self.order_conditions:
            parts.append(" ORDER BY " + ", ".join(self.order_conditions))
        self.sql = "".join(parts)
        return self.sql

    def _execute(self) -> QueryResult:
        if self.db is None:
            raise QueryError("query has no database to run against")
        return self.db.exec_params(self.to_sql(), list(self.params))

    def all(self) -> QueryResult:
        return self._execute()

    def find(self, record_id: Any) -> QueryResult:
        self.where("id = $", record_id)
        return self._execute()

    def count(self) -> int:
        self.select_conditions = ["count(*)"]
        result = self._execute()
        if not result.ok:
            log.error("%s", result.error)
            raise QueryError(result.error)
        count = _atoi(result.value(0, 0))
        self.select_conditions = []
        return count

    def stat(self, attribute: str, stat: str) -> StatResult:
        """Run ``min``, ``max``, ``average`` or ``sum`` over ``attribute``."""
        result = StatResult(stat=stat)
        function = _STAT_FUNCTIONS.get(stat)
        if function is not None:
            self.select_conditions = [f"{function}({attribute})"]
        outcome = self._execute()
        if not outcome.ok:
            log.error("%s", outcome.error)
            raise QueryError(outcome.error)
        value = outcome.value(0, 0)
        self.select_conditions = []
        result.value = None if value is None else str(value)
        return result