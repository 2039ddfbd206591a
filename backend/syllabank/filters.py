from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from sqlalchemy import and_
from sqlalchemy.dialects import sqlite
from sqlalchemy.engine import Dialect
from sqlalchemy.sql import ColumnElement

from .errors import InvalidFilterShape
from .shapes import EntityKind, MODELS, is_partial


logger = logging.getLogger(__name__)

Stmt = TypeVar("Stmt")


@dataclass(frozen=True)
class FilterExpression:
    """AND of equality constraints; no constraints means every row matches."""

    clauses: tuple[ColumnElement[bool], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def clause(self) -> Optional[ColumnElement[bool]]:
        if self.is_empty:
            return None
        return and_(*self.clauses)

    def apply(self, stmt: Stmt) -> Stmt:
        if self.is_empty:
            return stmt
        return stmt.where(and_(*self.clauses))  # type: ignore[attr-defined]

    def render(self, dialect: Optional[Dialect] = None) -> str:
        """SQL text of the filter with values inlined by the dialect's literal renderer."""
        if self.is_empty:
            return ""
        compiled = and_(*self.clauses).compile(
            dialect=dialect or sqlite.dialect(),
            compile_kwargs={"literal_binds": True},
        )
        return str(compiled)


def build_filter(
    columns: Mapping[str, ColumnElement[Any]],
    fields: Mapping[str, Any],
    kind: Optional[EntityKind] = None,
) -> FilterExpression:
    """
    Turn a partial entity into ``col = value AND ...`` over its own keys, in insertion order.

    Values are never interpolated: each comparison carries a bound parameter typed by
    its column. ``None`` compares as ``IS NULL``. When ``kind`` is given the fields are
    re-checked against that entity's partial shape.
    """
    if kind is not None and not is_partial(kind, fields):
        raise InvalidFilterShape(f"Given object is not a partial {MODELS[kind].__name__}: {dict(fields)!r}")

    clauses = []
    for key, value in fields.items():
        column = columns.get(key)
        if column is None:
            raise InvalidFilterShape(f"Unknown filter field {key!r}")
        clauses.append(column.is_(None) if value is None else column == value)

    expr = FilterExpression(tuple(clauses))
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("filter: %s", expr.render() or "<all rows>")
    return expr
