"""
docstore/query.py -- Compile document queries and aggregation pipelines to SQL.

Documents live as JSON text in a `doc` column; every field reference becomes
json_extract(doc, '$.<path>') so SQLite evaluates filters, sorts and sums in a
single statement.

Query language (a deliberately small Mongo-style subset):
    {"username": "alice"}                       equality
    {"date": {"$lt": 1700000000000}}            $lt / $lte / $gt / $gte / $ne
    {"id": {"$in": ["a", "b"]}}                 membership
Multiple keys are ANDed.

Pipeline stages for aggregate():
    {"$match": <query>}
    {"$group": {"_id": "$resourceId" | None, "<out>": {"$sum": "$value" | 1}}}
    {"$sort": {"<field or out>": -1 | 1}}
    {"$limit": n}
Accumulators: $sum, $min, $max, $avg.

Security: field paths are validated against an identifier-only pattern and
every operand is a bound parameter.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Table, and_, asc, desc, func, literal, or_, select
from sqlalchemy.sql import ColumnElement, Select

from docstore.models import check_path, json_path

ROW_COUNT_LABEL = "__rows__"

_ACCUMULATORS = {
    "$sum": func.sum,
    "$min": func.min,
    "$max": func.max,
    "$avg": func.avg,
}


def field_expr(table: Table, path: str) -> ColumnElement:
    """SQL expression for a document field. 'id' maps to the key column."""
    if path == "id":
        return table.c.id
    return func.json_extract(table.c.doc, json_path(path))


def _scalar(value: Any, path: str) -> Any:
    if isinstance(value, (dict, list, tuple, set)):
        raise ValueError(f"Query operand for {path!r} must be a scalar, got {type(value).__name__}")
    return value


def _operator(expr: ColumnElement, op: str, operand: Any, path: str) -> ColumnElement:
    if op == "$in":
        if not isinstance(operand, (list, tuple, set)):
            raise ValueError(f"$in operand for {path!r} must be a list")
        return expr.in_([_scalar(v, path) for v in operand])
    operand = _scalar(operand, path)
    if op == "$lt":
        return expr < operand
    if op == "$lte":
        return expr <= operand
    if op == "$gt":
        return expr > operand
    if op == "$gte":
        return expr >= operand
    if op == "$ne":
        # Missing fields count as "not equal", as in Mongo.
        if operand is None:
            return expr.is_not(None)
        return or_(expr.is_(None), expr != operand)
    raise ValueError(f"Unsupported query operator: {op!r}")


def compile_query(table: Table, query: Optional[dict]) -> list[ColumnElement]:
    """Translate a query dict into a list of SQL clauses (to be ANDed)."""
    clauses: list[ColumnElement] = []
    for path, cond in (query or {}).items():
        check_path(path)
        expr = field_expr(table, path)
        if isinstance(cond, dict):
            if not cond or not all(isinstance(k, str) and k.startswith("$") for k in cond):
                raise ValueError(f"Nested equality on {path!r} is not supported; query the leaf paths instead")
            for op, operand in cond.items():
                clauses.append(_operator(expr, op, operand, path))
        elif cond is None:
            clauses.append(expr.is_(None))
        else:
            clauses.append(expr == _scalar(cond, path))
    return clauses


def where(stmt: Select, table: Table, query: Optional[dict]) -> Select:
    clauses = compile_query(table, query)
    return stmt.where(and_(*clauses)) if clauses else stmt


def _field_ref(ref: Any) -> Optional[str]:
    """'$path' -> 'path'; anything else -> None (a constant)."""
    if isinstance(ref, str) and ref.startswith("$"):
        return check_path(ref[1:])
    return None


def compile_pipeline(table: Table, pipeline: list[dict]) -> tuple[Select, bool]:
    """Compile an aggregation pipeline into one SELECT.

    Returns (statement, grouped). When grouped is False the statement selects
    raw documents (the `doc` column); otherwise it selects labelled columns.
    """
    match: list[ColumnElement] = []
    group: Optional[dict] = None
    sort: list[tuple[str, int]] = []
    limit: Optional[int] = None

    for stage in pipeline:
        if not isinstance(stage, dict) or len(stage) != 1:
            raise ValueError(f"Each pipeline stage must be a single-key dict, got {stage!r}")
        ((op, spec),) = stage.items()
        if op == "$match":
            if group is not None:
                raise ValueError("$match after $group is not supported")
            match.extend(compile_query(table, spec))
        elif op == "$group":
            if group is not None:
                raise ValueError("Only one $group stage is supported")
            if not isinstance(spec, dict) or "_id" not in spec:
                raise ValueError("$group requires an _id key")
            group = spec
        elif op == "$sort":
            sort = [(key, int(direction)) for key, direction in spec.items()]
        elif op == "$limit":
            limit = int(spec)
            if limit < 1:
                raise ValueError("$limit must be positive")
        else:
            raise ValueError(f"Unsupported pipeline stage: {op!r}")

    if group is None:
        stmt = select(table.c.doc)
        if match:
            stmt = stmt.where(and_(*match))
        for key, direction in sort:
            expr = field_expr(table, check_path(key))
            stmt = stmt.order_by(desc(expr) if direction < 0 else asc(expr))
        if limit is not None:
            stmt = stmt.limit(limit)
        return stmt, False

    labels: dict[str, ColumnElement] = {}
    id_path = _field_ref(group["_id"])
    if group["_id"] is not None and id_path is None:
        raise ValueError("$group _id must be None or a '$field' reference")
    id_expr = field_expr(table, id_path) if id_path else literal(None)
    labels["_id"] = id_expr.label("_id")

    for out, acc in group.items():
        if out == "_id":
            continue
        if not isinstance(acc, dict) or len(acc) != 1:
            raise ValueError(f"Accumulator for {out!r} must be a single-key dict")
        ((acc_op, operand),) = acc.items()
        if acc_op not in _ACCUMULATORS:
            raise ValueError(f"Unsupported accumulator: {acc_op!r}")
        ref = _field_ref(operand)
        if ref is not None:
            arg = field_expr(table, ref)
        elif isinstance(operand, (int, float)) and not isinstance(operand, bool):
            arg = literal(operand)
        else:
            raise ValueError(f"Accumulator operand for {out!r} must be a '$field' or a number")
        labels[out] = _ACCUMULATORS[acc_op](arg).label(out)

    columns = list(labels.values())
    if not id_path:
        # A global group over zero documents must yield no row, not a row of
        # NULLs. The store drops rows whose hidden count is 0.
        columns.append(func.count().label(ROW_COUNT_LABEL))
    stmt = select(*columns).select_from(table)
    if match:
        stmt = stmt.where(and_(*match))
    if id_path:
        stmt = stmt.group_by(labels["_id"])
    for key, direction in sort:
        if key not in labels:
            raise ValueError(f"Cannot sort grouped output by unknown field {key!r}")
        stmt = stmt.order_by(desc(labels[key]) if direction < 0 else asc(labels[key]))
    if limit is not None:
        stmt = stmt.limit(limit)
    return stmt, True
