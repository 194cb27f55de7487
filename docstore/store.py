"""
docstore/store.py -- SQLAlchemy-backed document store.

Uses SQLAlchemy Core (not ORM) over SQLite's JSON1 functions. Each logical
collection is a two-column table (`id` primary key, `doc` JSON text); every
field access is json_extract(doc, '$.<path>'), so filters, sorts, partial
updates and sums run inside a single SQL statement.

Pattern: Repository. DocumentStore is the one interface every component
talks to; nothing else in the codebase touches SQL.

Lazy bootstrap:
  Collections and their indexes are not provisioned upfront. Components
  declare the indexes they rely on with register_indexes(); the first write
  to a collection runs CREATE TABLE / CREATE INDEX ... IF NOT EXISTS. The
  bootstrap is idempotent and runs before every write. Index creation is
  best-effort: a failure is logged and swallowed, the write proceeds.

Atomicity:
  Each create / update / delete is one SQL statement and therefore atomic
  for that document. Nothing spans documents. update() applies a Patch with
  json_set / json_remove in place, so concurrent patches to different paths
  of the same document never overwrite each other.

Security: all values are bound parameters. Collection names and field paths
are validated against identifier-only patterns before they reach DDL.

Usage:
    store = DocumentStore("sqlite:///threadboard.db")
    store.register_indexes("users", [IndexSpec("username", ("username",), "unique")])
    store.create("users", user_id, {"username": "alice"})
    store.update("users", user_id, Patch().set("profile.bio", "hi"))
    page = store.get_paginated("posts", 20, Cursor("date", last_seen))
    store.close()
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Optional

from sqlalchemy import (
    Column,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    desc,
    event,
    func,
    inspect,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from docstore.models import (
    Cursor,
    DocumentNotFound,
    DuplicateKey,
    IndexSpec,
    Page,
    Patch,
    StoreError,
    check_collection,
    check_path,
    json_path,
)
from docstore.query import ROW_COUNT_LABEL, compile_pipeline, field_expr, where

logger = logging.getLogger("threadboard.docstore")

DEFAULT_PAGE_SIZE_MAX = 20


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_url(db_url: str) -> bool:
    return ":memory:" in db_url or "mode=memory" in db_url


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------


def get_path(doc: dict, path: str, default: Any = None) -> Any:
    """Read a dot-path from a nested document, returning default if absent."""
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def _load(raw: str) -> dict:
    return json.loads(raw)


def _check_id(doc_id: str) -> str:
    if not isinstance(doc_id, str) or not doc_id:
        raise ValueError(f"Document id must be a non-empty string, got {doc_id!r}")
    return doc_id


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DocumentStore:
    """Collection-oriented JSON document persistence."""

    def __init__(self, db_url: str, page_size_max: int = DEFAULT_PAGE_SIZE_MAX) -> None:
        if not db_url:
            raise ValueError("A database URL is required.")
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and not _is_memory_url(db_url):
            event.listen(self.engine, "connect", _set_wal_mode)
        self.page_size_max = page_size_max
        self._metadata = MetaData()
        self._indexes: dict[str, list[IndexSpec]] = {}
        self._ready: set[str] = set()
        self._existing: set[str] = set()

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def register_indexes(self, collection: str, specs: list[IndexSpec]) -> None:
        """Declare indexes a collection needs. Applied on the next write.

        Registering the same spec twice is a no-op.
        """
        check_collection(collection)
        known = self._indexes.setdefault(collection, [])
        for spec in specs:
            if spec not in known:
                known.append(spec)
        self._ready.discard(collection)

    def ensure_collection(self, collection: str) -> None:
        """Create the collection table and its registered indexes if missing.

        Idempotent: every statement is IF NOT EXISTS. Table creation failures
        raise StoreError; index failures are logged and swallowed.
        """
        table = self._table(collection)
        with self._guard("ensure_collection", collection):
            with self.engine.connect() as conn:
                table.create(conn, checkfirst=True)
                conn.commit()
        for spec in self._indexes.get(collection, []):
            try:
                self._create_index(collection, spec)
            except SQLAlchemyError as exc:
                logger.warning(
                    "Index %s on %s could not be created (continuing without it): %s",
                    spec.name,
                    collection,
                    exc,
                )
        if collection not in self._ready:
            logger.info("Collection %s ready (%d indexes)", collection, len(self._indexes.get(collection, [])))
        self._ready.add(collection)

    def _bootstrap(self, collection: str) -> Table:
        if collection not in self._ready:
            self.ensure_collection(collection)
        return self._table(collection)

    def _create_index(self, collection: str, spec: IndexSpec) -> None:
        exprs = ", ".join(self._index_expr(spec.kind, path) for path in spec.fields)
        unique = "UNIQUE " if spec.kind == "unique" else ""
        ddl = f'CREATE {unique}INDEX IF NOT EXISTS "ix_{collection}_{spec.name}" ON "{collection}" ({exprs})'
        with self.engine.connect() as conn:
            conn.execute(text(ddl))
            conn.commit()

    @staticmethod
    def _index_expr(kind: str, path: str) -> str:
        if path == "id":
            return "id"
        # Paths are identifier-only (check_path), so inlining them is safe.
        expr = f"json_extract(doc, '{json_path(path)}')"
        return f"lower({expr})" if kind == "text" else expr

    def _table(self, collection: str) -> Table:
        check_collection(collection)
        table = self._metadata.tables.get(collection)
        if table is None:
            table = Table(
                collection,
                self._metadata,
                Column("id", String(255), primary_key=True),
                Column("doc", Text, nullable=False),
                keep_existing=True,
            )
        return table

    def has_collection(self, collection: str) -> bool:
        check_collection(collection)
        if collection in self._ready or collection in self._existing:
            return True
        with self._guard("has_collection", collection):
            exists = inspect(self.engine).has_table(collection)
        if exists:
            self._existing.add(collection)
        return exists

    def drop_collection(self, collection: str) -> None:
        table = self._table(collection)
        with self._guard("drop_collection", collection):
            with self.engine.connect() as conn:
                table.drop(conn, checkfirst=True)
                conn.commit()
        self._ready.discard(collection)
        self._existing.discard(collection)

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str, collection: str) -> Iterator[None]:
        """Map SQLAlchemy failures onto the store's exception types."""
        try:
            yield
        except IntegrityError as exc:
            raise DuplicateKey(f"Duplicate key in {collection}: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            logger.error("Error in %s: collection=%s, error=%s", operation, collection, exc)
            raise StoreError(f"{operation} on {collection} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, collection: str, doc_id: str, fields: Optional[dict] = None) -> dict:
        """Insert a new document and return it. Raises DuplicateKey on clashes."""
        _check_id(doc_id)
        table = self._bootstrap(collection)
        doc = dict(fields or {})
        doc["id"] = doc_id
        payload = json.dumps(doc)
        with self._guard("create", collection):
            with self.engine.connect() as conn:
                conn.execute(table.insert().values(id=doc_id, doc=payload))
                conn.commit()
        return doc

    def update(self, collection: str, doc_id: str, patch: Patch, upsert: bool = False) -> dict:
        """Apply patch to a document and return the stored result.

        Only the listed paths change; sibling fields at every nesting level are
        preserved. Raises DocumentNotFound when the document is missing and
        upsert is False. With upsert, a missing document is created from the
        expanded patch.
        """
        _check_id(doc_id)
        table = self._bootstrap(collection)
        stmt = table.update().where(table.c.id == doc_id).values(doc=self._patched(table, patch))
        with self._guard("update", collection):
            with self.engine.connect() as conn:
                updated = conn.execute(stmt).rowcount > 0
                if not updated and upsert:
                    doc = patch.expand()
                    doc["id"] = doc_id
                    try:
                        conn.execute(table.insert().values(id=doc_id, doc=json.dumps(doc)))
                        updated = True
                    except IntegrityError:
                        # Another writer created it between our UPDATE and
                        # INSERT; apply the patch on top of theirs.
                        conn.rollback()
                        updated = conn.execute(stmt).rowcount > 0
                conn.commit()
        if not updated:
            raise DocumentNotFound(f"No document {doc_id!r} in {collection}")
        return self.get(collection, doc_id)

    @staticmethod
    def _patched(table: Table, patch: Patch):
        expr = table.c.doc
        if patch.sets:
            args: list = []
            for path, value in patch.sets.items():
                args.extend([json_path(path), func.json(json.dumps(value))])
            expr = func.json_set(expr, *args)
        if patch.unsets:
            expr = func.json_remove(expr, *[json_path(path) for path in patch.unsets])
        return expr

    def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns True if one was removed."""
        _check_id(doc_id)
        if not self.has_collection(collection):
            return False
        table = self._table(collection)
        with self._guard("delete", collection):
            with self.engine.connect() as conn:
                result = conn.execute(table.delete().where(table.c.id == doc_id))
                conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads -- never raise on "not found", including missing collections
    # ------------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        if not self.has_collection(collection):
            return None
        table = self._table(collection)
        with self._guard("get", collection):
            with self.engine.connect() as conn:
                row = conn.execute(select(table.c.doc).where(table.c.id == doc_id)).fetchone()
        return _load(row.doc) if row is not None else None

    def has(self, collection: str, doc_id: str) -> bool:
        return self.get(collection, doc_id) is not None

    def find_one(self, collection: str, query: Optional[dict] = None) -> Optional[dict]:
        found = self.find(collection, query, limit=1)
        return found[0] if found else None

    def get_many_by(self, collection: str, key: str, value: Any) -> list[dict]:
        return self.find(collection, {key: value})

    def get_all(self, collection: str, ids: Optional[list[str]] = None) -> list[dict]:
        if ids is not None:
            return self.find(collection, {"id": {"$in": list(ids)}})
        return self.find(collection)

    def find(
        self,
        collection: str,
        query: Optional[dict] = None,
        sort: Optional[list[tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Return documents matching query, optionally sorted and capped.

        sort is a list of (path, direction) pairs; direction < 0 is descending.
        Without sort, documents come back in insertion order.
        """
        if not self.has_collection(collection):
            return []
        table = self._table(collection)
        stmt = where(select(table.c.doc), table, query)
        for path, direction in sort or []:
            expr = field_expr(table, check_path(path))
            stmt = stmt.order_by(desc(expr) if direction < 0 else expr)
        if not sort:
            stmt = stmt.order_by(text("rowid"))
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._guard("find", collection):
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        return [_load(r.doc) for r in rows]

    def count(self, collection: str, query: Optional[dict] = None) -> int:
        if not self.has_collection(collection):
            return 0
        table = self._table(collection)
        stmt = where(select(func.count()).select_from(table), table, query)
        with self._guard("count", collection):
            with self.engine.connect() as conn:
                return conn.execute(stmt).scalar() or 0

    def get_paginated(
        self,
        collection: str,
        limit: Optional[int],
        cursor: Cursor,
        query: Optional[dict] = None,
    ) -> Page:
        """Return one page of documents sorted by cursor.key descending.

        Only documents whose key is strictly less than cursor.value are
        considered (all of them when cursor.value is None); documents
        without the key are never paged. limit is clamped to
        1..page_size_max. The page is the last one when it is short, or when
        its final key equals the smallest key in the (filtered) collection.
        """
        key = check_path(cursor.key)
        limit = self.page_size_max if limit is None else max(1, min(int(limit), self.page_size_max))
        if not self.has_collection(collection):
            return Page(items=[], loaded_all=True)
        table = self._table(collection)
        key_expr = field_expr(table, key)

        stmt = where(select(table.c.doc), table, query).where(key_expr.is_not(None))
        if cursor.value is not None:
            stmt = stmt.where(key_expr < cursor.value)
        stmt = stmt.order_by(desc(key_expr), desc(table.c.id)).limit(limit)
        minimum_stmt = where(select(func.min(key_expr)).select_from(table), table, query)

        with self._guard("get_paginated", collection):
            with self.engine.connect() as conn:
                items = [_load(r.doc) for r in conn.execute(stmt).fetchall()]
                minimum = conn.execute(minimum_stmt).scalar() if len(items) == limit else None

        if len(items) < limit:
            loaded_all = True
        else:
            loaded_all = get_path(items[-1], key) == minimum
        next_cursor = None
        if items and not loaded_all:
            next_cursor = Cursor(key=key, value=get_path(items[-1], key))
        return Page(items=items, loaded_all=loaded_all, next_cursor=next_cursor)

    def aggregate(self, collection: str, pipeline: list[dict]) -> list[dict]:
        """Run a $match / $group / $sort / $limit pipeline (see docstore.query)."""
        if not self.has_collection(collection):
            return []
        table = self._table(collection)
        stmt, grouped = compile_pipeline(table, pipeline)
        with self._guard("aggregate", collection):
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        if not grouped:
            return [_load(r.doc) for r in rows]
        results = []
        for row in rows:
            out = dict(row._mapping)
            if out.pop(ROW_COUNT_LABEL, 1) == 0:
                continue
            results.append(out)
        return results

    def search(self, collection: str, term: str, limit: int = DEFAULT_PAGE_SIZE_MAX) -> list[dict]:
        """Case-insensitive substring search over the collection's text fields."""
        fields = [path for spec in self._indexes.get(collection, []) if spec.kind == "text" for path in spec.fields]
        if not fields:
            raise ValueError(f"Collection {collection!r} has no text index")
        if not term or not self.has_collection(collection):
            return []
        table = self._table(collection)
        escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        clauses = [func.lower(field_expr(table, path)).like(pattern, escape="\\") for path in fields]
        stmt = select(table.c.doc).where(or_(*clauses)).order_by(text("rowid")).limit(limit)
        with self._guard("search", collection):
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        return [_load(r.doc) for r in rows]

    def close(self) -> None:
        self.engine.dispose()
