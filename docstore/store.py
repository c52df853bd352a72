"""
docstore/store.py -- SQLAlchemy Core document store.

Pattern: Repository + Data Mapper. DocumentStore owns the engine and one
Collection per entity; a Collection is the document-access capability the
generic API handlers are written against (find / get / create / update /
delete). Route handlers never touch SQL directly.

Collection.find() executes a core.query.QuerySpec:
  - filter values arrive as strings and are coerced to the column's Python type
  - filters and sorts on unknown, JSON, or secret columns raise ValidationError
  - ORDER BY always ends with the primary key so pagination is stable
  - negative skip is treated as 0, and a limit <= 0 means "no limit"
  - projection is applied after the secret columns are already gone, so no
    "fields" request can surface them

Related documents are only loaded when the caller passes explicit Populate
options for that operation.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = DocumentStore("sqlite:///./tourbook.db")
    tour = store.tours.create({...})
    docs = store.tours.find(QueryFeatures(params).build())
    store.close()
"""

from __future__ import annotations

import logging
import operator
import re
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import JSON, Table, create_engine, event, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement

from core.errors import ValidationError
from core.query import Comparison, QuerySpec, SortKey
from docstore import schema
from docstore.models import ReviewDocument, TourDocument, UserProfile, duration_weeks, validate_document

logger = logging.getLogger("tourbook.docstore")

# SQLite binds OFFSET and LIMIT as signed 64-bit integers.
MAX_ROWS = 2**63 - 1

_COMPARATORS: dict[str, Callable[[Any, Any], ColumnElement]] = {
    "eq": operator.eq,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}

_UNIQUE_FAILURE = re.compile(r"UNIQUE constraint failed: \w+\.(\w+)|Key \((\w+)\)=")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _coerce(column, value: Any) -> Any:
    """Convert a query-string value to the column's Python type."""
    if value is None:
        return None
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is bool:
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
    elif isinstance(value, python_type) and not isinstance(value, bool):
        return value
    else:
        try:
            return python_type(value)
        except (TypeError, ValueError):
            pass
    raise ValidationError(
        f"Invalid value for {column.name}: {value!r}.",
        context={"field": column.name},
    )


def duplicate_field(exc: IntegrityError) -> Optional[str]:
    """Best-effort name of the column behind a unique-constraint failure."""
    match = _UNIQUE_FAILURE.search(str(exc.orig))
    if match is None:
        return None
    return match.group(1) or match.group(2)


def duplicate_value_error(exc: IntegrityError) -> ValidationError:
    field_name = duplicate_field(exc)
    label = f" for '{field_name}'" if field_name else ""
    return ValidationError(
        f"Duplicate field value{label}. Please use another value.",
        code="duplicate_value",
        context={"field": field_name} if field_name else None,
    )


# ---------------------------------------------------------------------------
# Eager loading
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Populate:
    """Explicit eager-load of referenced documents into one output path.

    local_field holds the id (or list of ids) to match against foreign_field
    on the target collection. With many=True the path always receives a list;
    otherwise a scalar local value receives a single document (or None).

    Examples:
        Populate("guides", users, fields=("name", "email", "photo", "role"))
        Populate("reviews", reviews, local_field="id", foreign_field="tour", many=True)
        Populate("user", users, fields=("name", "email", "photo"))
    """

    path: str
    collection: "Collection"
    local_field: Optional[str] = None  # defaults to path
    foreign_field: str = "id"
    fields: tuple[str, ...] = ()
    many: bool = False
    populate: tuple["Populate", ...] = ()


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class Collection:
    """Document-access capability for one table.

    validator  -- pydantic model with the entity's field constraints
    secret     -- columns never returned, filtered on, or sorted by
    scope      -- clause applied to every read, update, and delete (e.g. soft delete)
    virtuals   -- computed output fields, name -> fn(doc)
    """

    def __init__(
        self,
        engine: Engine,
        table: Table,
        validator: type[BaseModel],
        *,
        secret: Iterable[str] = (),
        scope: Optional[ColumnElement] = None,
        virtuals: Optional[Mapping[str, Callable[[dict], Any]]] = None,
    ) -> None:
        self.engine = engine
        self.table = table
        self.validator = validator
        self.secret = frozenset(secret)
        self.scope = scope
        self.virtuals = dict(virtuals or {})
        self.name = table.name

    # ------------------------------------------------------------------
    # Column policy
    # ------------------------------------------------------------------

    def _queryable(self, name: str):
        column = self.table.c.get(name)
        if column is None or name in self.secret or isinstance(column.type, JSON):
            raise ValidationError(f"Invalid field '{name}' for {self.name}.", context={"field": name})
        return column

    def _clause(self, cmp: Comparison) -> ColumnElement:
        column = self._queryable(cmp.field)
        if cmp.op == "in":
            values = cmp.value if isinstance(cmp.value, (list, tuple)) else [cmp.value]
            return column.in_([_coerce(column, v) for v in values])
        compare = _COMPARATORS.get(cmp.op)
        if compare is None:
            raise ValidationError(
                f"Unsupported filter operator '{cmp.op}' on '{cmp.field}'.",
                context={"field": cmp.field, "operator": cmp.op},
            )
        if isinstance(cmp.value, (dict, list)):
            raise ValidationError(f"Invalid value for {cmp.field}.", context={"field": cmp.field})
        return compare(column, _coerce(column, cmp.value))

    def _order_by(self, keys: list[SortKey]) -> list[ColumnElement]:
        clauses = []
        for key in keys:
            column = self._queryable(key.field)
            clauses.append(column.desc() if key.descending else column.asc())
        if not any(key.field == "id" for key in keys):
            clauses.append(self.table.c.id.asc())
        return clauses

    def _scoped(self, stmt):
        return stmt.where(self.scope) if self.scope is not None else stmt

    def _to_doc(self, row) -> dict[str, Any]:
        doc = {k: v for k, v in row._mapping.items() if k not in self.secret}
        for name, compute in self.virtuals.items():
            doc[name] = compute(doc)
        return doc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, spec: QuerySpec, populate: Iterable[Populate] = ()) -> list[dict[str, Any]]:
        """Execute a QuerySpec and return projected documents."""
        stmt = self._scoped(select(self.table))
        for cmp in spec.filters:
            stmt = stmt.where(self._clause(cmp))
        stmt = stmt.order_by(*self._order_by(spec.sort))
        skip = min(max(spec.skip, 0), MAX_ROWS)
        if spec.limit > 0:
            stmt = stmt.limit(min(spec.limit, MAX_ROWS))
        if skip:
            stmt = stmt.offset(skip)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        docs = [self._to_doc(r) for r in rows]
        self._populate(docs, populate)
        return [project(doc, spec.include, spec.exclude) for doc in docs]

    def get(self, doc_id: int, populate: Iterable[Populate] = ()) -> Optional[dict[str, Any]]:
        stmt = self._scoped(select(self.table).where(self.table.c.id == doc_id))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        if row is None:
            return None
        doc = self._to_doc(row)
        self._populate([doc], populate)
        return doc

    def exists(self, doc_id: int) -> bool:
        stmt = self._scoped(select(self.table.c.id).where(self.table.c.id == doc_id))
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def _populate(self, docs: list[dict[str, Any]], options: Iterable[Populate]) -> None:
        """Fill each Populate path with one batched IN query per option."""
        for opt in options:
            local = opt.local_field or opt.path
            keys: set[Any] = set()
            for doc in docs:
                value = doc.get(local)
                if isinstance(value, list):
                    keys.update(value)
                elif value is not None:
                    keys.add(value)
            related: dict[Any, list[dict]] = defaultdict(list)
            if keys:
                # The join key is fetched even when fields= leaves it out.
                include = [*opt.fields, opt.foreign_field] if opt.fields else []
                spec = QuerySpec(
                    filters=[Comparison(opt.foreign_field, "in", sorted(keys))],
                    sort=[SortKey("id")],
                    include=include,
                    exclude=[] if include else ["version"],
                    limit=0,
                )
                drop_key = bool(opt.fields) and opt.foreign_field not in opt.fields and opt.foreign_field != "id"
                for rel in opt.collection.find(spec, populate=opt.populate):
                    key = rel.pop(opt.foreign_field) if drop_key else rel[opt.foreign_field]
                    related[key].append(rel)
            for doc in docs:
                value = doc.get(local)
                if isinstance(value, list):
                    doc[opt.path] = [r for key in value for r in related.get(key, [])]
                elif opt.many:
                    doc[opt.path] = list(related.get(value, [])) if value is not None else []
                else:
                    matches = related.get(value) if value is not None else None
                    doc[opt.path] = matches[0] if matches else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Validate and insert a new document; return it as stored."""
        values = validate_document(self.validator, dict(data))
        try:
            with self.engine.connect() as conn:
                result = conn.execute(self.table.insert().values(**values, created_at=now_iso(), version=0))
                conn.commit()
        except IntegrityError as exc:
            raise duplicate_value_error(exc) from exc
        doc_id = result.inserted_primary_key[0]
        logger.info("Created %s %d", self.name, doc_id)
        return self.get(doc_id)

    def update(self, doc_id: int, data: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        """Merge data into the stored document, re-validate, and write it back.

        Returns None if doc_id does not exist (or is out of scope).
        """
        current = self.get(doc_id)
        if current is None:
            return None
        fields = self.validator.model_fields
        merged = {k: v for k, v in current.items() if k in fields}
        merged.update(data)
        values = validate_document(self.validator, merged)
        stmt = self._scoped(
            self.table.update()
            .where(self.table.c.id == doc_id)
            .values(**values, version=self.table.c.version + 1)
        )
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt)
                conn.commit()
        except IntegrityError as exc:
            raise duplicate_value_error(exc) from exc
        if result.rowcount == 0:
            return None
        return self.get(doc_id)

    def delete(self, doc_id: int) -> bool:
        stmt = self._scoped(self.table.delete().where(self.table.c.id == doc_id))
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted %s %d", self.name, doc_id)
        return deleted


def project(doc: dict[str, Any], include: list[str], exclude: list[str]) -> dict[str, Any]:
    """Apply an include list (id always kept) or an exclude list to one document."""
    if include:
        keep = {"id", *include}
        return {k: v for k, v in doc.items() if k in keep}
    if exclude:
        return {k: v for k, v in doc.items() if k not in exclude}
    return doc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class DocumentStore:
    """Engine owner and registry of the three collections.

    Usage:
        store = DocumentStore()                                # SQLite default
        store = DocumentStore("postgresql://user:pw@host/db")  # PostgreSQL
    """

    def __init__(self, db_url: str = "sqlite:///./tourbook.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a threadpool, so one connection
            # may be used from several threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        schema.metadata.create_all(self.engine)

        users = schema.users
        self.tours = Collection(
            self.engine,
            schema.tours,
            TourDocument,
            secret=schema.SECRET_FIELDS["tours"],
            virtuals={"duration_weeks": duration_weeks},
        )
        # Deactivated users are invisible to every generic read and write.
        self.users = Collection(
            self.engine,
            users,
            UserProfile,
            secret=schema.SECRET_FIELDS["users"],
            scope=or_(users.c.active.is_(None), users.c.active.is_(True)),
        )
        self.reviews = Collection(
            self.engine,
            schema.reviews,
            ReviewDocument,
            secret=schema.SECRET_FIELDS["reviews"],
        )

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()
