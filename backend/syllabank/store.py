"""
Entity store for the syllabus catalog.

The store owns one connection taken from an injected engine. Every statement runs
in its own short transaction; a lock keeps concurrent coroutines (e.g. the
per-filing lookups of a batch insert) from interleaving on that connection.

Writes are insert-or-ignore: inserting a row whose natural key already exists is
not an error and leaves the stored row unchanged. Nothing is ever updated.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from . import shapes
from .errors import InternalShapeMismatch, InvalidShape, StorageError, UnclassifiableEntity
from .filters import build_filter
from .models import (
    COURSE_COLUMNS,
    FILE_COLUMNS,
    PROFESSOR_COLUMNS,
    SYLLABUS_VIEW_COLUMNS,
    CourseRow,
    FileRow,
    ProfessorRow,
    SyllabusRow,
    create_schema,
    drop_schema,
    insert_ignore,
    make_engine,
    syllabus_view_select,
)
from .resolver import RelationalResolver
from .shapes import EntityKind


logger = logging.getLogger(__name__)

Rows = Mapping[str, Any] | Sequence[Mapping[str, Any]]


def _as_list(rows: Any) -> list:
    if isinstance(rows, Mapping):
        return [rows]
    if isinstance(rows, (list, tuple)):
        return list(rows)
    raise InvalidShape(f"Expected an object or a list of objects, got {type(rows).__name__}")


def _labeled(columns: Mapping[str, Any]):
    return select(*(col.label(key) for key, col in columns.items()))


class SyllabusStore:
    def __init__(self, engine: AsyncEngine, conn: AsyncConnection):
        self._engine = engine
        self._conn = conn
        self._lock = asyncio.Lock()
        self.resolver = RelationalResolver(self)

    @classmethod
    async def create(cls, engine: AsyncEngine, create_tables: bool = True) -> "SyllabusStore":
        """Acquire the store's connection and make sure the tables exist."""
        try:
            conn = await engine.connect()
        except SQLAlchemyError as exc:
            raise StorageError.wrap(exc) from exc
        store = cls(engine, conn)
        if create_tables:
            try:
                await store._run_sync(create_schema)
            except Exception:
                await conn.close()
                raise
        logger.info("connected to %s", engine.url.render_as_string(hide_password=True))
        return store

    async def __aenter__(self) -> "SyllabusStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.end()

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    async def end(self) -> None:
        async with self._lock:
            if self._conn.closed:
                return
            try:
                await self._conn.close()
            except SQLAlchemyError as exc:
                raise StorageError.wrap(exc) from exc
        logger.info("connection closed")

    async def nuke(self) -> None:
        """Drop every table and end the connection."""
        await self._run_sync(drop_schema)
        await self.end()

    # -- statement execution -------------------------------------------------

    async def _run_sync(self, fn) -> None:
        async with self._lock:
            try:
                async with self._conn.begin():
                    await fn(self._conn)
            except SQLAlchemyError as exc:
                raise StorageError.wrap(exc) from exc

    async def fetch(self, stmt: Any) -> Sequence[RowMapping]:
        async with self._lock:
            try:
                async with self._conn.begin():
                    result = await self._conn.execute(stmt)
                    return result.mappings().all()
            except SQLAlchemyError as exc:
                raise StorageError.wrap(exc) from exc

    async def execute(self, stmt: Any, params: Optional[list[dict]] = None) -> int:
        async with self._lock:
            try:
                async with self._conn.begin():
                    if params is None:
                        result = await self._conn.execute(stmt)
                    else:
                        result = await self._conn.execute(stmt, params)
                    return result.rowcount
            except SQLAlchemyError as exc:
                raise StorageError.wrap(exc) from exc

    # -- inserts -------------------------------------------------------------

    async def _insert_ignore(self, table: Any, values: list[dict]) -> None:
        if not values:
            return
        await self.execute(insert_ignore(table, self.dialect_name), values)
        logger.info("inserted %d row(s) into %s (duplicates ignored)", len(values), table.name)

    async def insert_courses(self, rows: Rows) -> None:
        courses = [shapes.parse(EntityKind.COURSE, r) for r in _as_list(rows)]
        await self._insert_ignore(CourseRow.__table__, [c.model_dump() for c in courses])

    async def insert_professors(self, rows: Rows) -> None:
        professors = [shapes.parse(EntityKind.PROFESSOR, r) for r in _as_list(rows)]
        await self._insert_ignore(ProfessorRow.__table__, [p.model_dump() for p in professors])

    async def insert_files(self, rows: Rows) -> None:
        files = [shapes.parse_new_file(r) for r in _as_list(rows)]
        await self._insert_ignore(FileRow.__table__, [f.model_dump() for f in files])

    async def insert_filings(self, rows: Rows) -> None:
        """
        Resolve every filing's professor and file, then insert them in one statement.
        If any filing fails to resolve, nothing is inserted.
        """
        filings = [shapes.parse(EntityKind.SYLLABUS_FILING, r) for r in _as_list(rows)]
        if not filings:
            return
        resolved = await self.resolver.resolve_filings(filings)
        await self._insert_ignore(SyllabusRow.__table__, resolved)

    async def insert(self, rows: Rows) -> None:
        """
        Insert a mix of courses, professors, files and syllabus filings.

        Every element is classified first; one unrecognized element rejects the
        batch before anything is written. Kinds are then inserted in dependency order.
        """
        groups: dict[EntityKind, list] = {
            EntityKind.COURSE: [],
            EntityKind.PROFESSOR: [],
            EntityKind.FILE: [],
            EntityKind.SYLLABUS_FILING: [],
        }
        for i, row in enumerate(_as_list(rows)):
            kind = shapes.classify(row)
            if kind is None:
                raise UnclassifiableEntity(i, row)
            groups[kind].append(row)

        await self.insert_courses(groups[EntityKind.COURSE])
        await self.insert_professors(groups[EntityKind.PROFESSOR])
        await self.insert_files(groups[EntityKind.FILE])
        await self.insert_filings(groups[EntityKind.SYLLABUS_FILING])

    # -- selects -------------------------------------------------------------

    def _checked(self, kind: EntityKind, row: RowMapping) -> dict[str, Any]:
        data = dict(row)
        if not shapes.is_full(kind, data):
            raise InternalShapeMismatch(f"Storage returned a row that is not a {shapes.MODELS[kind].__name__}: {data!r}")
        return shapes.MODELS[kind].model_validate(data).model_dump()

    async def _select(self, kind: EntityKind, columns: Mapping[str, Any], stmt: Any, fields: Optional[Mapping]) -> list[dict]:
        stmt = build_filter(columns, fields or {}, kind).apply(stmt)
        return [self._checked(kind, row) for row in await self.fetch(stmt)]

    async def select_courses(self, fields: Optional[Mapping] = None) -> list[dict]:
        return await self._select(EntityKind.COURSE, COURSE_COLUMNS, _labeled(COURSE_COLUMNS), fields)

    async def select_professors(self, fields: Optional[Mapping] = None) -> list[dict]:
        return await self._select(EntityKind.PROFESSOR, PROFESSOR_COLUMNS, _labeled(PROFESSOR_COLUMNS), fields)

    async def select_files(self, fields: Optional[Mapping] = None) -> list[dict]:
        return await self._select(EntityKind.FILE, FILE_COLUMNS, _labeled(FILE_COLUMNS), fields)

    async def select_syllabi(self, fields: Optional[Mapping] = None) -> list[dict]:
        return await self._select(EntityKind.SYLLABUS_VIEW, SYLLABUS_VIEW_COLUMNS, syllabus_view_select(), fields)

    async def all_syllabi(self) -> list[dict]:
        stmt = syllabus_view_select().order_by(
            SyllabusRow.year.desc(),
            SyllabusRow.term.desc(),
            ProfessorRow.last_name.asc(),
        )
        return await self._select(EntityKind.SYLLABUS_VIEW, SYLLABUS_VIEW_COLUMNS, stmt, None)

    async def select(self, fields: Optional[Mapping] = None) -> list[dict]:
        """Select syllabi, professors or courses, whichever partial shape ``fields`` fits first."""
        fields = fields or {}
        kind = shapes.classify_partial(fields)
        if kind is None:
            raise InvalidShape(f"fields needs to be a partial SyllabusView, Professor or Course object: {dict(fields)!r}")
        if kind is EntityKind.SYLLABUS_VIEW:
            return await self.select_syllabi(fields)
        if kind is EntityKind.PROFESSOR:
            return await self.select_professors(fields)
        return await self.select_courses(fields)

    async def search_courses(self, text: str) -> list[dict]:
        """Courses whose code or name contains ``text``, ignoring case."""
        if not isinstance(text, str) or not text.strip():
            raise InvalidShape("A course search needs a non-empty string")
        text = text.strip()
        stmt = _labeled(COURSE_COLUMNS).where(
            or_(
                CourseRow.course.icontains(text, autoescape=True),
                CourseRow.name.icontains(text, autoescape=True),
            )
        )
        return [self._checked(EntityKind.COURSE, row) for row in await self.fetch(stmt)]

    async def search_professors(self, text: str) -> list[dict]:
        """Professors whose first, last or full name contains ``text``, ignoring case."""
        if not isinstance(text, str) or not text.strip():
            raise InvalidShape("A professor search needs a non-empty string")
        text = text.strip()
        full_name = ProfessorRow.first_name + " " + ProfessorRow.last_name
        stmt = _labeled(PROFESSOR_COLUMNS).where(
            or_(
                ProfessorRow.first_name.icontains(text, autoescape=True),
                ProfessorRow.last_name.icontains(text, autoescape=True),
                full_name.icontains(text, autoescape=True),
            )
        )
        return [self._checked(EntityKind.PROFESSOR, row) for row in await self.fetch(stmt)]

    # -- deletes -------------------------------------------------------------

    async def _delete(self, kind: EntityKind, columns: Mapping[str, Any], table: Any, fields: Mapping) -> int:
        stmt = build_filter(columns, fields, kind).apply(delete(table))
        count = await self.execute(stmt)
        logger.info("deleted %d row(s) from %s", count, table.name)
        return count

    async def delete_courses(self, fields: Mapping) -> int:
        return await self._delete(EntityKind.COURSE, COURSE_COLUMNS, CourseRow.__table__, fields)

    async def delete_professors(self, fields: Mapping) -> int:
        return await self._delete(EntityKind.PROFESSOR, PROFESSOR_COLUMNS, ProfessorRow.__table__, fields)

    async def delete_files(self, fields: Mapping) -> int:
        return await self._delete(EntityKind.FILE, FILE_COLUMNS, FileRow.__table__, fields)

    async def delete_syllabi(self, fields: Mapping) -> int:
        # The professor name lives in another table, so pick the ids through the join first.
        id_stmt = build_filter(SYLLABUS_VIEW_COLUMNS, fields, EntityKind.SYLLABUS_VIEW).apply(
            select(SyllabusRow.id).join_from(SyllabusRow, ProfessorRow, SyllabusRow.n_number == ProfessorRow.n_number)
        )
        ids = [row["id"] for row in await self.fetch(id_stmt)]
        if not ids:
            return 0
        count = await self.execute(delete(SyllabusRow.__table__).where(SyllabusRow.id.in_(ids)))
        logger.info("deleted %d row(s) from %s", count, SyllabusRow.__tablename__)
        return count


@asynccontextmanager
async def open_store(database_url: str, **engine_kwargs: Any) -> AsyncIterator[SyllabusStore]:
    """Engine plus store for the lifetime of the block; both are released on exit."""
    engine = make_engine(database_url, **engine_kwargs)
    try:
        store = await SyllabusStore.create(engine)
        try:
            yield store
        finally:
            await store.end()
    finally:
        await engine.dispose()
