from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, UniqueConstraint, event, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


DAYS = ("MWF", "TR", "MW", "MTWR", "Online")
TERMS = ("Spring", "Summer", "Fall")


class Base(DeclarativeBase):
    pass


class CourseRow(Base):
    __tablename__ = "courses"
    course: Mapped[str] = mapped_column(String(7), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ProfessorRow(Base):
    __tablename__ = "professors"
    n_number: Mapped[str] = mapped_column(String(9), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(255), index=True)
    last_name: Mapped[str] = mapped_column(String(255), index=True)


class FileRow(Base):
    __tablename__ = "files"
    file_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(255), unique=True)


class SyllabusRow(Base):
    __tablename__ = "syllabi"
    __table_args__ = (
        # One filing per professor/course/file/meeting slot
        UniqueConstraint(
            "course",
            "n_number",
            "file_id",
            "time_begin",
            "time_end",
            "days",
            "term",
            "year",
            name="uq_syllabus_filing",
        ),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course: Mapped[str] = mapped_column(String(7), ForeignKey("courses.course"), index=True)
    n_number: Mapped[str] = mapped_column(String(9), ForeignKey("professors.n_number"), index=True)
    file_id: Mapped[int] = mapped_column(Integer, ForeignKey("files.file_id"))
    time_begin: Mapped[str] = mapped_column(String(8))
    time_end: Mapped[str] = mapped_column(String(8))
    days: Mapped[str] = mapped_column(Enum(*DAYS, name="syllabus_days", native_enum=False, create_constraint=True))
    term: Mapped[str] = mapped_column(Enum(*TERMS, name="syllabus_term", native_enum=False, create_constraint=True))
    year: Mapped[int] = mapped_column(Integer)


COURSE_COLUMNS = {
    "course": CourseRow.course,
    "name": CourseRow.name,
    "description": CourseRow.description,
}

PROFESSOR_COLUMNS = {
    "first_name": ProfessorRow.first_name,
    "last_name": ProfessorRow.last_name,
    "n_number": ProfessorRow.n_number,
}

FILE_COLUMNS = {
    "file_id": FileRow.file_id,
    "filename": FileRow.filename,
}

# Read form of a syllabus: professor name is denormalized from the join.
SYLLABUS_VIEW_COLUMNS = {
    "file_id": SyllabusRow.file_id,
    "course": SyllabusRow.course,
    "first_name": ProfessorRow.first_name,
    "last_name": ProfessorRow.last_name,
    "time_begin": SyllabusRow.time_begin,
    "time_end": SyllabusRow.time_end,
    "days": SyllabusRow.days,
    "term": SyllabusRow.term,
    "year": SyllabusRow.year,
}


def syllabus_view_select():
    return select(*(col.label(key) for key, col in SYLLABUS_VIEW_COLUMNS.items())).join_from(
        SyllabusRow, ProfessorRow, SyllabusRow.n_number == ProfessorRow.n_number
    )


def insert_ignore(table: Any, dialect_name: str):
    """INSERT that leaves the existing row alone when a unique key already exists."""
    if dialect_name == "sqlite":
        return sqlite_insert(table).on_conflict_do_nothing()
    if dialect_name == "postgresql":
        return pg_insert(table).on_conflict_do_nothing()
    return insert(table).prefix_with("IGNORE")


def make_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    engine = create_async_engine(database_url, future=True, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def create_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)


async def drop_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.drop_all)
