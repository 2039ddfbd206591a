"""
Natural-key resolution for syllabus filings.

A filing names its professor by first/last name and its file by filename; storage
links them by n_number and file_id. Lookups must produce exactly one row: names
are not unique, so more than one match is an error rather than a guess.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.engine import RowMapping

from .errors import AmbiguousReference, InvalidShape, UnresolvedReference
from .filters import build_filter
from .models import FILE_COLUMNS, PROFESSOR_COLUMNS, FileRow, ProfessorRow
from .shapes import SyllabusFiling


logger = logging.getLogger(__name__)


class QueryRunner(Protocol):
    async def fetch(self, stmt: Any) -> Sequence[RowMapping]: ...


async def _gather_all(*aws: Awaitable[Any]) -> list[Any]:
    """Run ``aws`` concurrently and wait for all of them before raising the first error."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


def _single(entity: str, reference: dict, keys: list) -> Any:
    if not keys:
        raise UnresolvedReference(entity, reference)
    if len(keys) > 1:
        raise AmbiguousReference(entity, reference, len(keys))
    return keys[0]


def _professor_reference(first: Optional[str], last: Optional[str]) -> dict:
    ref = {}
    if first is not None:
        ref["first_name"] = first
    if last is not None:
        ref["last_name"] = last
    return ref


class RelationalResolver:
    def __init__(self, db: QueryRunner):
        self._db = db

    async def resolve_professor(self, first: Optional[str] = None, last: Optional[str] = None) -> list[str]:
        """n_numbers of professors matching the given name parts exactly (AND when both)."""
        ref = _professor_reference(first, last)
        if not ref:
            raise InvalidShape("A professor reference needs a first or a last name")
        stmt = build_filter(PROFESSOR_COLUMNS, ref).apply(select(ProfessorRow.n_number))
        rows = await self._db.fetch(stmt)
        return [row["n_number"] for row in rows]

    async def resolve_file(self, filename: str) -> list[int]:
        stmt = build_filter(FILE_COLUMNS, {"filename": filename}).apply(select(FileRow.file_id))
        rows = await self._db.fetch(stmt)
        return [row["file_id"] for row in rows]

    async def resolve_professor_strict(self, first: Optional[str] = None, last: Optional[str] = None) -> str:
        keys = await self.resolve_professor(first, last)
        return _single("professor", _professor_reference(first, last), keys)

    async def resolve_file_strict(self, filename: str) -> int:
        keys = await self.resolve_file(filename)
        return _single("file", {"filename": filename}, keys)

    async def resolve_filing(self, filing: SyllabusFiling) -> dict[str, Any]:
        """Storage row for a filing, with professor and file replaced by their keys."""
        n_number, file_id = await _gather_all(
            self.resolve_professor_strict(filing.first_name, filing.last_name),
            self.resolve_file_strict(filing.filename),
        )
        logger.debug(
            "resolved %s %s -> %s, %s -> %s",
            filing.first_name,
            filing.last_name,
            n_number,
            filing.filename,
            file_id,
        )
        return {
            "course": filing.course,
            "n_number": n_number,
            "file_id": file_id,
            "time_begin": filing.time_begin,
            "time_end": filing.time_end,
            "days": filing.days,
            "term": filing.term,
            "year": filing.year,
        }

    async def resolve_filings(self, filings: Sequence[SyllabusFiling]) -> list[dict[str, Any]]:
        """Resolve every filing concurrently; any failure fails the whole batch once all lookups have finished."""
        return await _gather_all(*(self.resolve_filing(f) for f in filings))
