"""
Loading catalog rows from CSV files.

Cells are untyped text; ``coerce_value`` turns them into the scalars the entity
shapes expect (``null`` -> None, numbers, booleans). Shape checking is left to
the store, which classifies whatever comes out of here.
"""

from __future__ import annotations

import csv
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from .config import Settings
from .errors import CsvFormatError


logger = logging.getLogger(__name__)

INT_RE = re.compile(r"^[+-]?\d+$")
FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


def coerce_value(raw: str) -> Any:
    s = raw.strip()
    lowered = s.lower()
    if lowered == "null":
        return None
    if INT_RE.match(s):
        return int(s)
    if FLOAT_RE.match(s):
        return float(s)
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return s


def parse_rows(lines: Iterable[str], fields: Optional[Sequence[str]] = None, delimiter: str = ",") -> list[dict[str, Any]]:
    """
    Parse CSV lines into dicts. The first non-blank line is the header unless
    ``fields`` is given. Every data line must have exactly one cell per field.
    """
    reader = csv.reader(lines, delimiter=delimiter, skipinitialspace=True)
    names: Optional[list[str]] = [f.strip() for f in fields] if fields is not None else None
    out: list[dict[str, Any]] = []
    for cells in reader:
        if not any(c.strip() for c in cells):
            continue
        if names is None:
            names = [c.strip() for c in cells]
            continue
        if len(cells) != len(names):
            raise CsvFormatError(
                f"Line {reader.line_num} has {len(cells)} value(s) but the fields are {', '.join(names)}"
            )
        out.append({name: coerce_value(cell) for name, cell in zip(names, cells)})
    return out


def read_rows(path: str | Path, fields: Optional[Sequence[str]] = None, delimiter: str = ",") -> list[dict[str, Any]]:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8-sig", newline="") as f:
            rows = parse_rows(f, fields=fields, delimiter=delimiter)
    except OSError as exc:
        raise CsvFormatError(f"Cannot read {p}: {exc.strerror or exc}") from exc
    except CsvFormatError as exc:
        raise CsvFormatError(f"{p}: {exc}") from exc
    logger.info("read %d row(s) from %s", len(rows), p)
    return rows


async def ingest_csvs(
    store,
    courses: Optional[str | Path] = None,
    professors: Optional[str | Path] = None,
    files: Optional[str | Path] = None,
    syllabi: Optional[str | Path] = None,
) -> dict[str, int]:
    """Insert the given CSVs in dependency order; returns rows read per kind."""
    counts: dict[str, int] = {}
    if courses is not None:
        rows = read_rows(courses)
        await store.insert_courses(rows)
        counts["courses"] = len(rows)
    if professors is not None:
        rows = read_rows(professors)
        await store.insert_professors(rows)
        counts["professors"] = len(rows)
    if files is not None:
        rows = read_rows(files)
        await store.insert_files(rows)
        counts["files"] = len(rows)
    if syllabi is not None:
        rows = read_rows(syllabi)
        await store.insert_filings(rows)
        counts["syllabi"] = len(rows)
    return counts


async def ingest_configured_csvs(store, settings: Settings) -> dict[str, int]:
    return await ingest_csvs(
        store,
        courses=settings.course_csv,
        professors=settings.professor_csv,
        files=settings.filename_csv,
        syllabi=settings.syllabi_csv,
    )
