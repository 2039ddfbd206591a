"""Syllabus catalog: courses, professors, files and syllabus filings over SQL."""

from .errors import (
    AmbiguousReference,
    InternalShapeMismatch,
    InvalidShape,
    StorageError,
    SyllabankError,
    UnclassifiableEntity,
    UnresolvedReference,
)
from .shapes import EntityKind
from .store import SyllabusStore, open_store

__all__ = [
    "AmbiguousReference",
    "EntityKind",
    "InternalShapeMismatch",
    "InvalidShape",
    "StorageError",
    "SyllabankError",
    "SyllabusStore",
    "UnclassifiableEntity",
    "UnresolvedReference",
    "open_store",
]
