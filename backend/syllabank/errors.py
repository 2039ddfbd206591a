"""Exceptions raised by the syllabus catalog store."""

from __future__ import annotations

from typing import Optional


class SyllabankError(Exception):
    """Base exception for catalog failures. ``str(err)`` is safe to show to clients."""


class ConfigError(SyllabankError):
    """Raised when a configuration value cannot be parsed."""


class InvalidShape(SyllabankError):
    """Raised when input does not match a recognized entity shape."""


class UnclassifiableEntity(InvalidShape):
    """Raised when an element of an insert batch matches no entity shape."""

    def __init__(self, index: int, value: object):
        self.index = index
        self.value = value
        super().__init__(f"Element {index} of the batch is not a Course, Professor, File or SyllabusFiling: {value!r}")


class InvalidFilterShape(InvalidShape):
    """Raised when a filter names unknown fields or has wrongly typed values."""


class ReferenceResolutionError(SyllabankError):
    """Base for natural-key lookups that did not produce exactly one row."""

    def __init__(self, entity: str, reference: dict, matches: int):
        self.entity = entity
        self.reference = reference
        self.matches = matches
        super().__init__(self._message())

    def _describe(self) -> str:
        return ", ".join(f"{k}={v!r}" for k, v in self.reference.items())

    def _message(self) -> str:
        raise NotImplementedError


class UnresolvedReference(ReferenceResolutionError):
    def __init__(self, entity: str, reference: dict):
        super().__init__(entity, reference, 0)

    def _message(self) -> str:
        return f"No {self.entity} matches {self._describe()}"


class AmbiguousReference(ReferenceResolutionError):
    def _message(self) -> str:
        return f"{self.matches} rows of {self.entity} match {self._describe()}; expected exactly one"


class StorageError(SyllabankError):
    """Raised when the database rejects a statement."""

    def __init__(self, message: str, statement: Optional[str] = None):
        self.statement = statement
        super().__init__(message)

    @classmethod
    def wrap(cls, exc: BaseException) -> "StorageError":
        # SQLAlchemy StatementError carries the failing SQL and the driver error.
        statement = getattr(exc, "statement", None)
        cause = getattr(exc, "orig", None) or exc
        if statement:
            return cls(f"Bad query {statement}\n{cause}", statement)
        return cls(str(cause) or "Null error")


class InternalShapeMismatch(SyllabankError):
    """Raised when a row read back from storage does not validate as its entity."""


class CsvFormatError(SyllabankError):
    """Raised when an ingestion file is malformed."""
