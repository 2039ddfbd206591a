"""
Runtime shapes of the catalog entities.

Each entity is a strict pydantic model. ``is_full`` checks that every required
field is present with the right primitive type (extra keys are tolerated);
``is_partial`` overlays the value on schema-valid placeholders and re-runs the
full check, so a partial entity is valid iff every key it has is a known field
with the right type. Unknown keys make a partial entity invalid, since they
would otherwise leak into filters as columns.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import InvalidShape


class EntityKind(str, enum.Enum):
    COURSE = "course"
    PROFESSOR = "professor"
    FILE = "file"
    SYLLABUS_FILING = "syllabus_filing"
    SYLLABUS_VIEW = "syllabus_view"


class Entity(BaseModel):
    # strict: no str -> int coercion, bools are not numbers
    model_config = ConfigDict(strict=True, extra="ignore")


class Course(Entity):
    course: str
    name: str
    description: Optional[str] = None


class Professor(Entity):
    first_name: str
    last_name: str
    n_number: str


class File(Entity):
    file_id: int
    filename: str


class NewFile(Entity):
    """Insert form of a File; the id is assigned by storage."""

    filename: str


class SyllabusFiling(Entity):
    """Write form of a syllabus: professor and file are named, not keyed."""

    filename: str
    course: str
    first_name: str
    last_name: str
    time_begin: str
    time_end: str
    days: str
    term: str
    year: int


class SyllabusView(Entity):
    """Read form of a syllabus, joined with its professor."""

    file_id: int
    course: str
    first_name: str
    last_name: str
    time_begin: str
    time_end: str
    days: str
    term: str
    year: int


MODELS: dict[EntityKind, type[Entity]] = {
    EntityKind.COURSE: Course,
    EntityKind.PROFESSOR: Professor,
    EntityKind.FILE: File,
    EntityKind.SYLLABUS_FILING: SyllabusFiling,
    EntityKind.SYLLABUS_VIEW: SyllabusView,
}

# Most specific first: a filing also carries first/last name and a filename.
INSERT_SHAPES: tuple[tuple[EntityKind, type[Entity]], ...] = (
    (EntityKind.SYLLABUS_FILING, SyllabusFiling),
    (EntityKind.PROFESSOR, Professor),
    (EntityKind.COURSE, Course),
    (EntityKind.FILE, NewFile),
)

SELECT_KINDS: tuple[EntityKind, ...] = (
    EntityKind.SYLLABUS_VIEW,
    EntityKind.PROFESSOR,
    EntityKind.COURSE,
)


def fields_of(kind: EntityKind) -> tuple[str, ...]:
    return tuple(MODELS[kind].model_fields)


def _placeholder(model: type[Entity], name: str) -> Any:
    info = model.model_fields[name]
    if not info.is_required():
        return info.default
    if info.annotation is int:
        return 0
    return ""


def placeholders(model: type[Entity]) -> dict[str, Any]:
    return {name: _placeholder(model, name) for name in model.model_fields}


def _validates(model: type[Entity], value: object) -> bool:
    if not isinstance(value, Mapping):
        return False
    try:
        model.model_validate(dict(value))
    except ValidationError:
        return False
    return True


def _validates_partial(model: type[Entity], value: object) -> bool:
    if not isinstance(value, Mapping):
        return False
    if any(key not in model.model_fields for key in value):
        return False
    return _validates(model, {**placeholders(model), **value})


def is_full(kind: EntityKind, value: object) -> bool:
    return _validates(MODELS[kind], value)


def is_partial(kind: EntityKind, value: object) -> bool:
    return _validates_partial(MODELS[kind], value)


def is_course(value: object) -> bool:
    return is_full(EntityKind.COURSE, value)


def is_partial_course(value: object) -> bool:
    return is_partial(EntityKind.COURSE, value)


def is_professor(value: object) -> bool:
    return is_full(EntityKind.PROFESSOR, value)


def is_partial_professor(value: object) -> bool:
    return is_partial(EntityKind.PROFESSOR, value)


def is_file(value: object) -> bool:
    return is_full(EntityKind.FILE, value)


def is_partial_file(value: object) -> bool:
    return is_partial(EntityKind.FILE, value)


def is_syllabus_filing(value: object) -> bool:
    return is_full(EntityKind.SYLLABUS_FILING, value)


def is_partial_syllabus_filing(value: object) -> bool:
    return is_partial(EntityKind.SYLLABUS_FILING, value)


def is_syllabus_view(value: object) -> bool:
    return is_full(EntityKind.SYLLABUS_VIEW, value)


def is_partial_syllabus_view(value: object) -> bool:
    return is_partial(EntityKind.SYLLABUS_VIEW, value)


def classify(value: object, shapes: Iterable[tuple[EntityKind, type[Entity]]] = INSERT_SHAPES) -> Optional[EntityKind]:
    """Return the first kind whose full (insert) shape ``value`` satisfies, or None."""
    for kind, model in shapes:
        if _validates(model, value):
            return kind
    return None


def classify_partial(value: object, kinds: Iterable[EntityKind] = SELECT_KINDS) -> Optional[EntityKind]:
    for kind in kinds:
        if is_partial(kind, value):
            return kind
    return None


def parse(kind: EntityKind, value: object) -> Entity:
    """Validate ``value`` as a full entity of ``kind`` or raise InvalidShape."""
    model = MODELS[kind]
    if not isinstance(value, Mapping):
        raise InvalidShape(f"Expected a {model.__name__} object, got {type(value).__name__}")
    try:
        return model.model_validate(dict(value))
    except ValidationError as exc:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise InvalidShape(f"Not a {model.__name__}: {problems}") from exc


def parse_new_file(value: object) -> NewFile:
    if not _validates(NewFile, value):
        raise InvalidShape(f"Not a File: {value!r}")
    return NewFile.model_validate(dict(value))


def require_partial(kind: EntityKind, value: object) -> dict[str, Any]:
    if not is_partial(kind, value):
        raise InvalidShape(f"fields needs to be a partial {MODELS[kind].__name__} object: {value!r}")
    return dict(value)
