"""
Order-independent comparison of query results.

Rows are plain dicts, which are unhashable, so every operation here is a nested
scan using structural equality (O(n*m)). That is fine for fixture-sized data.

Note that ``equivalent`` deduplicates both sides before matching: it is a
deduplicated *set* equivalence, so ``equivalent([x, x], [x])`` is True.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar


T = TypeVar("T")


def deep_equal(a: Any, b: Any) -> bool:
    """Recursive structural equality; mapping key order is irrelevant, ``True != 1``."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if len(a) != len(b):
            return False
        for key, value in a.items():
            if key not in b or not deep_equal(value, b[key]):
                return False
        return True
    if _is_sequence(a) and _is_sequence(b):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, Mapping) or isinstance(b, Mapping) or _is_sequence(a) or _is_sequence(b):
        return False
    return a == b


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _contains(items: Sequence[Any], value: Any) -> bool:
    return any(deep_equal(value, item) for item in items)


def dedupe(items: Sequence[T]) -> list[T]:
    """
    One element per equality class. An element survives only if no later element
    equals it, so the last occurrence is kept and survivors stay in list order.
    """
    out: list[T] = []
    for i, item in enumerate(items):
        if not _contains(items[i + 1:], item):
            out.append(item)
    return out


def deduplicated_set_equivalent(a: Sequence[Any], b: Sequence[Any]) -> bool:
    a = dedupe(a)
    b = dedupe(b)
    if len(a) != len(b):
        return False

    claimed: set[int] = set()
    for item in a:
        for j, candidate in enumerate(b):
            if j in claimed:
                continue
            if deep_equal(item, candidate):
                claimed.add(j)
                break
    return len(claimed) == len(a)


equivalent = deduplicated_set_equivalent


def intersection(*lists: Sequence[T]) -> list[T]:
    if not lists:
        return []
    out = dedupe(lists[0])
    for other in lists[1:]:
        out = [item for item in out if _contains(other, item)]
    return out


def union(*lists: Sequence[T]) -> list[T]:
    """Concatenate each list's dedupe; equal items from different lists are all kept."""
    out: list[T] = []
    for items in lists:
        out.extend(dedupe(items))
    return out


@dataclass
class Diff(Generic[T]):
    a: list[T] = field(default_factory=list)
    b: list[T] = field(default_factory=list)


def diff(a: Sequence[T], b: Sequence[T]) -> Diff[T]:
    a = dedupe(a)
    b = dedupe(b)
    return Diff(
        a=[item for item in a if not _contains(b, item)],
        b=[item for item in b if not _contains(a, item)],
    )
