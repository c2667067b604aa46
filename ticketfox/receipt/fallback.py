"""Ordered-strategy combinator used by the detectors and parsers."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

T = TypeVar("T")


def _is_empty(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def first_non_empty(candidates: Iterable[T | None]) -> T | None:
    """
    Return the first candidate that is neither None nor an empty container.

    ``candidates`` is consumed lazily, so a generator of strategy calls
    stops running strategies at the first hit.
    """
    for candidate in candidates:
        if not _is_empty(candidate):
            return candidate
    return None
