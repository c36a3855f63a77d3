"""
In-memory list helpers used by every list screen.

Screens fetch the whole collection for a box once and then search, sort and
page through it locally.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Sequence, TypeVar

T = TypeVar("T")

FieldGetter = Callable[[T], Any]


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def offset(self) -> int:
        """Zero-based index of the first item of this page in the full list."""
        return (self.page - 1) * self.page_size


def _matches(value: Any, needle: str) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(_matches(item, needle) for item in value)
    return needle in str(value).lower()


def filter_items(
    items: Iterable[T],
    query: str | None,
    fields: Sequence[FieldGetter[T]],
) -> list[T]:
    """
    Keep items where any field contains the query (case-insensitive).

    An empty or blank query keeps everything.
    """

    needle = (query or "").strip().lower()
    if not needle:
        return list(items)
    return [item for item in items if any(_matches(get(item), needle) for get in fields)]


def sort_items(
    items: Iterable[T],
    key: FieldGetter[T],
    *,
    descending: bool = False,
) -> list[T]:
    """
    Stable sort where missing values always go last.
    """

    present: list[T] = []
    missing: list[T] = []
    for item in items:
        (missing if key(item) is None else present).append(item)

    def _key(item: T) -> Any:
        value = key(item)
        return value.lower() if isinstance(value, str) else value

    present.sort(key=_key, reverse=descending)
    return present + missing


def paginate(items: Sequence[T], page: int, page_size: int) -> Page[T]:
    """
    Slice one page out of items.

    The requested page is clamped into [1, total_pages]; an empty list still
    has one (empty) page.
    """

    if page_size < 1:
        raise ValueError("page_size must be positive")

    total_items = len(items)
    total_pages = max(1, math.ceil(total_items / page_size))
    current = min(max(page, 1), total_pages)
    start = (current - 1) * page_size
    return Page(
        items=list(items[start : start + page_size]),
        page=current,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages,
    )
