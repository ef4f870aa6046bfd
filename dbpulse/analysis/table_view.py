"""
Table view engine

Three-state column sort (descending, ascending, none), row filtering and
fixed-size 1-based pagination over reconciled or aggregated rows.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from dbpulse.core.constants import SortDirection
from dbpulse.core.formatting import parse_duration_ms

T = TypeVar("T")

RowPredicate = Callable[[Any], bool]

DEFAULT_SEARCH_FIELDS = ("query_hash", "short_query", "full_query", "query_text")

_NEXT_DIRECTION = {
    SortDirection.DESC: SortDirection.ASC,
    SortDirection.ASC: SortDirection.NONE,
    SortDirection.NONE: SortDirection.DESC,
}


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of rows"""
    number: int
    page_count: int
    total_rows: int
    rows: List[T] = field(default_factory=list)

    @property
    def has_previous(self) -> bool:
        return self.number > 1

    @property
    def has_next(self) -> bool:
        return self.number < self.page_count


def sort_key(value: Any) -> Optional[Tuple[int, Any]]:
    """
    Comparable key for a cell value, or None when the value is missing

    Numbers compare numerically, duration strings ("123ms", "4.2s", "1.5m")
    are normalized to milliseconds, other strings compare case-folded.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return (0, number) if math.isfinite(number) else None
    if hasattr(value, "timestamp"):
        return (0, value.timestamp())
    text = str(value.value if hasattr(value, "value") else value).strip()
    if not text:
        return None
    duration = parse_duration_ms(text)
    if duration is not None:
        return (0, duration)
    try:
        number = float(text)
    except ValueError:
        return (1, text.casefold())
    return (0, number) if math.isfinite(number) else None


class TableView(Generic[T]):
    """
    Sortable, filterable, paginated view over a row list

    Sorting is stable: equal keys keep their prior order, and clearing the
    sort restores insertion order. Missing values sort last in both
    directions. Changing the sort or the filter resets the page to 1.
    """

    def __init__(
        self,
        rows: Sequence[T] = (),
        page_size: int = 8,
        columns: Optional[Mapping[str, Callable[[T], Any]]] = None,
        search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self._rows: List[T] = list(rows)
        self._columns: Dict[str, Callable[[T], Any]] = dict(columns or {})
        self._search_fields = tuple(search_fields)
        self._sort_column: Optional[str] = None
        self._sort_direction = SortDirection.NONE
        self._predicate: Optional[RowPredicate] = None
        self._search_text = ""
        self._current_page = 1

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def sort_column(self) -> Optional[str]:
        return self._sort_column

    @property
    def sort_direction(self) -> SortDirection:
        return self._sort_direction

    @property
    def current_page(self) -> int:
        return self._current_page

    @property
    def search_text(self) -> str:
        return self._search_text

    def set_rows(self, rows: Sequence[T]) -> None:
        """Replace the underlying rows, keeping sort and filter"""
        self._rows = list(rows)
        self._current_page = min(self._current_page, self.page_count)

    def toggle_sort(self, column: str) -> SortDirection:
        """
        Click on a column header

        The same column cycles DESC -> ASC -> NONE; another column starts
        at DESC.
        """
        if column != self._sort_column:
            self._sort_column = column
            self._sort_direction = SortDirection.DESC
        else:
            self._sort_direction = _NEXT_DIRECTION[self._sort_direction]
            if self._sort_direction == SortDirection.NONE:
                self._sort_column = None
        self._current_page = 1
        return self._sort_direction

    def clear_sort(self) -> None:
        self._sort_column = None
        self._sort_direction = SortDirection.NONE
        self._current_page = 1

    def set_filter(self, criteria: Union[RowPredicate, str, None]) -> None:
        """Filter by predicate or by case-insensitive search text; None clears"""
        if criteria is None:
            self._predicate, self._search_text = None, ""
        elif callable(criteria):
            self._predicate, self._search_text = criteria, ""
        else:
            self._predicate, self._search_text = None, str(criteria).strip()
        self._current_page = 1

    # ------------------------------------------------------------------
    # Derived rows
    # ------------------------------------------------------------------

    def _cell(self, row: T, column: str) -> Any:
        accessor = self._columns.get(column)
        if accessor is not None:
            return accessor(row)
        if isinstance(row, Mapping):
            return row.get(column)
        return getattr(row, column, None)

    def _matches_search(self, row: T) -> bool:
        needle = self._search_text.casefold()
        for name in self._search_fields:
            value = self._cell(row, name)
            if value is not None and needle in str(value).casefold():
                return True
        return False

    def filtered_rows(self) -> List[T]:
        rows = self._rows
        if self._predicate is not None:
            rows = [r for r in rows if self._predicate(r)]
        if self._search_text:
            rows = [r for r in rows if self._matches_search(r)]
        return list(rows)

    def visible_rows(self) -> List[T]:
        """Filtered rows in the active sort order"""
        rows = self.filtered_rows()
        if self._sort_column is None or self._sort_direction == SortDirection.NONE:
            return rows

        keyed = [(sort_key(self._cell(r, self._sort_column)), r) for r in rows]
        present = [(k, r) for k, r in keyed if k is not None]
        missing = [r for k, r in keyed if k is None]
        present = sorted(present, key=lambda kr: kr[0], reverse=self._sort_direction == SortDirection.DESC)
        return [r for _, r in present] + missing

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    @property
    def total_rows(self) -> int:
        return len(self.filtered_rows())

    @property
    def page_count(self) -> int:
        """Number of pages, never less than 1"""
        return max(1, math.ceil(self.total_rows / self.page_size))

    def page(self, number: Optional[int] = None) -> Page[T]:
        """
        Rows of a 1-based page; out-of-range numbers are clamped

        Requesting a page also makes it the current page.
        """
        rows = self.visible_rows()
        page_count = max(1, math.ceil(len(rows) / self.page_size))
        target = self._current_page if number is None else number
        target = min(max(1, int(target)), page_count)
        self._current_page = target

        start = (target - 1) * self.page_size
        return Page(
            number=target,
            page_count=page_count,
            total_rows=len(rows),
            rows=rows[start:start + self.page_size],
        )
