import math
from dataclasses import dataclass
from datetime import date
from typing import Generic, Optional, TypeVar

from sqlalchemy import ColumnElement

T = TypeVar("T")


@dataclass(frozen=True)
class DateRange:
    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def mode(self) -> str:
        if self.start and self.end:
            return "between"
        if self.start:
            return "from"
        if self.end:
            return "until"
        return "all"

    def clause(self, column) -> Optional[ColumnElement[bool]]:
        if self.start and self.end:
            return column.between(self.start, self.end)
        if self.start:
            return column >= self.start
        if self.end:
            return column <= self.end
        return None


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 10

    @classmethod
    def clamped(cls, page: Optional[int], limit: Optional[int]) -> "PageRequest":
        # Missing values fall back to the defaults, non-positive ones to 1.
        page = 1 if page is None else max(int(page), 1)
        limit = 10 if limit is None else max(int(limit), 1)
        return cls(page=page, limit=limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page(Generic[T]):
    data: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)
