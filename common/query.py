"""Storage-independent query objects for expense reads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .exceptions import ValidationError

__all__ = ["Aggregation", "ExpenseQuery", "GROUPINGS"]

GROUPINGS = {"category", "day", "month"}


@dataclass(frozen=True)
class ExpenseQuery:
    """Filters, window and paging for an expense lookup.

    ``date_from`` is inclusive and ``date_to`` exclusive. ``owner_id`` of
    ``None`` means every owner. Results are always ordered newest first.
    """

    owner_id: Optional[int] = None
    category: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    offset: int = 0
    limit: Optional[int] = None


@dataclass(frozen=True)
class Aggregation:
    """Sum of amounts grouped by ``group_by`` over the rows ``where`` selects."""

    group_by: str
    where: ExpenseQuery = ExpenseQuery()

    def __post_init__(self) -> None:
        if self.group_by not in GROUPINGS:
            raise ValidationError(f"Unsupported grouping: {self.group_by}")
