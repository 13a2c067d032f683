"""Data models for the expense tracker domain."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

__all__ = [
    "Caller",
    "CategoryTotal",
    "Expense",
    "Page",
    "PeriodTotal",
    "Role",
    "User",
    "ensure_utc",
    "isoformat_utc",
    "parse_datetime",
]


class Role(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as a UTC-aware datetime; naive values are taken to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: datetime) -> str:
    """Return an ISO 8601 string with trailing Z for UTC-aware datetimes."""
    iso = ensure_utc(dt).isoformat(timespec="seconds")
    # datetime.isoformat renders +00:00 for UTC; replace with the shorter Z form.
    return iso.replace("+00:00", "Z")


def parse_datetime(value: str) -> datetime:
    """Parse ISO 8601 datetime strings with optional trailing Z into UTC-aware datetime."""
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


@dataclass(frozen=True)
class User:
    id: int
    email: str
    role: Role
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "role": self.role.value}


@dataclass(frozen=True)
class Caller:
    """Identity resolved from a verified credential for the current request."""

    id: int
    role: Role
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(id=user.id, role=user.role, email=user.email)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "role": self.role.value}


@dataclass(frozen=True)
class Expense:
    id: int
    description: str
    amount: Decimal
    category: str
    date: datetime
    owner_id: int

    def to_dict(self, *, include_owner: bool = False) -> Dict[str, Any]:
        """Serialise the expense to JSON-friendly natives.

        The owner stays server-side unless ``include_owner`` is set.
        """
        payload: Dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "amount": f"{self.amount:.2f}",
            "category": self.category,
            "date": isoformat_utc(self.date),
        }
        if include_owner:
            payload["userId"] = self.owner_id
        return payload


@dataclass(frozen=True)
class Page:
    data: List[Expense]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [expense.to_dict() for expense in self.data],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
        }


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "total": f"{self.total:.2f}"}


@dataclass(frozen=True)
class PeriodTotal:
    period: date
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"period": self.period.isoformat(), "total": f"{self.total:.2f}"}
