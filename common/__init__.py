"""Core business logic package for the expense tracker."""

from .models import Caller, CategoryTotal, Expense, Page, PeriodTotal, Role, User
from .query import Aggregation, ExpenseQuery
from .services import ExpenseService, ReportService, UserService
from .storage import ExpenseStore, SQLStorage, UserStore
from .exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)

__all__ = [
    "Aggregation",
    "Caller",
    "CategoryTotal",
    "Expense",
    "ExpenseQuery",
    "Page",
    "PeriodTotal",
    "Role",
    "User",
    "ExpenseService",
    "ReportService",
    "UserService",
    "ExpenseStore",
    "SQLStorage",
    "UserStore",
    "AuthenticationError",
    "PermissionDeniedError",
    "PersistenceError",
    "RecordNotFoundError",
    "ValidationError",
]
