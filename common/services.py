"""Framework-agnostic business services for the expense tracker."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    RecordNotFoundError,
    ValidationError,
)
from .models import Caller, CategoryTotal, Expense, Page, PeriodTotal, Role, User
from .query import Aggregation, ExpenseQuery
from .storage import ExpenseStore, UserStore
from .validators import (
    REPORT_GROUPS,
    coerce_limit,
    coerce_page,
    parse_amount,
    validate_category,
    validate_datetime,
    validate_email,
    validate_enum,
    validate_optional_str,
    validate_required_str,
)

logger = logging.getLogger(__name__)

DELETED_MESSAGE = "Expense deleted successfully"


class UserService:
    """Manages user accounts and resolves verified credentials to callers."""

    def __init__(self, store: UserStore) -> None:
        self._store = store

    def create(self, email: str, password: str, role: str = Role.USER.value) -> User:
        email = validate_email(email)
        password = validate_required_str(password, "password")
        role = validate_enum(role, "role", {r.value for r in Role})
        user = self._store.add(email, generate_password_hash(password), Role(role))
        logger.info("Created %s account %s (id=%s)", role, user.email, user.id)
        return user

    def get(self, user_id: int) -> User:
        user = self._store.find_one(user_id)
        if user is None:
            raise RecordNotFoundError(f"User {user_id} not found")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self._store.find_by_email(email)

    def authenticate(self, email: object, password: object) -> User:
        """Return the user for a matching email/password pair."""
        if not isinstance(email, str) or not isinstance(password, str):
            raise AuthenticationError("Invalid credentials")
        found = self._store.find_credentials(email.strip())
        if found is None:
            raise AuthenticationError("Invalid credentials")
        user, password_hash = found
        if not password_hash or not check_password_hash(password_hash, password):
            raise AuthenticationError("Invalid credentials")
        return user

    def resolve_caller(self, subject: object) -> Caller:
        """Map a verified token subject to the caller it names.

        Role and email are read from the identity store so that a token for a
        removed account stops working immediately.
        """
        try:
            user_id = int(str(subject))
        except (TypeError, ValueError) as exc:
            raise AuthenticationError("Invalid token payload") from exc
        if user_id <= 0:
            raise AuthenticationError("Invalid token payload")
        user = self._store.find_one(user_id)
        if user is None:
            raise AuthenticationError("User not found")
        return Caller.from_user(user)


class ExpenseService:
    """Mediates every expense read and write, enforcing ownership and roles."""

    def __init__(self, store: ExpenseStore) -> None:
        self._store = store

    # Public API -----------------------------------------------------------
    def create(self, caller: Caller, payload: Mapping[str, object]) -> Expense:
        values = {
            "description": validate_required_str(payload.get("description"), "description"),
            "amount": parse_amount(payload.get("amount"), "amount"),
            "category": validate_category(payload.get("category")),
            # Ownership always comes from the caller, never from the payload.
            "owner_id": caller.id,
        }
        if payload.get("date") not in (None, ""):
            values["date"] = validate_datetime(payload.get("date"), "date")
        else:
            values["date"] = datetime.now(timezone.utc)
        expense = self._store.add(values)
        logger.info("User %s created expense %s", caller.id, expense.id)
        return expense

    def list_paged(
        self,
        caller: Caller,
        page: object = None,
        limit: object = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Page:
        """Page through the caller's expenses, or everyone's for admins."""
        owner_id = None if caller.is_admin else caller.id
        return self._page(owner_id, page, limit, category=category, search=search)

    def list_all(
        self,
        caller: Caller,
        page: object = None,
        limit: object = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Page:
        if not caller.is_admin:
            logger.warning("User %s denied access to the all-users listing", caller.id)
            raise PermissionDeniedError("Admin role required")
        return self._page(None, page, limit, category=category, search=search)

    def filter_by_category(
        self, caller: Caller, category: object, page: object = None, limit: object = None
    ) -> Page:
        category = validate_category(category)
        return self._page(caller.id, page, limit, category=category)

    def search(self, caller: Caller, text: Optional[str]) -> List[Expense]:
        """Case-insensitive substring match of ``text`` as given, spaces included."""
        if not isinstance(text, str) or not text.strip():
            return []
        return self._store.find(ExpenseQuery(owner_id=caller.id, search=text))

    def get_one(self, caller: Caller, expense_id: int) -> Expense:
        expense = self._store.find_one(expense_id)
        return self._assert_owner_or_admin(caller, expense, expense_id)

    def update(self, caller: Caller, expense_id: int, changes: Mapping[str, object]) -> Expense:
        cleaned = self._validate_changes(changes)
        with self._store.transaction() as tx:
            existing = tx.find_one(expense_id, lock=True)
            self._assert_owner_or_admin(caller, existing, expense_id)
            if not cleaned:
                return existing
            updated = tx.update(expense_id, cleaned)
        logger.info("User %s updated expense %s (%s)", caller.id, expense_id, ", ".join(sorted(cleaned)))
        return updated

    def remove(self, caller: Caller, expense_id: int) -> Dict[str, str]:
        with self._store.transaction() as tx:
            existing = tx.find_one(expense_id, lock=True)
            self._assert_owner_or_admin(caller, existing, expense_id)
            tx.delete(expense_id)
        logger.info("User %s deleted expense %s", caller.id, expense_id)
        return {"message": DELETED_MESSAGE}

    def list_for_export(
        self, caller: Caller, search: Optional[str] = None, category: Optional[str] = None
    ) -> List[Expense]:
        """Return every expense of the caller matching the optional filters."""
        query = ExpenseQuery(
            owner_id=caller.id,
            category=validate_optional_str(category, "category"),
            search=validate_optional_str(search, "query"),
        )
        return self._store.find(query)

    # Internal helpers -----------------------------------------------------
    def _page(
        self,
        owner_id: Optional[int],
        page: object,
        limit: object,
        *,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Page:
        safe_page = coerce_page(page)
        safe_limit = coerce_limit(limit)
        query = ExpenseQuery(
            owner_id=owner_id,
            category=validate_optional_str(category, "category"),
            search=validate_optional_str(search, "query"),
            offset=(safe_page - 1) * safe_limit,
            limit=safe_limit,
        )
        data, total = self._store.find_page(query)
        return Page(data=data, total=total, page=safe_page, limit=safe_limit)

    @staticmethod
    def _assert_owner_or_admin(
        caller: Caller, expense: Optional[Expense], expense_id: int
    ) -> Expense:
        if expense is None:
            raise RecordNotFoundError(f"Expense with ID {expense_id} not found")
        if not caller.is_admin and expense.owner_id != caller.id:
            logger.warning("User %s denied access to expense %s", caller.id, expense_id)
            raise PermissionDeniedError("Not allowed to access this expense")
        return expense

    @staticmethod
    def _validate_changes(changes: Mapping[str, object]) -> Dict[str, object]:
        # Only fields present in the payload are touched; id and owner never are.
        cleaned: Dict[str, object] = {}
        if "description" in changes:
            cleaned["description"] = validate_required_str(changes["description"], "description")
        if "amount" in changes:
            cleaned["amount"] = parse_amount(changes["amount"], "amount")
        if "category" in changes:
            cleaned["category"] = validate_category(changes["category"])
        if "date" in changes:
            cleaned["date"] = validate_datetime(changes["date"], "date")
        return cleaned


class ReportService:
    """Aggregates expense totals by category and by calendar period."""

    def __init__(self, store: ExpenseStore) -> None:
        self._store = store

    def by_category(
        self,
        date_from: object,
        date_to: object,
        category: Optional[str] = None,
        owner_id: Optional[int] = None,
    ) -> List[CategoryTotal]:
        where = self._window(date_from, date_to, category, owner_id)
        rows = self._store.aggregate(Aggregation("category", where))
        return [CategoryTotal(category=key, total=total) for key, total in rows]

    def by_period(
        self,
        date_from: object,
        date_to: object,
        group: Optional[str] = "month",
        category: Optional[str] = None,
        owner_id: Optional[int] = None,
    ) -> List[PeriodTotal]:
        """Totals per UTC calendar day or month, oldest first."""
        group = validate_enum(group or "month", "group", REPORT_GROUPS)
        where = self._window(date_from, date_to, category, owner_id)
        rows = self._store.aggregate(Aggregation(group, where))
        return [PeriodTotal(period=key, total=total) for key, total in rows]

    @staticmethod
    def _window(
        date_from: object, date_to: object, category: Optional[str], owner_id: Optional[int]
    ) -> ExpenseQuery:
        if date_from in (None, ""):
            raise ValidationError("from is required")
        if date_to in (None, ""):
            raise ValidationError("to is required")
        return ExpenseQuery(
            owner_id=owner_id,
            category=validate_optional_str(category, "category", 50),
            date_from=validate_datetime(date_from, "from"),
            date_to=validate_datetime(date_to, "to"),
        )
