"""Persistence utilities for the expense tracker core services."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import create_engine, event, func, literal_column, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import PersistenceError, RecordNotFoundError, ValidationError
from .models import Expense, Role, User, ensure_utc
from .query import Aggregation, ExpenseQuery
from .schema import Base, ExpenseRow, UserRow

__all__ = ["ExpenseStore", "ExpenseUnitOfWork", "SQLStorage", "UserStore"]

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MUTABLE_EXPENSE_FIELDS = frozenset({"description", "amount", "category", "date"})


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SQLStorage:
    """Relational storage backed by a SQLAlchemy engine."""

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        url = make_url(database_url)
        options: Dict[str, Any] = {"echo": echo}
        if url.get_backend_name() == "sqlite":
            options["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                options["poolclass"] = StaticPool
            else:
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        self._engine: Engine = create_engine(url, **options)
        if url.get_backend_name() == "sqlite":
            event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceError("Unable to create database schema") from exc

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Database operation failed: %s", exc)
            raise PersistenceError("Database operation failed") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        role=Role(row.role),
        created_at=ensure_utc(row.created_at),
    )


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS)


def _to_expense(row: ExpenseRow) -> Expense:
    return Expense(
        id=row.id,
        description=row.description,
        amount=_to_decimal(row.amount),
        category=row.category,
        date=ensure_utc(row.date),
        owner_id=row.owner_id,
    )


def _to_period(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class UserStore:
    """Identity store: user accounts and their password hashes."""

    def __init__(self, storage: SQLStorage) -> None:
        self._storage = storage

    def add(self, email: str, password_hash: str, role: Role = Role.USER) -> User:
        with self._storage.session_scope() as session:
            row = UserRow(email=email, password_hash=password_hash, role=Role(role).value)
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                raise ValidationError(f"A user with email {email} already exists") from exc
            return _to_user(row)

    def find_one(self, user_id: int) -> Optional[User]:
        with self._storage.session_scope() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row is not None else None

    def find_by_email(self, email: str) -> Optional[User]:
        with self._storage.session_scope() as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            return _to_user(row) if row is not None else None

    def find_credentials(self, email: str) -> Optional[Tuple[User, str]]:
        """Return the user and stored password hash for ``email``, if registered."""
        with self._storage.session_scope() as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            if row is None:
                return None
            return _to_user(row), row.password_hash

    def delete(self, user_id: int) -> None:
        with self._storage.session_scope() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                raise RecordNotFoundError(f"User {user_id} not found")
            session.delete(row)


class ExpenseUnitOfWork:
    """Expense reads and writes sharing a single database transaction."""

    def __init__(self, session: Session, dialect_name: str) -> None:
        self._session = session
        self._dialect_name = dialect_name

    def find(self, query: ExpenseQuery) -> List[Expense]:
        stmt = (
            select(ExpenseRow)
            .where(*self._conditions(query))
            .order_by(ExpenseRow.date.desc(), ExpenseRow.id.desc())
        )
        if query.offset:
            stmt = stmt.offset(query.offset)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        return [_to_expense(row) for row in self._session.scalars(stmt)]

    def count(self, query: ExpenseQuery) -> int:
        stmt = select(func.count()).select_from(ExpenseRow).where(*self._conditions(query))
        return int(self._session.scalar(stmt) or 0)

    def find_one(self, expense_id: int, *, lock: bool = False) -> Optional[Expense]:
        stmt = select(ExpenseRow).where(ExpenseRow.id == expense_id)
        if lock:
            stmt = stmt.with_for_update()
        row = self._session.scalars(stmt).first()
        return _to_expense(row) if row is not None else None

    def aggregate(self, aggregation: Aggregation) -> List[Tuple[Any, Decimal]]:
        """Return ``(key, total)`` pairs; keys are categories or period start dates."""
        total = func.sum(ExpenseRow.amount).label("total")
        if aggregation.group_by == "category":
            key = ExpenseRow.category
            stmt = (
                select(key.label("key"), total)
                .where(*self._conditions(aggregation.where))
                .group_by(key)
                .order_by(total.desc(), key.asc())
            )
            rows = self._session.execute(stmt).all()
            return [(row.key, _to_decimal(row.total)) for row in rows]

        key = self._truncate(aggregation.group_by)
        stmt = (
            select(key.label("key"), total)
            .where(*self._conditions(aggregation.where))
            .group_by(key)
            .order_by(key.asc())
        )
        rows = self._session.execute(stmt).all()
        return [(_to_period(row.key), _to_decimal(row.total)) for row in rows]

    def add(self, values: Dict[str, Any]) -> Expense:
        row = ExpenseRow(**values)
        self._session.add(row)
        self._session.flush()
        return _to_expense(row)

    def update(self, expense_id: int, changes: Dict[str, Any]) -> Expense:
        row = self._session.get(ExpenseRow, expense_id)
        if row is None:
            raise RecordNotFoundError(f"Expense with ID {expense_id} not found")
        for name, value in changes.items():
            if name in MUTABLE_EXPENSE_FIELDS:
                setattr(row, name, value)
        self._session.flush()
        return _to_expense(row)

    def delete(self, expense_id: int) -> None:
        row = self._session.get(ExpenseRow, expense_id)
        if row is None:
            raise RecordNotFoundError(f"Expense with ID {expense_id} not found")
        self._session.delete(row)
        self._session.flush()

    def _truncate(self, group_by: str):
        # Buckets are UTC calendar days or months.
        if self._dialect_name == "postgresql":
            return func.date_trunc(
                literal_column(f"'{group_by}'"),
                func.timezone(literal_column("'UTC'"), ExpenseRow.date),
            )
        pattern = "%Y-%m-%d" if group_by == "day" else "%Y-%m-01"
        return func.strftime(pattern, ExpenseRow.date)

    @staticmethod
    def _conditions(query: ExpenseQuery) -> List[Any]:
        conditions: List[Any] = []
        if query.owner_id is not None:
            conditions.append(ExpenseRow.owner_id == query.owner_id)
        if query.category is not None:
            conditions.append(ExpenseRow.category == query.category)
        if query.search:
            conditions.append(
                func.lower(ExpenseRow.description).contains(query.search.lower(), autoescape=True)
            )
        if query.date_from is not None:
            conditions.append(ExpenseRow.date >= ensure_utc(query.date_from))
        if query.date_to is not None:
            conditions.append(ExpenseRow.date < ensure_utc(query.date_to))
        return conditions


class ExpenseStore:
    """Expense store exposing ``find``/``find_one``/``aggregate`` over query objects."""

    def __init__(self, storage: SQLStorage) -> None:
        self._storage = storage

    @contextmanager
    def transaction(self) -> Iterator[ExpenseUnitOfWork]:
        with self._storage.session_scope() as session:
            yield ExpenseUnitOfWork(session, self._storage.dialect_name)

    def find(self, query: ExpenseQuery) -> List[Expense]:
        with self.transaction() as tx:
            return tx.find(query)

    def count(self, query: ExpenseQuery) -> int:
        with self.transaction() as tx:
            return tx.count(query)

    def find_page(self, query: ExpenseQuery) -> Tuple[List[Expense], int]:
        """Return one page of matches plus the unpaged match count."""
        with self.transaction() as tx:
            return tx.find(query), tx.count(query)

    def find_one(self, expense_id: int) -> Optional[Expense]:
        with self.transaction() as tx:
            return tx.find_one(expense_id)

    def aggregate(self, aggregation: Aggregation) -> List[Tuple[Any, Decimal]]:
        with self.transaction() as tx:
            return tx.aggregate(aggregation)

    def add(self, values: Dict[str, Any]) -> Expense:
        with self.transaction() as tx:
            return tx.add(values)
