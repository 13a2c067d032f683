"""Start-up seed data: the admin account and optional demo data."""

from __future__ import annotations

import logging
from typing import List, Optional

from .models import Caller, Expense, Role, User
from .query import ExpenseQuery
from .services import ExpenseService, UserService
from .storage import ExpenseStore

logger = logging.getLogger(__name__)

DEMO_EMAIL = "seed@demo.com"
DEMO_PASSWORD = "123456"
DEMO_EXPENSES = (
    {"description": "Supermarket", "amount": "350", "category": "Groceries"},
    {"description": "Fuel", "amount": "500", "category": "Transport"},
)


def seed_admin(users: UserService, email: str, password: str) -> Optional[User]:
    """Create the admin account unless the email is already registered."""
    if users.find_by_email(email) is not None:
        return None
    admin = users.create(email, password, Role.ADMIN.value)
    logger.info("Admin account created: %s", email)
    return admin


def seed_demo(users: UserService, store: ExpenseStore) -> List[Expense]:
    """Populate an empty expense table with a demo user and sample expenses."""
    if store.count(ExpenseQuery()) > 0:
        return []
    user = users.find_by_email(DEMO_EMAIL) or users.create(DEMO_EMAIL, DEMO_PASSWORD)
    expenses = ExpenseService(store)
    caller = Caller.from_user(user)
    created = [expenses.create(caller, payload) for payload in DEMO_EXPENSES]
    logger.info("Seeded %d demo expenses for %s", len(created), DEMO_EMAIL)
    return created
