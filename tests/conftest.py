"""
Pytest fixtures for the expense tracker test suite.

Every test gets its own file-backed SQLite database under ``tmp_path``.
"""

import pytest

from api.app import create_app
from api.config import Settings
from common.models import Caller, Role
from common.services import ExpenseService, ReportService, UserService
from common.storage import ExpenseStore, SQLStorage, UserStore

TEST_SECRET = "test-secret-key-long-enough-for-hs256-signing"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'expenses.db'}"


@pytest.fixture
def storage(database_url):
    storage = SQLStorage(database_url)
    storage.create_schema()
    yield storage
    storage.dispose()


@pytest.fixture
def expense_store(storage):
    return ExpenseStore(storage)


@pytest.fixture
def users(storage):
    return UserService(UserStore(storage))


@pytest.fixture
def expenses(expense_store):
    return ExpenseService(expense_store)


@pytest.fixture
def reports(expense_store):
    return ReportService(expense_store)


@pytest.fixture
def alice(users):
    return Caller.from_user(users.create("alice@example.com", "alice-pass"))


@pytest.fixture
def bob(users):
    return Caller.from_user(users.create("bob@example.com", "bob-pass"))


@pytest.fixture
def admin(users):
    return Caller.from_user(users.create("root@example.com", "root-pass", Role.ADMIN.value))


@pytest.fixture
def add_expense(expenses):
    """Create an expense for ``caller`` with sensible defaults."""

    def _add(caller, description="Coffee", amount="5", category="Food", date=None):
        payload = {"description": description, "amount": amount, "category": category}
        if date is not None:
            payload["date"] = date
        return expenses.create(caller, payload)

    return _add


@pytest.fixture
def settings(database_url):
    return Settings(
        env="dev",
        database_url=database_url,
        jwt_secret=TEST_SECRET,
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    yield app
    app.extensions["expense_tracker"]["storage"].dispose()


@pytest.fixture
def app_users(app):
    return app.extensions["expense_tracker"]["users"]


@pytest.fixture
def login(app):
    """Return a test client logged in as ``email``."""

    def _login(email, password):
        client = app.test_client()
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.get_json()
        return client

    return _login
