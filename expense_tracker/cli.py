"""Console interface for the expense tracker."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, NamedTuple, Optional

from api.config import Settings
from common import export
from common.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from common.models import Caller, Expense, Role
from common.seed import seed_admin, seed_demo
from common.services import ExpenseService, ReportService, UserService
from common.storage import ExpenseStore, SQLStorage, UserStore
from common.validators import validate_datetime


class Services(NamedTuple):
    storage: SQLStorage
    store: ExpenseStore
    users: UserService
    expenses: ExpenseService
    reports: ReportService


def _parse_datetime(value: str) -> str:
    try:
        validate_datetime(value, "date")
    except ValidationError as exc:
        raise argparse.ArgumentTypeError(
            f"Invalid date '{value}'. Expected ISO 8601, e.g. 2024-01-31 or 2024-01-31T08:00:00Z."
        ) from exc
    return value


def _load_services(database_url: str) -> Services:
    storage = SQLStorage(database_url)
    storage.create_schema()
    store = ExpenseStore(storage)
    return Services(
        storage=storage,
        store=store,
        users=UserService(UserStore(storage)),
        expenses=ExpenseService(store),
        reports=ReportService(store),
    )


def _caller_for(users: UserService, email: str) -> Caller:
    user = users.find_by_email(email)
    if user is None:
        raise RecordNotFoundError(f"No user registered with email {email}")
    return Caller.from_user(user)


def _format_expense(expense: Expense) -> str:
    data = expense.to_dict(include_owner=True)
    return (
        f"[{data['id']}] {data['date']} {data['amount']}\n"
        f"  Category: {data['category']} | Owner: {data['userId']}\n"
        f"  Description: {data['description']}\n"
    )


def handle_init_db(args: argparse.Namespace, services: Services) -> None:
    # Schema creation already happened in _load_services.
    print(f"Database ready at {args.database_url}")


def handle_user(args: argparse.Namespace, services: Services) -> None:
    if args.command == "add":
        user = services.users.create(args.email, args.password, args.role)
        print(f"User created: [{user.id}] {user.email} ({user.role.value})")


def handle_seed(args: argparse.Namespace, services: Services) -> None:
    admin = seed_admin(services.users, args.admin_email, args.admin_password)
    if admin is None:
        print(f"Admin {args.admin_email} already exists.")
    else:
        print(f"Admin created: {admin.email}")
    if args.demo:
        created = seed_demo(services.users, services.store)
        print(f"Seeded {len(created)} demo expenses.")


def handle_expense(args: argparse.Namespace, services: Services) -> None:
    if args.command == "list":
        caller = _caller_for(services.users, args.email)
        page = services.expenses.list_paged(
            caller, page=args.page, limit=args.limit, category=args.category, search=args.query
        )
        if not page.data:
            print("No expenses found.")
            return
        print(f"Page {page.page}/{page.total_pages} ({page.total} expenses):")
        for expense in page.data:
            print(_format_expense(expense))


def handle_report(args: argparse.Namespace, services: Services) -> None:
    owner_id = None
    if args.email:
        caller = _caller_for(services.users, args.email)
        owner_id = None if caller.is_admin else caller.id
    if args.command == "by-category":
        rows = services.reports.by_category(
            args.date_from, args.date_to, category=args.category, owner_id=owner_id
        )
        labels = [(row.category, row.total) for row in rows]
    else:
        rows = services.reports.by_period(
            args.date_from, args.date_to, group=args.group, category=args.category, owner_id=owner_id
        )
        labels = [(row.period.isoformat(), row.total) for row in rows]
    if not labels:
        print("No expenses in range.")
        return
    for label, total in labels:
        print(f"{label:<20} {total:>12.2f}")


def handle_export(args: argparse.Namespace, services: Services) -> None:
    caller = _caller_for(services.users, args.email)
    expenses = services.expenses.list_for_export(caller, search=args.query, category=args.category)
    document = export.render(args.format, expenses)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(document.content)
    print(f"Exported {len(expenses)} expenses to {args.output}")


def handle_serve(args: argparse.Namespace) -> None:
    from api.app import create_app

    settings = replace(Settings.from_env(), database_url=args.database_url)
    create_app(settings).run(host=args.host, port=args.port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Expense Tracker CLI")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy database URL (default: $DATABASE_URL or sqlite:///data/expenses.db)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="entity", required=True)

    subparsers.add_parser("init-db", help="Create the database schema")

    user_parser = subparsers.add_parser("user", help="Manage user accounts")
    user_sub = user_parser.add_subparsers(dest="command", required=True)
    user_add = user_sub.add_parser("add", help="Register a new user")
    user_add.add_argument("email")
    user_add.add_argument("password")
    user_add.add_argument("--role", choices=[role.value for role in Role], default=Role.USER.value)

    seed_parser = subparsers.add_parser("seed", help="Create the admin account and demo data")
    seed_parser.add_argument("--admin-email")
    seed_parser.add_argument("--admin-password")
    seed_parser.add_argument("--demo", action="store_true", help="Also seed demo expenses")

    expense_parser = subparsers.add_parser("expense", help="Inspect expenses")
    expense_sub = expense_parser.add_subparsers(dest="command", required=True)
    expense_list = expense_sub.add_parser("list", help="List expenses visible to a user")
    expense_list.add_argument("--email", required=True)
    expense_list.add_argument("--category")
    expense_list.add_argument("--query")
    expense_list.add_argument("--page", default=1)
    expense_list.add_argument("--limit", default=10)

    report_parser = subparsers.add_parser("report", help="Aggregate expense totals")
    report_sub = report_parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("by-category", "Totals per category"),
        ("by-period", "Totals per day or month"),
    ):
        report = report_sub.add_parser(name, help=help_text)
        report.add_argument("--from", dest="date_from", required=True, type=_parse_datetime)
        report.add_argument("--to", dest="date_to", required=True, type=_parse_datetime)
        report.add_argument("--category")
        report.add_argument("--email", help="Restrict to this user's expenses (admins see all)")
        if name == "by-period":
            report.add_argument("--group", choices=["day", "month"], default="month")

    export_parser = subparsers.add_parser("export", help="Export a user's expenses to a file")
    export_parser.add_argument("--email", required=True)
    export_parser.add_argument("--format", choices=sorted(export.EXPORT_FORMATS), default="csv")
    export_parser.add_argument("--output", required=True, type=Path)
    export_parser.add_argument("--query")
    export_parser.add_argument("--category")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=3001)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.DEBUG if args.verbose else logging.WARNING,
    )

    settings = Settings.from_env()
    args.database_url = args.database_url or settings.database_url
    if args.entity == "seed":
        args.admin_email = args.admin_email or settings.admin_email
        args.admin_password = args.admin_password or settings.admin_password

    if args.entity == "serve":
        handle_serve(args)
        return 0

    try:
        services = _load_services(args.database_url)
        try:
            if args.entity == "init-db":
                handle_init_db(args, services)
            elif args.entity == "user":
                handle_user(args, services)
            elif args.entity == "seed":
                handle_seed(args, services)
            elif args.entity == "expense":
                handle_expense(args, services)
            elif args.entity == "report":
                handle_report(args, services)
            elif args.entity == "export":
                handle_export(args, services)
            else:  # pragma: no cover - argparse should prevent this
                parser.error(f"Unknown entity: {args.entity}")
                return 2
        finally:
            services.storage.dispose()
    except ValidationError as exc:
        print(f"Validation error: {exc}", file=sys.stderr)
        return 1
    except (RecordNotFoundError, AuthenticationError, PermissionDeniedError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except PersistenceError as exc:
        print(f"Storage error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
