from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from common.exceptions import PermissionDeniedError, RecordNotFoundError, ValidationError
from common.validators import MAX_PAGE


def utc(day, hour=12, month=1, year=2024):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class TestCreate:
    def test_create_assigns_owner_id_and_current_date(self, expenses, alice):
        before = datetime.now(timezone.utc)
        expense = expenses.create(alice, {"description": "Coffee", "amount": 5, "category": "Food"})
        after = datetime.now(timezone.utc)

        assert expense.id is not None
        assert expense.owner_id == alice.id
        assert expense.amount == Decimal("5.00")
        assert before - timedelta(seconds=1) <= expense.date <= after + timedelta(seconds=1)

    def test_create_ignores_owner_supplied_in_payload(self, expenses, alice, bob):
        expense = expenses.create(
            alice,
            {
                "description": "Lunch",
                "amount": "12.50",
                "category": "Food",
                "owner_id": bob.id,
                "userId": bob.id,
                "user": {"id": bob.id},
                "id": 999,
            },
        )
        assert expense.owner_id == alice.id
        assert expense.id != 999
        assert expenses.get_one(alice, expense.id).owner_id == alice.id

    def test_create_uses_supplied_date(self, expenses, alice):
        expense = expenses.create(
            alice,
            {"description": "Rent", "amount": "800", "category": "Home", "date": "2024-03-05T10:00:00Z"},
        )
        assert expense.date == datetime(2024, 3, 5, 10, tzinfo=timezone.utc)

    def test_create_allows_negative_amount(self, expenses, alice):
        expense = expenses.create(alice, {"description": "Refund", "amount": "-20", "category": "Food"})
        assert expense.amount == Decimal("-20.00")

    @pytest.mark.parametrize(
        "payload",
        [
            {"amount": "5", "category": "Food"},
            {"description": "Coffee", "category": "Food"},
            {"description": "Coffee", "amount": "5"},
            {"description": "Coffee", "amount": "five", "category": "Food"},
            {"description": "Coffee", "amount": "5", "category": "F" * 51},
            {"description": "Coffee", "amount": "5", "category": "Food", "date": "soon"},
        ],
    )
    def test_create_rejects_invalid_payloads(self, expenses, alice, payload):
        with pytest.raises(ValidationError):
            expenses.create(alice, payload)


class TestGetOne:
    def test_owner_non_owner_and_admin(self, expenses, add_expense, alice, bob, admin):
        expense = add_expense(alice)

        assert expenses.get_one(alice, expense.id) == expense
        assert expenses.get_one(admin, expense.id) == expense
        with pytest.raises(PermissionDeniedError):
            expenses.get_one(bob, expense.id)

    def test_missing_expense(self, expenses, alice, admin):
        with pytest.raises(RecordNotFoundError):
            expenses.get_one(alice, 4242)
        with pytest.raises(RecordNotFoundError):
            expenses.get_one(admin, 4242)


class TestUpdate:
    def test_partial_update_keeps_omitted_fields(self, expenses, add_expense, alice):
        expense = add_expense(alice, description="Coffee", amount="5", category="Food", date=utc(3))

        updated = expenses.update(alice, expense.id, {"amount": "7.5"})

        assert updated.amount == Decimal("7.50")
        assert updated.description == "Coffee"
        assert updated.category == "Food"
        assert updated.date == utc(3)
        assert expenses.get_one(alice, expense.id) == updated

    def test_id_and_owner_are_immutable(self, expenses, add_expense, alice, bob):
        expense = add_expense(alice)

        updated = expenses.update(
            alice,
            expense.id,
            {"id": expense.id + 100, "owner_id": bob.id, "userId": bob.id, "category": "Drinks"},
        )

        assert updated.id == expense.id
        assert updated.owner_id == alice.id
        assert updated.category == "Drinks"

    def test_empty_update_returns_record_unchanged(self, expenses, add_expense, alice):
        expense = add_expense(alice)
        assert expenses.update(alice, expense.id, {}) == expense

    def test_non_owner_cannot_update(self, expenses, add_expense, alice, bob):
        expense = add_expense(alice)

        with pytest.raises(PermissionDeniedError):
            expenses.update(bob, expense.id, {"amount": "1"})
        assert expenses.get_one(alice, expense.id).amount == Decimal("5.00")

    def test_admin_can_update_any_expense(self, expenses, add_expense, alice, admin):
        expense = add_expense(alice)
        updated = expenses.update(admin, expense.id, {"description": "Espresso"})
        assert updated.description == "Espresso"
        assert updated.owner_id == alice.id

    def test_update_missing_expense(self, expenses, alice):
        with pytest.raises(RecordNotFoundError):
            expenses.update(alice, 31337, {"amount": "1"})

    def test_update_validates_present_fields(self, expenses, add_expense, alice):
        expense = add_expense(alice)
        with pytest.raises(ValidationError):
            expenses.update(alice, expense.id, {"description": ""})


class TestRemove:
    def test_remove_then_get_is_not_found(self, expenses, add_expense, alice):
        expense = add_expense(alice)

        assert expenses.remove(alice, expense.id) == {"message": "Expense deleted successfully"}
        with pytest.raises(RecordNotFoundError):
            expenses.get_one(alice, expense.id)

    def test_non_owner_cannot_remove(self, expenses, add_expense, alice, bob):
        expense = add_expense(alice)
        with pytest.raises(PermissionDeniedError):
            expenses.remove(bob, expense.id)
        assert expenses.get_one(alice, expense.id) == expense

    def test_admin_can_remove(self, expenses, add_expense, alice, admin):
        expense = add_expense(alice)
        expenses.remove(admin, expense.id)
        with pytest.raises(RecordNotFoundError):
            expenses.get_one(admin, expense.id)

    def test_remove_missing(self, expenses, alice):
        with pytest.raises(RecordNotFoundError):
            expenses.remove(alice, 77)


class TestListPaged:
    def test_user_only_sees_own_expenses(self, expenses, add_expense, alice, bob):
        add_expense(alice, description="Alice 1")
        add_expense(alice, description="Alice 2")
        add_expense(bob, description="Bob 1")

        page = expenses.list_paged(alice)

        assert page.total == 2
        assert {e.owner_id for e in page.data} == {alice.id}

    def test_admin_sees_every_owner(self, expenses, add_expense, alice, bob, admin):
        add_expense(alice)
        add_expense(bob)

        page = expenses.list_paged(admin)

        assert page.total == 2
        assert {e.owner_id for e in page.data} == {alice.id, bob.id}

    def test_pagination_and_newest_first(self, expenses, add_expense, alice):
        for day in range(1, 13):
            add_expense(alice, description=f"Day {day}", date=utc(day))

        first = expenses.list_paged(alice, page=1, limit=5)
        third = expenses.list_paged(alice, page="3", limit="5")

        assert [e.description for e in first.data] == [f"Day {d}" for d in range(12, 7, -1)]
        assert first.total == 12
        assert first.total_pages == 3
        assert [e.description for e in third.data] == ["Day 2", "Day 1"]
        assert third.page == 3

    def test_ties_on_date_break_by_id_descending(self, expenses, add_expense, alice):
        same = utc(5)
        created = [add_expense(alice, description=str(i), date=same) for i in range(3)]

        page = expenses.list_paged(alice)

        assert [e.id for e in page.data] == sorted((e.id for e in created), reverse=True)

    def test_bounds_are_normalised(self, expenses, add_expense, alice):
        add_expense(alice)

        assert expenses.list_paged(alice, page=0, limit=0).limit == 10
        assert expenses.list_paged(alice, page=-3, limit=-1).page == 1
        assert expenses.list_paged(alice, page=-3, limit=-1).limit == 1
        assert expenses.list_paged(alice, limit=500).limit == 50

    def test_oversized_page_is_capped_and_empty(self, expenses, add_expense, alice):
        add_expense(alice)

        page = expenses.list_paged(alice, page="99999999999999999999")

        assert page.page == MAX_PAGE
        assert page.data == []
        assert page.total == 1

    def test_empty_result_still_has_one_page(self, expenses, alice):
        page = expenses.list_paged(alice)
        assert page.total == 0
        assert page.data == []
        assert page.to_dict()["totalPages"] == 1

    def test_category_and_search_combine(self, expenses, add_expense, alice):
        add_expense(alice, description="Morning coffee", category="Food")
        add_expense(alice, description="Coffee beans", category="Groceries")
        add_expense(alice, description="Sandwich", category="Food")

        page = expenses.list_paged(alice, category="Food", search="COFFEE")

        assert [e.description for e in page.data] == ["Morning coffee"]

    def test_list_all_requires_admin(self, expenses, add_expense, alice, bob, admin):
        add_expense(alice)
        add_expense(bob)

        with pytest.raises(PermissionDeniedError):
            expenses.list_all(alice)
        assert expenses.list_all(admin).total == 2


class TestFilterByCategory:
    def test_filters_within_owner_scope(self, expenses, add_expense, alice, bob):
        add_expense(alice, category="Food")
        add_expense(alice, category="Transport")
        add_expense(bob, category="Food")

        page = expenses.filter_by_category(alice, "Food")

        assert page.total == 1
        assert page.data[0].owner_id == alice.id

    def test_admin_gets_no_bypass(self, expenses, add_expense, alice, admin):
        add_expense(alice, category="Food")
        assert expenses.filter_by_category(admin, "Food").total == 0

    @pytest.mark.parametrize("category", [None, "", "   "])
    def test_category_is_required(self, expenses, alice, category):
        with pytest.raises(ValidationError):
            expenses.filter_by_category(alice, category)


class TestSearch:
    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_blank_text_returns_nothing(self, expenses, add_expense, alice, text):
        add_expense(alice)
        assert expenses.search(alice, text) == []

    def test_case_insensitive_and_owner_scoped(self, expenses, add_expense, alice, bob):
        older = add_expense(alice, description="Coffee at work", date=utc(1))
        newer = add_expense(alice, description="iced COFFEE", date=utc(2))
        add_expense(bob, description="Coffee for Bob")

        assert expenses.search(alice, "coffee") == [newer, older]

    def test_text_is_matched_as_given(self, expenses, add_expense, alice):
        add_expense(alice, description="Coffee at work", date=utc(1))
        iced = add_expense(alice, description="iced COFFEE", date=utc(2))

        assert expenses.search(alice, " coffee") == [iced]

    def test_wildcards_are_literal(self, expenses, add_expense, alice):
        juice = add_expense(alice, description="100% juice")
        add_expense(alice, description="Tea")

        assert expenses.search(alice, "%") == [juice]
        assert expenses.search(alice, "_") == []


class TestExport:
    def test_export_is_owner_scoped_even_for_admin(self, expenses, add_expense, alice, admin):
        add_expense(alice)
        mine = add_expense(admin, description="Admin lunch")

        assert expenses.list_for_export(admin) == [mine]

    def test_export_filters_combine(self, expenses, add_expense, alice):
        add_expense(alice, description="Bus ticket", category="Transport")
        taxi = add_expense(alice, description="Taxi ride", category="Transport")
        add_expense(alice, description="Taxi snack", category="Food")

        assert expenses.list_for_export(alice, search="taxi", category="Transport") == [taxi]
