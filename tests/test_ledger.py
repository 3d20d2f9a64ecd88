from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, event, select, text
from sqlalchemy.orm import Session

from database import _enable_sqlite_pragmas
from models import Category, Expense
from schemas import ExpenseIn, IncomeIn
from seeds import initialize_schema
from services import (
    CategoryService,
    ExpenseService,
    IncomeService,
    IncomeSourceService,
    LabelAmbiguous,
    LabelNotFound,
    LedgerFilters,
    SummaryService,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    initialize_schema(engine)
    return Session(engine)


def test_created_expense_is_listed_for_its_month() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=False)
        expense_id = expenses.create(
            ExpenseIn(amount=150.00, category="Groceries", date=date(2025, 3, 15))
        )

        rows = expenses.list(LedgerFilters(month=3, year=2025))
        assert [row.id for row in rows] == [expense_id]
        assert rows[0].amount == 150
        assert rows[0].category == "Groceries"
        assert rows[0].description is None
        assert rows[0].created_at is not None

        assert expenses.list(LedgerFilters(month=4, year=2025)) == []


def test_ids_are_unique_and_increasing() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=False)
        ids = [
            expenses.create(
                ExpenseIn(amount=n, category="Kids", date=date(2025, 1, n))
            )
            for n in range(1, 6)
        ]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5


def test_list_orders_newest_first_with_stable_ties() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=False)
        older = expenses.create(
            ExpenseIn(amount=1, category="Kids", date=date(2025, 2, 1))
        )
        first_same_day = expenses.create(
            ExpenseIn(amount=2, category="Kids", date=date(2025, 2, 10))
        )
        second_same_day = expenses.create(
            ExpenseIn(amount=3, category="Kids", date=date(2025, 2, 10))
        )

        ids = [row.id for row in expenses.list()]
        assert ids == [second_same_day, first_same_day, older]


def test_filters_combine_with_and() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=False)
        march_kids = expenses.create(
            ExpenseIn(amount=10, category="Kids", date=date(2025, 3, 1))
        )
        expenses.create(ExpenseIn(amount=20, category="Other", date=date(2025, 3, 1)))
        expenses.create(ExpenseIn(amount=30, category="Kids", date=date(2024, 3, 1)))
        expenses.create(ExpenseIn(amount=40, category="Kids", date=date(2025, 7, 4)))

        by_month_and_label = expenses.list(
            LedgerFilters(month=3, year=2025, label="Kids")
        )
        assert [row.id for row in by_month_and_label] == [march_kids]

        whole_year = expenses.list(LedgerFilters(year=2025))
        assert sorted(row.amount for row in whole_year) == [10, 20, 40]

        by_day = expenses.list(LedgerFilters(on_date=date(2025, 3, 1)))
        assert sorted(row.amount for row in by_day) == [10, 20]

        # A month without a year is ignored.
        assert len(expenses.list(LedgerFilters(month=3))) == 4


def test_update_replaces_all_fields_and_is_idempotent() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=False)
        expense_id = expenses.create(
            ExpenseIn(
                amount=5, category="Kids", description="Crayons", date=date(2025, 1, 1)
            )
        )
        change = ExpenseIn(amount=7.25, category="Other", date=date(2025, 1, 2))

        first = expenses.update(expense_id, change)
        snapshot = expenses.get(expense_id).to_dict()
        second = expenses.update(expense_id, change)

        assert first.rows_affected == 1
        assert second.rows_affected == 1
        assert expenses.get(expense_id).to_dict() == snapshot
        assert snapshot["amount"] == 7.25
        assert snapshot["category"] == "Other"
        assert snapshot["description"] is None
        assert snapshot["date"] == "2025-01-02"


def test_update_of_missing_row_reports_zero_rows() -> None:
    with make_session() as session:
        result = ExpenseService(session, validate_labels=False).update(
            404, ExpenseIn(amount=1, category="Kids", date=date(2025, 1, 1))
        )
        assert result.rows_affected == 0


def test_delete_is_terminal() -> None:
    with make_session() as session:
        income = IncomeService(session, validate_labels=False)
        income_id = income.create(
            IncomeIn(amount=5000, source="Salary", date=date(2025, 3, 1))
        )

        assert income.delete(income_id).rows_affected == 1
        assert income.list() == []
        assert income.delete(income_id).rows_affected == 0
        with pytest.raises(ValueError, match="Income not found"):
            income.get(income_id)


def test_income_filters_by_source() -> None:
    with make_session() as session:
        income = IncomeService(session, validate_labels=False)
        income.create(IncomeIn(amount=5000, source="Salary", date=date(2025, 3, 1)))
        bonus_id = income.create(
            IncomeIn(amount=300, source="Bonus", date=date(2025, 3, 20))
        )

        rows = income.list(LedgerFilters(month=3, year=2025, label="Bonus"))
        assert [row.id for row in rows] == [bonus_id]
        assert rows[0].to_dict()["source"] == "Bonus"


def test_lookups_are_sorted_by_name() -> None:
    with make_session() as session:
        categories = [c.name for c in CategoryService(session).list_all()]
        sources = [s.name for s in IncomeSourceService(session).list_all()]

    assert categories == sorted(categories)
    assert sources == sorted(sources)
    assert "Groceries" in categories
    assert "Salary" in sources


def test_label_validation_canonicalizes_and_rejects_unknown() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=True)
        exact = expenses.create(
            ExpenseIn(amount=1, category="groceries", date=date(2025, 1, 1))
        )
        fuzzy = expenses.create(
            ExpenseIn(amount=1, category="Healthcar", date=date(2025, 1, 1))
        )
        assert expenses.get(exact).category == "Groceries"
        assert expenses.get(fuzzy).category == "Healthcare"

        with pytest.raises(LabelNotFound):
            expenses.create(
                ExpenseIn(amount=1, category="Yachts", date=date(2025, 1, 1))
            )

        income = IncomeService(session, validate_labels=True)
        with pytest.raises(LabelNotFound, match="income source"):
            income.create(IncomeIn(amount=1, source="Lottery", date=date(2025, 1, 1)))


def test_label_validation_rejects_ambiguous_match() -> None:
    with make_session() as session:
        session.add_all(
            [Category(name="Food", color="#111111"), Category(name="Fool", color="#222222")]
        )
        session.commit()

        with pytest.raises(LabelAmbiguous, match="Food, Fool"):
            ExpenseService(session, validate_labels=True).create(
                ExpenseIn(amount=1, category="Foob", date=date(2025, 1, 1))
            )


def test_label_validation_disabled_stores_free_text() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=False)
        expense_id = expenses.create(
            ExpenseIn(amount=1, category="Yachts", date=date(2025, 1, 1))
        )
        assert expenses.get(expense_id).category == "Yachts"


def test_amounts_are_stored_as_whole_cents() -> None:
    with make_session() as session:
        expenses = ExpenseService(session, validate_labels=False)
        expense_id = expenses.create(
            ExpenseIn(amount=Decimal("19.99"), category="Kids", date=date(2025, 1, 1))
        )
        stored = session.scalar(
            select(Expense.amount_cents).where(Expense.id == expense_id)
        )

        assert stored == 1999
        assert expenses.get(expense_id).amount == Decimal("19.99")
        assert expenses.get(expense_id).to_dict()["amount"] == 19.99


@pytest.mark.parametrize("raw", ["10.005", "0.001", "-1.00"])
def test_sub_cent_and_negative_amounts_are_rejected(raw: str) -> None:
    with pytest.raises(ValidationError):
        ExpenseIn(amount=Decimal(raw), category="Kids", date=date(2025, 1, 1))


def test_concurrent_writers_get_distinct_ids(tmp_path) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'expenses.db'}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _enable_sqlite_pragmas)
    initialize_schema(engine)

    def add_and_summarize(n: int) -> int:
        with Session(engine) as session:
            expense_id = ExpenseService(session, validate_labels=False).create(
                ExpenseIn(
                    amount=Decimal("1.10"),
                    category="Kids",
                    date=date(2025, 4, n % 28 + 1),
                )
            )
            SummaryService(session).get_summary(4, 2025)
            return expense_id

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(add_and_summarize, range(40)))

    with Session(engine) as session:
        summary = SummaryService(session).get_summary(4, 2025)
        listed = ExpenseService(session).list(LedgerFilters(month=4, year=2025))
        journal_mode = session.execute(text("PRAGMA journal_mode")).scalar()

    engine.dispose()
    assert len(set(ids)) == 40
    assert sorted(row.id for row in listed) == sorted(ids)
    assert summary["totalExpenses"] == Decimal("44.00")
    assert journal_mode == "wal"
