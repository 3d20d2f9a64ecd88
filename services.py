from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session

from backends import Backend, StatementResult, backend_for
from config import get_settings
from models import (
    Category,
    Expense,
    Income,
    IncomeSource,
    LedgerKind,
    amount_to_cents,
    cents_to_amount,
)
from periods import trailing_months
from schemas import ExpenseIn, IncomeIn

logger = logging.getLogger(__name__)


LedgerModel = Union[type[Expense], type[Income]]
LookupModel = Union[type[Category], type[IncomeSource]]


@dataclass
class LedgerFilters:
    month: Optional[int] = None
    year: Optional[int] = None
    label: Optional[str] = None
    on_date: Optional[date] = None


class LabelNotFound(ValueError):
    pass


class LabelAmbiguous(ValueError):
    pass


class LabelResolver:
    """Maps a free-text category/source onto a known lookup row name."""

    def __init__(self, session: Session, model: LookupModel, noun: str) -> None:
        self.session = session
        self.model = model
        self.noun = noun

    def resolve(self, raw: str) -> str:
        clean = raw.strip()
        input_lower = clean.lower()
        names = self.session.scalars(select(self.model.name)).all()
        for name in names:
            if name.lower() == input_lower:
                return name

        best_distance: Optional[int] = None
        best: list[str] = []
        for name in names:
            dist = int(Levenshtein.distance(input_lower, name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [name]
            elif dist == best_distance:
                best.append(name)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted(set(best)))
                raise LabelAmbiguous(
                    f"{self.noun} '{clean}' is ambiguous; matches: {options}"
                )
            return best[0]
        raise LabelNotFound(f"Unknown {self.noun.lower()} '{clean}'")


class _LedgerService:
    model: LedgerModel
    label_field: str
    lookup_model: LookupModel
    noun: str
    label_noun: str

    def __init__(
        self,
        session: Session,
        backend: Optional[Backend] = None,
        *,
        validate_labels: Optional[bool] = None,
    ) -> None:
        self.session = session
        self.backend = backend or backend_for(session)
        if validate_labels is None:
            validate_labels = get_settings().validate_labels
        self.validate_labels = validate_labels

    @property
    def label_column(self):
        return getattr(self.model, self.label_field)

    def conditions(self, filters: LedgerFilters) -> list:
        conditions = self.backend.date_filter(
            self.model.date, filters.month, filters.year
        )
        if filters.on_date is not None:
            conditions.append(self.model.date == filters.on_date)
        if filters.label:
            conditions.append(self.label_column == filters.label)
        return conditions

    def list(self, filters: Optional[LedgerFilters] = None) -> list:
        filters = filters or LedgerFilters()
        stmt = (
            select(self.model)
            .where(*self.conditions(filters))
            .order_by(
                self.model.date.desc(),
                self.model.created_at.desc(),
                self.model.id.desc(),
            )
        )
        return list(self.session.scalars(stmt).all())

    def get(self, record_id: int):
        record = self.session.get(self.model, record_id)
        if record is None:
            raise ValueError(f"{self.noun} not found")
        return record

    def _values(self, data: Union[ExpenseIn, IncomeIn]) -> dict[str, object]:
        label = data.label
        if self.validate_labels:
            resolver = LabelResolver(self.session, self.lookup_model, self.label_noun)
            label = resolver.resolve(label)
        return {
            "amount_cents": amount_to_cents(data.amount),
            self.label_field: label,
            "description": data.description or None,
            "date": data.date,
        }

    def create(self, data: Union[ExpenseIn, IncomeIn]) -> int:
        table = self.model.__table__
        result = self.backend.run_statement(
            self.session, insert(table).values(**self._values(data))
        )
        self.session.commit()
        logger.info(
            f"{self.model.__tablename__}_created: id={result.last_insert_id} date={data.date}"
        )
        return result.last_insert_id

    def update(
        self, record_id: int, data: Union[ExpenseIn, IncomeIn]
    ) -> StatementResult:
        table = self.model.__table__
        result = self.backend.run_statement(
            self.session,
            update(table).where(table.c.id == record_id).values(**self._values(data)),
        )
        self.session.commit()
        if not result.rows_affected:
            logger.info(f"{self.model.__tablename__}_update_missing: id={record_id}")
        return result

    def delete(self, record_id: int) -> StatementResult:
        table = self.model.__table__
        result = self.backend.run_statement(
            self.session, delete(table).where(table.c.id == record_id)
        )
        self.session.commit()
        if not result.rows_affected:
            logger.info(f"{self.model.__tablename__}_delete_missing: id={record_id}")
        return result


class ExpenseService(_LedgerService):
    model = Expense
    label_field = "category"
    lookup_model = Category
    noun = "Expense"
    label_noun = "Category"


class IncomeService(_LedgerService):
    model = Income
    label_field = "source"
    lookup_model = IncomeSource
    noun = "Income"
    label_noun = "Income source"


class _LookupService:
    model: LookupModel

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list:
        stmt = select(self.model).order_by(self.model.name)
        return list(self.session.scalars(stmt).all())


class CategoryService(_LookupService):
    model = Category


class IncomeSourceService(_LookupService):
    model = IncomeSource


class SummaryService:
    def __init__(self, session: Session, backend: Optional[Backend] = None) -> None:
        self.session = session
        self.backend = backend or backend_for(session)

    def _total(self, model: LedgerModel, month: Optional[int], year: Optional[int]):
        return (
            select(func.coalesce(func.sum(model.amount_cents), 0))
            .where(*self.backend.date_filter(model.date, month, year))
            .scalar_subquery()
        )

    def get_summary(
        self, month: Optional[int] = None, year: Optional[int] = None
    ) -> dict[str, Decimal]:
        # Both sums go out in one round trip; no isolation between them is promised.
        stmt = select(
            self._total(Income, month, year).label("total_income"),
            self._total(Expense, month, year).label("total_expenses"),
        )
        row = self.backend.run_query(self.session, stmt)[0]
        total_income = cents_to_amount(row.total_income or 0)
        total_expenses = cents_to_amount(row.total_expenses or 0)
        return {
            "totalIncome": total_income,
            "totalExpenses": total_expenses,
            "netIncome": total_income - total_expenses,
        }


class AnalyticsService:
    def __init__(self, session: Session, backend: Optional[Backend] = None) -> None:
        self.session = session
        self.backend = backend or backend_for(session)

    @staticmethod
    def _ledger(kind: LedgerKind) -> tuple[LedgerModel, str]:
        if kind == LedgerKind.income:
            return Income, "source"
        return Expense, "category"

    def breakdown(
        self, kind: LedgerKind, month: Optional[int], year: Optional[int]
    ) -> list[dict[str, object]]:
        if not month or not year:
            raise ValueError("Month and year are required")
        model, label_field = self._ledger(kind)
        label = getattr(model, label_field)
        total = func.sum(model.amount_cents)
        stmt = (
            select(
                label.label(label_field),
                total.label("total"),
                func.count(model.id).label("count"),
            )
            .where(*self.backend.date_filter(model.date, month, year))
            .group_by(label)
            .order_by(total.desc(), label)
        )
        breakdown = []
        for row in self.backend.run_query(self.session, stmt):
            mapping = row._mapping
            breakdown.append(
                {
                    label_field: mapping[label_field],
                    "total": cents_to_amount(mapping["total"] or 0),
                    "count": int(mapping["count"]),
                }
            )
        return breakdown

    def category_breakdown(
        self, month: Optional[int], year: Optional[int]
    ) -> list[dict[str, object]]:
        return self.breakdown(LedgerKind.expense, month, year)

    def source_breakdown(
        self, month: Optional[int], year: Optional[int]
    ) -> list[dict[str, object]]:
        return self.breakdown(LedgerKind.income, month, year)

    def monthly_trend(
        self,
        periods_back: int = 6,
        kind: LedgerKind = LedgerKind.expense,
        *,
        today: Optional[date] = None,
    ) -> list[dict[str, object]]:
        model, _ = self._ledger(kind)
        window = trailing_months(periods_back, today=today)
        key = self.backend.month_key(model.date).label("month")
        stmt = (
            select(
                key,
                func.sum(model.amount_cents).label("total"),
                func.count(model.id).label("count"),
            )
            .where(model.date.between(window.start, window.end))
            .group_by(key)
            .order_by(key)
        )
        return [
            {
                "month": row._mapping["month"],
                "total": cents_to_amount(row._mapping["total"] or 0),
                "count": int(row._mapping["count"]),
            }
            for row in self.backend.run_query(self.session, stmt)
        ]

    def _monthly_totals(self, model: LedgerModel, year: int) -> dict[int, Decimal]:
        key = self.backend.month_key(model.date).label("month")
        stmt = (
            select(key, func.sum(model.amount_cents).label("total"))
            .where(*self.backend.date_filter(model.date, None, year))
            .group_by(key)
        )
        totals: dict[int, Decimal] = {}
        for row in self.backend.run_query(self.session, stmt):
            month_key = str(row._mapping["month"])
            totals[int(month_key[5:7])] = cents_to_amount(row._mapping["total"] or 0)
        return totals

    def yearly_series(self, year: int) -> list[dict[str, object]]:
        income = self._monthly_totals(Income, year)
        expenses = self._monthly_totals(Expense, year)
        series = []
        for month in range(1, 13):
            month_income = income.get(month, cents_to_amount(0))
            month_expenses = expenses.get(month, cents_to_amount(0))
            series.append(
                {
                    "month": month,
                    "income": month_income,
                    "expenses": month_expenses,
                    "net": month_income - month_expenses,
                }
            )
        return series


def build_insights(
    total_income: Decimal,
    total_expenses: Decimal,
    expenses_by_category: list[dict[str, object]],
) -> list[dict[str, object]]:
    net_income = total_income - total_expenses
    insights: list[dict[str, object]] = []
    if total_income > total_expenses:
        insights.append(
            {
                "type": "positive",
                "message": f"You saved {abs(net_income):.2f} this month!",
                "percentage": f"{net_income / total_income * 100:.1f}",
            }
        )
    elif total_expenses > total_income:
        # No income means there is no meaningful ratio to report.
        percentage = (
            f"{abs(net_income) / total_income * 100:.1f}" if total_income else None
        )
        insights.append(
            {
                "type": "warning",
                "message": f"You spent {abs(net_income):.2f} more than you earned",
                "percentage": percentage,
            }
        )
    else:
        insights.append(
            {
                "type": "neutral",
                "message": "Your income and expenses are balanced this month",
                "percentage": 0,
            }
        )

    if expenses_by_category:
        top = expenses_by_category[0]
        top_total = top["total"]
        share = top_total / total_expenses * 100 if total_expenses else 0
        insights.append(
            {
                "type": "info",
                "message": f"Your highest expense category is {top['category']} ({share:.1f}%)",
                "percentage": f"{share:.1f}",
                "amount": top_total,
            }
        )
    return insights


class ReportService:
    def __init__(self, session: Session, backend: Optional[Backend] = None) -> None:
        self.session = session
        self.backend = backend or backend_for(session)

    def build_financial_report(
        self, month: Optional[int], year: Optional[int]
    ) -> dict[str, object]:
        if not month or not year:
            raise ValueError("Month and year are required")
        summary = SummaryService(self.session, self.backend).get_summary(month, year)
        analytics = AnalyticsService(self.session, self.backend)
        income_by_source = analytics.source_breakdown(month, year)
        expenses_by_category = analytics.category_breakdown(month, year)
        return {
            "month": month,
            "year": year,
            "totalIncome": summary["totalIncome"],
            "totalExpenses": summary["totalExpenses"],
            "netIncome": summary["netIncome"],
            "incomeBySource": income_by_source,
            "expensesByCategory": expenses_by_category,
            "insights": build_insights(
                summary["totalIncome"], summary["totalExpenses"], expenses_by_category
            ),
        }
