from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base

CENT = Decimal("0.01")


class LedgerKind(str, Enum):
    expense = "expense"
    income = "income"


def amount_to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Expense(Base, CreatedAtMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
        Index("ix_expenses_date", "date"),
        Index("ix_expenses_category_date", "category", "date"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "amount": float(self.amount),
            "category": self.category,
            "description": self.description,
            "date": self.date.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Income(Base, CreatedAtMixin):
    __tablename__ = "income"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_income_amount_positive"),
        Index("ix_income_date", "date"),
        Index("ix_income_source_date", "source", "date"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "amount": float(self.amount),
            "source": self.source,
            "description": self.description,
            "date": self.date.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="#3498db")

    def to_dict(self) -> dict[str, object]:
        return {"id": self.id, "name": self.name, "color": self.color}


class IncomeSource(Base):
    __tablename__ = "income_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="#27ae60")

    def to_dict(self) -> dict[str, object]:
        return {"id": self.id, "name": self.name, "color": self.color}
