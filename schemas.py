import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    date: dt.date

    @property
    def label(self) -> str:
        return self.category


class IncomeIn(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    source: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    date: dt.date

    @property
    def label(self) -> str:
        return self.source


class CategorizeIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    amount: Optional[float] = Field(default=None, ge=0)


class AssistantQueryIn(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=1000, le=9999)
