"""Keyword-driven helpers: categorization, spending insights, forecasts.

Nothing here learns from data. Every answer comes from fixed keyword tables
and plain arithmetic over the rows handed in, so results are deterministic.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional, Protocol

from periods import add_months, today_local

FALLBACK_CATEGORY = "Other"

CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "Food & Dining",
        ("restaurant", "cafe", "coffee", "lunch", "dinner", "food", "eat", "dining"),
    ),
    (
        "Transportation",
        ("uber", "taxi", "bus", "train", "metro", "fuel", "gas", "parking", "transport"),
    ),
    ("Shopping", ("amazon", "flipkart", "mall", "store", "shop", "purchase", "buy")),
    (
        "Entertainment",
        ("movie", "cinema", "netflix", "spotify", "game", "entertainment", "fun"),
    ),
    (
        "Healthcare",
        ("hospital", "doctor", "medicine", "pharmacy", "health", "medical", "clinic"),
    ),
    ("Utilities", ("electricity", "water", "internet", "phone", "utility", "bill")),
    (
        "Education",
        ("school", "college", "course", "book", "education", "learning", "tuition"),
    ),
    ("Travel", ("hotel", "flight", "vacation", "trip", "travel", "booking")),
    (
        "Groceries",
        ("grocery", "supermarket", "vegetables", "fruits", "milk", "bread"),
    ),
    ("Gas", ("petrol", "diesel", "fuel", "gas station", "pump")),
    ("Insurance", ("insurance", "premium", "policy")),
    ("Rent", ("rent", "rental", "apartment", "house")),
    ("Subscriptions", ("subscription", "monthly", "yearly", "recurring")),
)

# (threshold percent, advice above threshold, advice otherwise)
CATEGORY_ADVICE: dict[str, tuple[float, str, str]] = {
    "Food & Dining": (
        30,
        "Consider meal planning and cooking at home to reduce dining expenses.",
        "Good balance on food spending.",
    ),
    "Transportation": (
        20,
        "Consider carpooling or public transport to reduce transportation costs.",
        "Transportation spending looks reasonable.",
    ),
    "Shopping": (
        25,
        "Try the 24-hour rule: wait a day before making non-essential purchases.",
        "Shopping habits look controlled.",
    ),
    "Entertainment": (
        15,
        "Look for free or low-cost entertainment options.",
        "Entertainment spending is well managed.",
    ),
    "Groceries": (
        20,
        "Consider bulk buying and meal planning to optimize grocery spending.",
        "Grocery spending is efficient.",
    ),
}
DEFAULT_ADVICE = "Consider if this spending aligns with your financial goals."


class LedgerRow(Protocol):
    amount: float
    date: date


def suggest_category(description: str) -> str:
    text = description.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return FALLBACK_CATEGORY


def category_advice(category: str, percentage: float) -> str:
    rule = CATEGORY_ADVICE.get(category)
    if rule is None:
        return DEFAULT_ADVICE
    threshold, above, below = rule
    return above if percentage > threshold else below


def _total(rows: Iterable[LedgerRow]) -> float:
    return sum(float(row.amount) for row in rows)


def weekday_weekend_averages(expenses: Iterable[LedgerRow]) -> tuple[float, float]:
    weekday: list[float] = []
    weekend: list[float] = []
    for row in expenses:
        bucket = weekend if row.date.weekday() >= 5 else weekday
        bucket.append(float(row.amount))
    weekday_avg = sum(weekday) / max(len(weekday), 1)
    weekend_avg = sum(weekend) / max(len(weekend), 1)
    return weekday_avg, weekend_avg


def spending_insights(
    expenses: list, income: list, time_range: str = "month"
) -> list[dict[str, str]]:
    insights: list[dict[str, str]] = []
    total_expenses = _total(expenses)
    total_income = _total(income)

    by_category: dict[str, float] = defaultdict(float)
    for row in expenses:
        by_category[row.category] += float(row.amount)
    if by_category and total_expenses > 0:
        top_name, top_total = max(by_category.items(), key=lambda item: item[1])
        percentage = round(top_total / total_expenses * 100, 1)
        insights.append(
            {
                "type": "category",
                "message": (
                    f"Your top spending category is {top_name} "
                    f"({percentage:.1f}% of total expenses)"
                ),
                "suggestion": category_advice(top_name, percentage),
            }
        )

    if total_income > 0:
        savings_rate = round((total_income - total_expenses) / total_income * 100, 1)
        if savings_rate < 0:
            insights.append(
                {
                    "type": "budget",
                    "message": (
                        f"You're spending more than you earn this {time_range}. "
                        "Consider reducing expenses."
                    ),
                    "suggestion": "Review your spending patterns and identify areas to cut back.",
                }
            )
        elif savings_rate < 10:
            insights.append(
                {
                    "type": "budget",
                    "message": (
                        f"Your savings rate is {savings_rate:.1f}%. Consider increasing "
                        "it to 20% for better financial health."
                    ),
                    "suggestion": "Look for ways to reduce expenses or increase income.",
                }
            )
        else:
            insights.append(
                {
                    "type": "budget",
                    "message": (
                        f"Great job! You're saving {savings_rate:.1f}% of your income "
                        f"this {time_range}."
                    ),
                    "suggestion": "Consider investing your savings for long-term growth.",
                }
            )

    weekday_avg, weekend_avg = weekday_weekend_averages(expenses)
    if weekend_avg > weekday_avg * 1.5:
        insights.append(
            {
                "type": "pattern",
                "message": (
                    "You spend significantly more on weekends. Consider planning "
                    "weekend activities with a budget."
                ),
                "suggestion": "Set a weekend spending limit to control expenses.",
            }
        )
    return insights


def budget_forecast(
    expenses: list, months: int = 3, *, today: Optional[date] = None
) -> list[dict[str, object]]:
    monthly: dict[str, float] = defaultdict(float)
    for row in expenses:
        monthly[f"{row.date.year:04d}-{row.date.month:02d}"] += float(row.amount)
    if not monthly:
        return []
    average = sum(monthly.values()) / len(monthly)

    first_this = (today or today_local()).replace(day=1)
    forecast = []
    for i in range(1, months + 1):
        target = add_months(first_this, i)
        forecast.append(
            {
                "month": target.strftime("%B %Y"),
                "period": f"{target.year:04d}-{target.month:02d}",
                "predictedAmount": round(average),
                "confidence": round(max(0.6, 1 - i * 0.1), 2),
            }
        )
    return forecast


def answer_query(query: str, expenses: list, income: list) -> str:
    q = query.lower()
    if "total" in q and "expense" in q:
        return f"Total expenses: {_total(expenses):,.2f}"
    if "total" in q and "income" in q:
        return f"Total income: {_total(income):,.2f}"
    if "category" in q:
        seen: list[str] = []
        for row in expenses:
            if row.category not in seen:
                seen.append(row.category)
        return f"Expense categories: {', '.join(seen)}"
    return (
        "I can help you analyze your expenses. Try asking about totals, "
        "categories, or spending patterns."
    )
