import datetime as dt
import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import assistant
from backends import backend_for
from config import get_settings
from database import SessionLocal, dispose_engine, engine
from models import LedgerKind
from periods import today_local
from schemas import AssistantQueryIn, CategorizeIn, ExpenseIn, IncomeIn
from seeds import initialize_schema
from services import (
    AnalyticsService,
    CategoryService,
    ExpenseService,
    IncomeService,
    IncomeSourceService,
    LedgerFilters,
    ReportService,
    SummaryService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

app = FastAPI(title="Expense Tracker")
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")


def format_currency(amount: Optional[Decimal]) -> str:
    return f"{float(amount or 0):,.2f}"


templates.env.filters["currency"] = format_currency


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    try:
        initialize_schema(engine)
    except Exception:
        logger.exception("startup: schema initialization failed, aborting")
        raise
    logger.info(f"startup: backend={backend_for(engine).name}")


@app.on_event("shutdown")
def shutdown_event():
    logger.info("shutdown: closing database engine")
    dispose_engine()


def _validation_message(exc: RequestValidationError) -> str:
    missing = [
        str(err["loc"][-1]) for err in exc.errors() if err.get("type") == "missing"
    ]
    if missing:
        return "Missing required fields: " + ", ".join(missing)
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"][1:]) or "request"
        parts.append(f"{field}: {err['msg']}")
    return "; ".join(parts)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": _validation_message(exc)})


@app.exception_handler(SQLAlchemyError)
async def store_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"store_error: path={request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def ledger_filters(
    month: Optional[int], year: Optional[int], label: Optional[str], on_date
) -> LedgerFilters:
    return LedgerFilters(month=month, year=year, label=label or None, on_date=on_date)


def render(request: Request, template: str, context: dict[str, object]) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context)


# Expenses


@app.get("/api/expenses")
def list_expenses(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    category: Optional[str] = None,
    on_date: Optional[dt.date] = Query(None, alias="date"),
    db: Session = Depends(get_db),
):
    filters = ledger_filters(month, year, category, on_date)
    return [expense.to_dict() for expense in ExpenseService(db).list(filters)]


@app.get("/api/expenses/{expense_id}")
def get_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        return ExpenseService(db).get(expense_id).to_dict()
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/expenses")
def create_expense(payload: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense_id = ExpenseService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": expense_id, "message": "Expense added successfully"}


@app.put("/api/expenses/{expense_id}")
def update_expense(expense_id: int, payload: ExpenseIn, db: Session = Depends(get_db)):
    try:
        result = ExpenseService(db).update(expense_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not result.rows_affected:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"message": "Expense updated successfully"}


@app.delete("/api/expenses/{expense_id}")
def delete_expense(expense_id: int, db: Session = Depends(get_db)):
    result = ExpenseService(db).delete(expense_id)
    if not result.rows_affected:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"message": "Expense deleted successfully"}


# Income


@app.get("/api/income")
def list_income(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    source: Optional[str] = None,
    on_date: Optional[dt.date] = Query(None, alias="date"),
    db: Session = Depends(get_db),
):
    filters = ledger_filters(month, year, source, on_date)
    return [income.to_dict() for income in IncomeService(db).list(filters)]


@app.get("/api/income/{income_id}")
def get_income(income_id: int, db: Session = Depends(get_db)):
    try:
        return IncomeService(db).get(income_id).to_dict()
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/income")
def create_income(payload: IncomeIn, db: Session = Depends(get_db)):
    try:
        income_id = IncomeService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": income_id, "message": "Income added successfully"}


@app.put("/api/income/{income_id}")
def update_income(income_id: int, payload: IncomeIn, db: Session = Depends(get_db)):
    try:
        result = IncomeService(db).update(income_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not result.rows_affected:
        raise HTTPException(status_code=404, detail="Income not found")
    return {"message": "Income updated successfully"}


@app.delete("/api/income/{income_id}")
def delete_income(income_id: int, db: Session = Depends(get_db)):
    result = IncomeService(db).delete(income_id)
    if not result.rows_affected:
        raise HTTPException(status_code=404, detail="Income not found")
    return {"message": "Income deleted successfully"}


# Lookups and reports


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category.to_dict() for category in CategoryService(db).list_all()]


@app.get("/api/income-sources")
def list_income_sources(db: Session = Depends(get_db)):
    return [source.to_dict() for source in IncomeSourceService(db).list_all()]


@app.get("/api/summary")
def api_summary(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    db: Session = Depends(get_db),
):
    return SummaryService(db).get_summary(month, year)


@app.get("/api/reports/financial")
def api_financial_report(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    db: Session = Depends(get_db),
):
    try:
        return ReportService(db).build_financial_report(month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/analytics/monthly")
def api_monthly_by_category(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    db: Session = Depends(get_db),
):
    try:
        return AnalyticsService(db).category_breakdown(month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/analytics/income-monthly")
def api_monthly_by_source(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    db: Session = Depends(get_db),
):
    try:
        return AnalyticsService(db).source_breakdown(month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/analytics/trends")
def api_expense_trends(
    months: int = Query(6, ge=1, le=120), db: Session = Depends(get_db)
):
    return AnalyticsService(db).monthly_trend(months, LedgerKind.expense)


@app.get("/api/analytics/income-trends")
def api_income_trends(
    months: int = Query(6, ge=1, le=120), db: Session = Depends(get_db)
):
    return AnalyticsService(db).monthly_trend(months, LedgerKind.income)


@app.get("/api/analytics/yearly")
def api_yearly_series(
    year: int = Query(..., ge=1000, le=9999), db: Session = Depends(get_db)
):
    return AnalyticsService(db).yearly_series(year)


@app.get("/api/database/status")
def api_database_status(db: Session = Depends(get_db)):
    backend = backend_for(db)
    timestamp = dt.datetime.now(dt.timezone.utc).isoformat()
    try:
        backend.ping(db)
    except SQLAlchemyError as exc:
        logger.exception("database_status: ping failed")
        return JSONResponse(
            status_code=500,
            content={
                "type": backend.name,
                "status": "error",
                "error": str(exc),
                "timestamp": timestamp,
            },
        )
    return {"type": backend.name, "status": "connected", "timestamp": timestamp}


# Assistant


def _assistant_window(
    month: Optional[int], year: Optional[int]
) -> tuple[LedgerFilters, str]:
    if month is None and year is None:
        today = today_local()
        return LedgerFilters(month=today.month, year=today.year), "month"
    if month is not None and year is None:
        raise ValueError("Year is required when month is given")
    return LedgerFilters(month=month, year=year), "month" if month else "year"


@app.post("/api/assistant/categorize")
def api_assistant_categorize(payload: CategorizeIn):
    return {"category": assistant.suggest_category(payload.description)}


@app.get("/api/assistant/insights")
def api_assistant_insights(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    db: Session = Depends(get_db),
):
    try:
        filters, time_range = _assistant_window(month, year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    expenses = ExpenseService(db).list(filters)
    income = IncomeService(db).list(filters)
    return assistant.spending_insights(expenses, income, time_range)


@app.get("/api/assistant/forecast")
def api_assistant_forecast(
    months: int = Query(3, ge=1, le=12), db: Session = Depends(get_db)
):
    return assistant.budget_forecast(ExpenseService(db).list(), months)


@app.post("/api/assistant/query")
def api_assistant_query(payload: AssistantQueryIn, db: Session = Depends(get_db)):
    try:
        filters, _ = _assistant_window(payload.month, payload.year)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    expenses = ExpenseService(db).list(filters)
    income = IncomeService(db).list(filters)
    return {"answer": assistant.answer_query(payload.query, expenses, income)}


# Dashboard


@app.get("/", response_class=HTMLResponse)
def dashboard(
    request: Request,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1000, le=9999),
    db: Session = Depends(get_db),
):
    today = today_local()
    month = month or today.month
    year = year or today.year
    filters = LedgerFilters(month=month, year=year)

    expenses = ExpenseService(db).list(filters)
    income = IncomeService(db).list(filters)
    recent = sorted(
        [("Expense", e.category, e) for e in expenses]
        + [("Income", i.source, i) for i in income],
        key=lambda item: (item[2].date, item[2].created_at),
        reverse=True,
    )[:10]
    colors = {c.name: c.color for c in CategoryService(db).list_all()}
    analytics = AnalyticsService(db)
    breakdown = analytics.category_breakdown(month, year)
    for row in breakdown:
        row["color"] = colors.get(row["category"], "#95a5a6")

    return render(
        request,
        "dashboard.html",
        {
            "month": month,
            "year": year,
            "summary": SummaryService(db).get_summary(month, year),
            "transaction_count": len(expenses) + len(income),
            "recent": recent,
            "breakdown": breakdown,
            "series": analytics.yearly_series(year),
        },
    )
