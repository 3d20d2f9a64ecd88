import logging

from sqlalchemy.engine import Engine

from backends import backend_for
from database import Base
from models import Category, IncomeSource

logger = logging.getLogger(__name__)


DEFAULT_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("Groceries", "#e74c3c"),
    ("Breakfast", "#f1c40f"),
    ("Kids", "#f39c12"),
    ("Daily Items", "#2ecc71"),
    ("Transportation", "#9b59b6"),
    ("Entertainment", "#1abc9c"),
    ("Healthcare", "#e67e22"),
    ("Other", "#95a5a6"),
)

DEFAULT_INCOME_SOURCES: tuple[tuple[str, str], ...] = (
    ("Salary", "#27ae60"),
    ("Freelance", "#3498db"),
    ("Business", "#e67e22"),
    ("Investment", "#9b59b6"),
    ("Rental", "#1abc9c"),
    ("Bonus", "#f39c12"),
)


def initialize_schema(engine: Engine) -> None:
    """Create missing tables and insert default lookup rows.

    Safe to run on every start: tables are only created when absent and
    default rows are inserted with insert-or-ignore, so existing rows (and
    their colors) are never touched. Errors propagate to the caller.
    """
    backend = backend_for(engine)
    Base.metadata.create_all(engine, checkfirst=True)

    inserted = 0
    with engine.begin() as conn:
        for model, defaults in (
            (Category, DEFAULT_CATEGORIES),
            (IncomeSource, DEFAULT_INCOME_SOURCES),
        ):
            stmt = backend.insert_ignore(model.__table__)
            for name, color in defaults:
                result = conn.execute(stmt.values(name=name, color=color))
                inserted += max(result.rowcount, 0)

    logger.info(
        f"schema_initialized: backend={backend.name} default_rows_inserted={inserted}"
    )
