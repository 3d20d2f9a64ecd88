import os
from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

SUPPORTED_DB_TYPES = ("sqlite", "mysql")


class Settings:
    def __init__(
        self,
        db_type: str,
        database_url: str,
        timezone: str,
        validate_labels: bool,
        log_level: str,
        mysql_ssl_ca: Optional[str] = None,
    ) -> None:
        self.db_type = db_type
        self.database_url = database_url
        self.timezone = timezone
        self.validate_labels = validate_labels
        self.log_level = log_level
        self.mysql_ssl_ca = mysql_ssl_ca


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _mysql_url() -> str:
    host = os.getenv("EXPENSES_MYSQL_HOST", "localhost")
    port = int(os.getenv("EXPENSES_MYSQL_PORT", "3306"))
    user = os.getenv("EXPENSES_MYSQL_USER", "root")
    password = os.getenv("EXPENSES_MYSQL_PASSWORD", "")
    database = os.getenv("EXPENSES_MYSQL_DATABASE", "expense_manager")
    credentials = quote_plus(user)
    if password:
        credentials += f":{quote_plus(password)}"
    return f"mysql+pymysql://{credentials}@{host}:{port}/{database}?charset=utf8mb4"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    db_type = os.getenv("EXPENSES_DB_TYPE", "sqlite").strip().lower()
    if db_type not in SUPPORTED_DB_TYPES:
        raise ValueError(
            f"Unsupported EXPENSES_DB_TYPE '{db_type}'; use one of "
            + ", ".join(SUPPORTED_DB_TYPES)
        )
    if db_type == "mysql":
        default_url = _mysql_url()
    else:
        default_url = f"sqlite:///{_ensure_data_dir() / 'expenses.db'}"
    database_url = os.getenv("EXPENSES_DATABASE_URL", default_url)
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    validate_labels = _env_flag("EXPENSES_VALIDATE_LABELS")
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    mysql_ssl_ca = os.getenv("EXPENSES_MYSQL_SSL_CA") or None
    return Settings(
        db_type=db_type,
        database_url=database_url,
        timezone=timezone,
        validate_labels=validate_labels,
        log_level=log_level,
        mysql_ssl_ca=mysql_ssl_ca,
    )
