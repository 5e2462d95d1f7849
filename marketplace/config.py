"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Final, Optional

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    fallback_path = BASE_DIR / "db" / "app.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Marketplace API")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py + Docker)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Authentication
    JWT_SECRET_KEY: Final[str] = os.getenv("JWT_SECRET_KEY", SECRET_KEY)
    JWT_ACCESS_TOKEN_MINUTES: Final[int] = int(os.getenv("JWT_ACCESS_TOKEN_MINUTES", "15"))
    JWT_REFRESH_TOKEN_DAYS: Final[int] = int(os.getenv("JWT_REFRESH_TOKEN_DAYS", "7"))
    PASSWORD_RESET_TOKEN_MINUTES: Final[int] = int(os.getenv("PASSWORD_RESET_TOKEN_MINUTES", "60"))
    MIN_PASSWORD_LENGTH: Final[int] = int(os.getenv("MIN_PASSWORD_LENGTH", "8"))
    ADMIN_EMAIL: Final[Optional[str]] = os.getenv("ADMIN_EMAIL")
    ADMIN_PASSWORD: Final[Optional[str]] = os.getenv("ADMIN_PASSWORD")

    # Commerce policy knobs
    DEFAULT_CURRENCY: Final[str] = os.getenv("DEFAULT_CURRENCY", "USD")
    TAX_RATE: Final[Decimal] = Decimal(os.getenv("TAX_RATE", "0.08"))
    VENDOR_SHIPPING_FLAT_RATE: Final[Decimal] = Decimal(os.getenv("VENDOR_SHIPPING_FLAT_RATE", "5.00"))
    DEFAULT_COMMISSION_RATE: Final[Decimal] = Decimal(os.getenv("DEFAULT_COMMISSION_RATE", "10.0"))
    RETURN_WINDOW_DAYS: Final[int] = int(os.getenv("RETURN_WINDOW_DAYS", "30"))
    LOW_STOCK_THRESHOLD: Final[int] = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
    PAYMENT_PROVIDER: Final[str] = os.getenv("PAYMENT_PROVIDER", "stub")
    PAYMENT_REFUND_FAILURE_PROBABILITY: Final[float] = float(os.getenv("PAYMENT_REFUND_FAILURE_PROBABILITY", "0.0"))

    # Listing endpoints
    DEFAULT_PAGE_SIZE: Final[int] = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE: Final[int] = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    OBSERVABILITY_ENABLED: Final[bool] = _str_to_bool(os.getenv("OBSERVABILITY_ENABLED"), default=True)

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["JWT_SECRET_KEY"] = cls.JWT_SECRET_KEY
        app.config["JWT_TOKEN_LOCATION"] = ["headers"]
        app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(minutes=cls.JWT_ACCESS_TOKEN_MINUTES)
        app.config["JWT_REFRESH_TOKEN_EXPIRES"] = timedelta(days=cls.JWT_REFRESH_TOKEN_DAYS)
        app.config["RETURN_WINDOW_DAYS"] = cls.RETURN_WINDOW_DAYS
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["OBSERVABILITY_ENABLED"] = cls.OBSERVABILITY_ENABLED
        app.config["JSON_SORT_KEYS"] = False
