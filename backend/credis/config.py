# backend/credis/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/credis.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///credis.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Access and refresh tokens are signed with different keys so a leaked
    # access secret cannot mint refresh tokens.
    JWT_ACCESS_SECRET = os.environ.get("JWT_ACCESS_SECRET", SECRET_KEY)
    JWT_REFRESH_SECRET = os.environ.get("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")

    ACCESS_TOKEN_TTL_MINUTES = int(os.environ.get("ACCESS_TOKEN_TTL_MINUTES", str(30 * 24 * 60)))
    REFRESH_TOKEN_TTL_DAYS = int(os.environ.get("REFRESH_TOKEN_TTL_DAYS", "180"))

    # When enabled, require_auth also checks the access token row and its
    # refresh token in the database (slower, but honours logout immediately).
    AUTH_CHECK_REVOCATION = _env_bool("AUTH_CHECK_REVOCATION")

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Customers with an outstanding balance and no payment for this many days
    # are reported as overdue.
    OVERDUE_DAYS = int(os.environ.get("OVERDUE_DAYS", "30"))

    LEDGER_WRITE_ATTEMPTS = int(os.environ.get("LEDGER_WRITE_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.05"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Browser origins allowed to call the API with credentials (comma separated)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:5173").split(",") if o.strip()
    )


class TestConfig(Config):
    __test__ = False

    TESTING = True
    SECRET_KEY = "test-secret"
    JWT_ACCESS_SECRET = "test-access-secret"
    JWT_REFRESH_SECRET = "test-refresh-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BCRYPT_ROUNDS = 4
    LEDGER_RETRY_BACKOFF = 0.01
    AUTH_CHECK_REVOCATION = False
    LOG_LEVEL = "DEBUG"
