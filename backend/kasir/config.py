# backend/kasir/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/kasir.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///kasir.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Loyalty discount for sales attributed to a registered customer (basis points)
    CUSTOMER_DISCOUNT_BPS = int(os.environ.get("CUSTOMER_DISCOUNT_BPS", "1000"))

    DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "10"))
    MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", "100"))

    SESSION_HOURS = int(os.environ.get("SESSION_HOURS", "24"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bcrypt cost factor; tests lower it to keep fixtures fast
    BCRYPT_LOG_ROUNDS = int(os.environ.get("BCRYPT_LOG_ROUNDS", "12"))
