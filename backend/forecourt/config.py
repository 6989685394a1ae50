# backend/forecourt/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance folder unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///forecourt.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bounded retry for store contention on the single-open-per-nozzle check.
    # Financial postings are never retried.
    SHIFT_OPEN_RETRY_ATTEMPTS = int(os.environ.get("SHIFT_OPEN_RETRY_ATTEMPTS", "3"))
    SHIFT_OPEN_RETRY_BACKOFF = float(os.environ.get("SHIFT_OPEN_RETRY_BACKOFF", "0.05"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SHIFT_OPEN_RETRY_BACKOFF = 0.0
