# backend/orderdesk/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///orderdesk.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Storefront / admin dev servers allowed to call the API from a browser
    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        (
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        ),
    )

    # Flat tax applied to (subtotal - discount). 0 disables tax.
    TAX_RATE_BPS = _env_int("TAX_RATE_BPS", 0)

    DEFAULT_PAGE_SIZE = _env_int("DEFAULT_PAGE_SIZE", 20)
    MAX_PAGE_SIZE = _env_int("MAX_PAGE_SIZE", 100)

    # Retries for lock contention / optimistic locking conflicts at checkout
    CHECKOUT_RETRY_ATTEMPTS = _env_int("CHECKOUT_RETRY_ATTEMPTS", 5)

    # A reward row left in "processing" longer than this may be reclaimed by a retried batch
    REWARD_PROCESSING_STALE_SECONDS = _env_int("REWARD_PROCESSING_STALE_SECONDS", 900)

    # Test card numbers the simulated authorizer always declines
    CARD_DECLINE_PREFIXES = ("4000000000000002",)
