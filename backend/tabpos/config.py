# backend/tabpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tabpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tabpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Retries for lock/deadlock/optimistic-lock failures before surfacing
    # an InfrastructureError to the caller
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))
    TRANSACTION_RETRY_BACKOFF = float(os.environ.get("TRANSACTION_RETRY_BACKOFF", "0.1"))

    # Earn rows examined per expiry sweep page
    REWARD_EXPIRY_BATCH_SIZE = int(os.environ.get("REWARD_EXPIRY_BATCH_SIZE", "500"))
