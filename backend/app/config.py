# backend/app/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/learnledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///learnledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Atomic operations: attempts before a version conflict surfaces to the caller
    ATOMIC_RETRY_ATTEMPTS = int(os.environ.get("ATOMIC_RETRY_ATTEMPTS", "5"))
    ATOMIC_RETRY_BACKOFF = float(os.environ.get("ATOMIC_RETRY_BACKOFF", "0.05"))

    # Identity asserted by the upstream auth provider
    AUTH_USER_HEADER = os.environ.get("AUTH_USER_HEADER", "X-Auth-User")

    LEADERBOARD_LIMIT = int(os.environ.get("LEADERBOARD_LIMIT", "50"))
