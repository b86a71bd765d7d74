"""
leadpull.db

Single source of truth for database connectivity.

Notes:
- DATABASE_URL is expected to be provided via environment (or .env).
- Nothing connects at import time; get_engine() builds the engine on first
  use, and tests bring their own engine.
- Common scheme/driver variants are normalized.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

_engine: Optional[Engine] = None


def normalize_database_url(raw: str) -> str:
    """
    Normalize DATABASE_URL variants to something SQLAlchemy can reliably use.

    We prefer psycopg2 (declared in pyproject as psycopg2-binary).

    Normalizations:
    - postgres://  -> postgresql://
    - postgresql+psycopg:// -> postgresql+psycopg2://
    """
    url = (raw or "").strip()

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]

    # If someone set psycopg3 dialect, normalize to psycopg2 dialect.
    if url.startswith("postgresql+psycopg://"):
        url = "postgresql+psycopg2://" + url[len("postgresql+psycopg://") :]

    return url


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine, creating it from DATABASE_URL on first call."""
    global _engine
    if _engine is None:
        raw = os.environ.get("DATABASE_URL", "")
        if not raw:
            raise RuntimeError(
                "DATABASE_URL is not set in environment. "
                "Load the secret env file (or .env) before running flows."
            )
        _engine = create_engine(normalize_database_url(raw), future=True, pool_pre_ping=True)
    return _engine
