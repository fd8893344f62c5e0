"""vinteg_shared.database — Lazy SQLAlchemy engine and parameterized query helpers.

All SQL goes through text() with bound parameters; rows come back as plain
dicts. The engine is created on first use so a cold start without
DATABASE_URL still answers requests that never touch the database (health,
preflight) and reports the configuration problem verbatim on those that do.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from vinteg_shared.config import DATABASE_POOL_SIZE, DATABASE_URL
from vinteg_shared.errors import ConfigurationError, Conflict

logger = logging.getLogger(__name__)

__all__ = [
    "_execute",
    "_fetch_all",
    "_fetch_one",
    "_get_engine",
    "_normalize_url",
    "_reset_engine",
]

# Postgres SQLSTATE for unique_violation.
_UNIQUE_VIOLATION = "23505"

_engine: Optional[Engine] = None


def _normalize_url(url: str) -> str:
    """Hosted Postgres hands out postgresql:// (or postgres://); pin the psycopg driver."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def _get_engine(url: Optional[str] = None) -> Engine:
    """Get (or create) the engine singleton."""
    global _engine
    if _engine is None:
        database_url = url or DATABASE_URL
        if not database_url:
            raise ConfigurationError("Configuration Error: DATABASE_URL is not set")
        _engine = create_engine(
            _normalize_url(database_url),
            pool_size=DATABASE_POOL_SIZE,
            pool_pre_ping=True,
        )
    return _engine


def _reset_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == _UNIQUE_VIOLATION or "unique" in str(orig).lower()


def _fetch_all(sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    with _get_engine().connect() as conn:
        result = conn.execute(text(sql), dict(params or {}))
        return [dict(row) for row in result.mappings()]


def _fetch_one(sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    rows = _execute(sql, params, returning=True)
    return rows[0] if rows else None


def _execute(
    sql: str,
    params: Optional[Mapping[str, Any]] = None,
    *,
    returning: bool = False,
    conflict_message: str = "Conflict",
) -> List[Dict[str, Any]]:
    """Run one statement in its own transaction.

    Unique violations become Conflict (409); other integrity errors propagate.
    """
    try:
        with _get_engine().begin() as conn:
            result = conn.execute(text(sql), dict(params or {}))
            if returning and result.returns_rows:
                return [dict(row) for row in result.mappings()]
            return []
    except IntegrityError as exc:
        if _is_unique_violation(exc):
            raise Conflict(conflict_message) from exc
        raise
