from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

import pg8000.dbapi as pgapi

from app.core.config import db_configured, settings
from app.core.errors import StorageUnavailable
from app.db.schema import ensure_schema

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DB_LOCAL = threading.local()
_SCHEMA_READY = False
_SCHEMA_LOCK = threading.Lock()

# Driver failures that say nothing about the query itself.
TRANSIENT_ERRORS = (pgapi.InterfaceError, pgapi.OperationalError, OSError)


def _connect():
    if not db_configured():
        raise RuntimeError("Database configuration is missing")
    try:
        return pgapi.connect(
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
            user=settings.db_user,
            password=settings.db_password,
        )
    except TRANSIENT_ERRORS as exc:
        raise StorageUnavailable(f"Could not connect to ticket store: {exc}") from exc


def _ensure_schema(conn) -> None:
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return
        ensure_schema(conn)
        _SCHEMA_READY = True


def get_conn():
    conn = getattr(_DB_LOCAL, "conn", None)
    if conn is None:
        conn = _connect()
        conn.autocommit = True
        _DB_LOCAL.conn = conn
    else:
        try:
            cur = conn.cursor()
            cur.execute("SELECT 1")
            cur.close()
        except Exception:
            conn = _connect()
            conn.autocommit = True
            _DB_LOCAL.conn = conn
    if settings.auto_migrate:
        _ensure_schema(conn)
    return conn


def _drop_local_conn() -> None:
    _DB_LOCAL.conn = None


def fetch_all(sql: str, params: tuple = ()) -> list[dict]:
    conn = get_conn()
    try:
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        columns = [col[0] for col in cur.description]
        cur.close()
    except TRANSIENT_ERRORS as exc:
        _drop_local_conn()
        raise StorageUnavailable(f"Ticket store read failed: {exc}") from exc
    return [dict(zip(columns, row)) for row in rows]


def fetch_one(sql: str, params: tuple = ()) -> Optional[dict]:
    conn = get_conn()
    try:
        cur = conn.cursor()
        cur.execute(sql, params)
        row = cur.fetchone()
        columns = [col[0] for col in cur.description] if row is not None else []
        cur.close()
    except TRANSIENT_ERRORS as exc:
        _drop_local_conn()
        raise StorageUnavailable(f"Ticket store read failed: {exc}") from exc
    if row is None:
        return None
    return dict(zip(columns, row))


def run_transaction(handler: Callable[..., T]) -> T:
    conn = _connect()
    try:
        conn.autocommit = False
        if settings.auto_migrate:
            _ensure_schema(conn)
        result = handler(conn)
        conn.commit()
        return result
    except TRANSIENT_ERRORS as exc:
        _safe_rollback(conn)
        raise StorageUnavailable(f"Ticket store transaction failed: {exc}") from exc
    except Exception:
        _safe_rollback(conn)
        raise
    finally:
        try:
            conn.close()
        except TRANSIENT_ERRORS:
            logger.warning("Closing a broken ticket store connection failed")


def _safe_rollback(conn) -> None:
    try:
        conn.rollback()
    except TRANSIENT_ERRORS:
        logger.warning("Rollback skipped, connection already lost")


def rows_as_dicts(cur) -> list[dict]:
    rows = cur.fetchall()
    columns = [col[0] for col in cur.description]
    return [dict(zip(columns, row)) for row in rows]


def with_storage_retry(
    operation: Callable[[], T],
    attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying on ``StorageUnavailable`` with linear backoff.

    The last failure is re-raised once ``attempts`` runs have failed.
    """
    attempts = settings.storage_retry_attempts if attempts is None else attempts
    backoff_seconds = (
        settings.storage_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
    )
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StorageUnavailable:
            if attempt == attempts:
                raise
            delay = backoff_seconds * attempt
            logger.warning(
                "Ticket store unavailable (attempt %s/%s), retrying in %.1fs",
                attempt,
                attempts,
                delay,
            )
            sleep(delay)
    raise AssertionError("unreachable")
