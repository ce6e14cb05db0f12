from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import structlog
from psycopg2 import extras
from psycopg2.pool import SimpleConnectionPool

from copyright_registry import config

logger = structlog.get_logger()

# Connection pool configuration
MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 10

# Global connection pool
_connection_pool = None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS registry_events (
    sequence BIGINT PRIMARY KEY,
    name TEXT NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_registry_events_name ON registry_events (name);
"""


def initialize_connection_pool(dsn: Optional[str] = None):
    """Initialize the event store connection pool."""
    global _connection_pool
    if _connection_pool is None:
        try:
            _connection_pool = SimpleConnectionPool(
                MIN_CONNECTIONS,
                MAX_CONNECTIONS,
                dsn or config.REGISTRY_DB_DSN
            )
            logger.info("Event store connection pool initialized",
                        min_connections=MIN_CONNECTIONS,
                        max_connections=MAX_CONNECTIONS)
        except Exception as e:
            logger.error("Failed to initialize event store connection pool", error=str(e))
            raise


def close_connection_pool():
    """Close every pooled connection."""
    global _connection_pool
    if _connection_pool is not None:
        _connection_pool.closeall()
        _connection_pool = None
        logger.info("Event store connection pool closed")


@contextmanager
def get_db_connection():
    """Context manager for pooled database connections with automatic cleanup."""
    if _connection_pool is None:
        initialize_connection_pool()

    conn = None
    try:
        conn = _connection_pool.getconn()
        yield conn
    except Exception as e:
        if conn:
            conn.rollback()
        logger.error("Database operation failed", error=str(e))
        raise
    finally:
        if conn:
            _connection_pool.putconn(conn)


def create_schema():
    """Create the event table if it does not exist."""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
            conn.commit()
    logger.info("Event store schema ensured")


def insert_event(sequence: int, name: str, payload: Dict[str, Any]):
    """Persist a registry event."""
    sql = """
    INSERT INTO registry_events (sequence, name, payload)
    VALUES (%s, %s, %s)
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (sequence, name, extras.Json(payload)))
                conn.commit()

        logger.debug("Event inserted", sequence=sequence, name=name)

    except Exception as e:
        logger.error("Failed to insert event", sequence=sequence, name=name, error=str(e))
        raise


def get_events(name: Optional[str] = None, after: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
    """Fetch events in sequence order, optionally filtered by name."""
    sql = "SELECT sequence, name, payload, created_at FROM registry_events WHERE sequence > %s"
    params: List[Any] = [after]

    if name:
        sql += " AND name = %s"
        params.append(name)

    sql += " ORDER BY sequence LIMIT %s"
    params.append(limit)

    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                results = cur.fetchall()

        return [dict(row) for row in results]

    except Exception as e:
        logger.error("Failed to get events", name=name, error=str(e))
        raise


def count_events(name: Optional[str] = None) -> int:
    """Count stored events, optionally only those with the given name."""
    sql = "SELECT COUNT(*) FROM registry_events"
    params: List[Any] = []
    if name:
        sql += " WHERE name = %s"
        params.append(name)

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchone()[0]


def get_last_sequence() -> int:
    """Highest stored sequence number, 0 for an empty store."""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT COALESCE(MAX(sequence), 0) FROM registry_events")
            return cur.fetchone()[0]


def check_database_connection() -> bool:
    """Check if the event store connection is working."""
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                result = cur.fetchone()

        return result[0] == 1

    except Exception as e:
        logger.error("Event store connection check failed", error=str(e))
        return False
