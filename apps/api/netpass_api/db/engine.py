"""Database engine builder (SSOT).

- Default pool: QueuePool with pool_pre_ping for PostgreSQL
- NETPASS_DB_POOL=nullpool|queuepool (nullpool for external poolers such as pgbouncer)
- SQLite (dev/tests): check_same_thread disabled, no pool tuning
"""

import logging
import os
import re

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def build_engine(database_url: str) -> Engine:
    """
    Build SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy database URL.

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        ValueError: If NETPASS_DB_POOL has an unknown value.

    Environment Variables:
        NETPASS_DB_POOL: Pool mode - "queuepool" (default) | "nullpool"
        NETPASS_DB_POOL_SIZE: QueuePool size (default: 5)
        NETPASS_DB_MAX_OVERFLOW: QueuePool overflow (default: 10)
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
        logger.debug("Database engine created: sqlite, url=%s", database_url)
        return engine

    pool_mode = os.getenv("NETPASS_DB_POOL", "queuepool").lower()

    if pool_mode == "nullpool":
        engine = create_engine(database_url, poolclass=NullPool, pool_pre_ping=True)
    elif pool_mode == "queuepool":
        engine = create_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=int(os.getenv("NETPASS_DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("NETPASS_DB_MAX_OVERFLOW", "10")),
        )
    else:
        raise ValueError(
            f"Invalid NETPASS_DB_POOL value: {pool_mode}. "
            "Must be 'nullpool' or 'queuepool'."
        )

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(database_url),
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """
    Build SQLAlchemy sessionmaker.

    Returns:
        sessionmaker instance configured with autocommit=False, autoflush=False,
        expire_on_commit=False (rows stay readable after the store commits).
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
