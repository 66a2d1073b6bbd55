"""Database engine factory.

Provides async SQLAlchemy engine creation with support for:
- SQLite (aiosqlite driver), the default wallet store
- Other async backends when a DSN is configured (driver installed separately)
- Configurable pool sizes and echo/debug settings
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

if TYPE_CHECKING:
    from slate_wallet.config.settings import DatabaseConfig


def create_engine(config: DatabaseConfig, dsn: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Args:
        config: Database configuration with pool settings.
        dsn: Resolved connection string.

    Returns:
        A configured ``AsyncEngine`` ready for use.
    """
    kwargs: dict = {
        "echo": config.debug_sql,
    }

    # SQLite doesn't support pool settings in the same way
    if "sqlite" not in dsn:
        kwargs["pool_size"] = config.max_idle_connections
        kwargs["max_overflow"] = config.max_open_connections - config.max_idle_connections
        kwargs["pool_pre_ping"] = True

    return create_async_engine(dsn, **kwargs)
