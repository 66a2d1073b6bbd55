"""Table creation helpers.

Alembic scripts under ``alembic/`` are the production path; these helpers
create the schema directly for new wallets and tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from slate_wallet.engine.models.base import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


async def run_auto_migrate(engine: AsyncEngine) -> None:
    """Create all tables defined by ORM models."""
    # Import all models to register them with Base.metadata
    import slate_wallet.engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables(engine: AsyncEngine) -> None:
    """Drop all tables (test/dev utility only)."""
    import slate_wallet.engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
