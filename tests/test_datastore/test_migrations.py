"""Tests for auto-migration support: datastore/migrations.py."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from slate_wallet.datastore.migrations import drop_all_tables, run_auto_migrate


async def _tables(engine) -> set[str]:
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
        return {row[0] for row in result.fetchall()}


class TestAutoMigrate:
    """Test programmatic table creation and teardown."""

    async def test_auto_migrate_creates_all_tables(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
        await run_auto_migrate(engine)
        assert {"outputs", "reservations", "tx_log"}.issubset(await _tables(engine))
        await engine.dispose()

    async def test_active_reservation_index(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
        await run_auto_migrate(engine)
        async with engine.connect() as conn:
            result = await conn.execute(
                text("SELECT sql FROM sqlite_master WHERE name='ix_reservations_active_output'")
            )
            ddl = result.scalar()
        assert "UNIQUE" in ddl
        assert "status = 'active'" in ddl
        await engine.dispose()

    async def test_auto_migrate_idempotent(self) -> None:
        """Running auto-migrate twice should not raise."""
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
        await run_auto_migrate(engine)
        await run_auto_migrate(engine)
        await engine.dispose()

    async def test_drop_all_tables(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
        await run_auto_migrate(engine)
        assert await _tables(engine)
        await drop_all_tables(engine)
        assert not await _tables(engine)
        await engine.dispose()
