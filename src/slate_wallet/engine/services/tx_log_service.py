"""Transaction record queries."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from slate_wallet.engine.models.tx_log import TxDirection, TxLogEntry, TxState
from slate_wallet.errors.definitions import StateError

if TYPE_CHECKING:
    from slate_wallet.engine.client import WalletSession

# Sent transactions still holding reservations
PENDING_STATES: tuple[TxState, ...] = (
    TxState.LOCKED,
    TxState.EXCHANGING,
    TxState.RETURNED,
    TxState.FINALIZED,
)


class TxLogService:
    """Read side of the transaction records."""

    def __init__(self, session: WalletSession) -> None:
        self._session = session

    async def find(self, slate_id: str) -> TxLogEntry | None:
        async with self._session.datastore.session() as db:
            return await db.get(TxLogEntry, slate_id)

    async def get_transaction(self, slate_id: str) -> TxLogEntry:
        """Look up a record by slate id.

        Raises:
            StateError: If no transaction with this id exists.
        """
        entry = await self.find(slate_id)
        if entry is None:
            msg = f"transaction {slate_id} not found"
            raise StateError(msg)
        return entry

    async def list_transactions(
        self,
        *,
        account: str | None = None,
        slate_id: str | None = None,
    ) -> list[TxLogEntry]:
        stmt = select(TxLogEntry)
        if account is not None:
            stmt = stmt.where(TxLogEntry.account == account)
        if slate_id is not None:
            stmt = stmt.where(TxLogEntry.slate_id == slate_id)
        stmt = stmt.order_by(TxLogEntry.created_at, TxLogEntry.slate_id)
        async with self._session.datastore.session() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def expired(self, chain_height: int) -> list[TxLogEntry]:
        """Pending sent transactions whose TTL cutoff is below ``chain_height``."""
        stmt = select(TxLogEntry).where(
            TxLogEntry.direction == TxDirection.SENT.value,
            TxLogEntry.state.in_([s.value for s in PENDING_STATES]),
            TxLogEntry.ttl_cutoff_height.is_not(None),
            TxLogEntry.ttl_cutoff_height < chain_height,
        )
        async with self._session.datastore.session() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())
