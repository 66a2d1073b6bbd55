"""Reservation keeper: the single owner of output selection and locking.

Every mutation of the output ledger and the transaction records runs as a
request on one asyncio task, one at a time, each inside its own database
transaction. Concurrent sends therefore never observe a half-applied lock
and can never reserve the same output twice.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from slate_wallet.engine.models.output import Output, OutputStatus
from slate_wallet.engine.models.reservation import Reservation, ReservationStatus
from slate_wallet.engine.models.tx_log import (
    CANCELLABLE,
    TxDirection,
    TxLogEntry,
    TxState,
    check_transition,
)
from slate_wallet.engine.services.output_service import Selection, SelectionStrategy, select_coins
from slate_wallet.errors.definitions import StateError, StorageError
from slate_wallet.errors.wallet_errors import WalletError
from slate_wallet.keychain.keys import commitment

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from slate_wallet.engine.client import WalletSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STOP = object()
_ERR_NOT_RUNNING = "Reservation keeper is not running. Call start() first."


@dataclass(frozen=True)
class NewOutput:
    commit: str
    value: int
    key_index: int


@dataclass(frozen=True)
class LockResult:
    """Outcome of a lock: the selection actually reserved and its change."""

    selection: Selection
    change_outputs: tuple[NewOutput, ...]
    reselected: bool


@dataclass
class _Request:
    name: str
    op: Callable[[AsyncSession], Awaitable[Any]]
    future: asyncio.Future[Any]


class ReservationKeeper:
    """Actor serializing all writes to outputs, reservations and tx records.

    Usage::

        keeper = ReservationKeeper(session)
        await keeper.start()
        selection = await keeper.select("default", 5_000_000_000, "smallest", chain_height=100)
        result = await keeper.lock(slate_id, selection, chain_height=100)
        ...
        await keeper.stop()
    """

    def __init__(self, session: WalletSession) -> None:
        self._session = session
        self._queue: asyncio.Queue[_Request | object] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="reservation-keeper")

    async def stop(self) -> None:
        """Finish queued requests, then stop the actor."""
        if self._task is None:
            return
        self._queue.put_nowait(_STOP)
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    # ------------------------------------------------------------------
    # Storage backend contract
    # ------------------------------------------------------------------

    async def select(
        self,
        account: str,
        amount: int,
        strategy: str | SelectionStrategy,
        *,
        chain_height: int,
    ) -> Selection:
        """Choose outputs covering ``amount`` plus fee without reserving them.

        Raises:
            ConfigError: If the strategy is unknown.
            InsufficientFunds: If no subset covers the amount.
        """
        parsed = SelectionStrategy.parse(strategy)

        async def op(db: AsyncSession) -> Selection:
            eligible = await self._eligible(db, account, chain_height, exclude=())
            return self._select_from(eligible, account, amount, parsed)

        return await self._submit("select", op)

    async def lock(
        self,
        slate_id: str,
        selection: Selection,
        *,
        chain_height: int,
        message: str | None = None,
        ttl_cutoff_height: int | None = None,
    ) -> LockResult:
        """Reserve the selected outputs for ``slate_id`` and record the transaction.

        If another send reserved any of the selected outputs first, a disjoint
        set is selected instead and ``LockResult.reselected`` is set.

        Raises:
            StateError: If ``slate_id`` is already recorded.
            InsufficientFunds: If the outputs were taken and no disjoint set covers
                the amount.
        """

        async def op(db: AsyncSession) -> LockResult:
            if await db.get(TxLogEntry, slate_id) is not None:
                msg = f"transaction {slate_id} is already recorded"
                raise StateError(msg)

            chosen = selection
            rows = await self._load_outputs(db, selection.input_ids)
            taken = [
                oid
                for oid in selection.input_ids
                if oid not in rows or rows[oid].status != OutputStatus.UNSPENT
            ]
            if taken:
                logger.info(
                    "Outputs %s already reserved; reselecting for slate %s", taken, slate_id
                )
                eligible = await self._eligible(db, selection.account, chain_height, exclude=taken)
                chosen = self._select_from(
                    eligible, selection.account, selection.amount, selection.strategy
                )
                rows = await self._load_outputs(db, chosen.input_ids)

            for oid in chosen.input_ids:
                rows[oid].status = OutputStatus.LOCKED.value
                db.add(Reservation(output_id=oid, slate_id=slate_id))

            next_index = await self._next_key_index(db, chosen.account)
            change: list[NewOutput] = []
            for offset, value in enumerate(chosen.change):
                key_index = next_index + offset
                out = self._new_output(
                    chosen.account,
                    key_index,
                    value,
                    status=OutputStatus.UNCONFIRMED,
                    slate_id=slate_id,
                    is_change=True,
                )
                db.add(out)
                change.append(NewOutput(out.id, value, key_index))

            db.add(
                TxLogEntry(
                    slate_id=slate_id,
                    account=chosen.account,
                    direction=TxDirection.SENT.value,
                    state=TxState.LOCKED.value,
                    amount=chosen.amount,
                    fee=chosen.fee,
                    amount_debited=chosen.total_in,
                    amount_credited=chosen.total_change,
                    num_inputs=len(chosen.inputs),
                    num_outputs=len(change),
                    message=message or "",
                    ttl_cutoff_height=ttl_cutoff_height,
                )
            )
            return LockResult(chosen, tuple(change), reselected=bool(taken))

        return await self._submit("lock", op)

    async def transition(self, slate_id: str, target: TxState, **fields: Any) -> TxLogEntry:
        """Move a transaction record to ``target``, updating extra columns.

        Raises:
            StateError: If the record is missing or the transition is not allowed.
        """

        async def op(db: AsyncSession) -> TxLogEntry:
            entry = await self._require_entry(db, slate_id)
            check_transition(entry.tx_state, target)
            entry.state = target.value
            for key, value in fields.items():
                setattr(entry, key, value)
            return entry

        entry = await self._submit("transition", op)
        self._record_metric(target)
        return entry

    async def cancel(self, slate_id: str) -> int:
        """Release every active reservation of ``slate_id`` and mark it Cancelled.

        Returns:
            The number of reservations released.

        Raises:
            StateError: If the record is missing or already terminal.
        """

        async def op(db: AsyncSession) -> int:
            entry = await self._require_entry(db, slate_id)
            if entry.tx_state not in CANCELLABLE:
                msg = f"cannot cancel transaction {slate_id} in state {entry.state}"
                raise StateError(msg)
            released = await self._release(db, slate_id)
            entry.state = TxState.CANCELLED.value
            return released

        released = await self._submit("cancel", op)
        self._record_metric(TxState.CANCELLED)
        logger.info("Cancelled transaction %s (%d reservations released)", slate_id, released)
        return released

    async def consume(self, slate_id: str) -> TxLogEntry:
        """Mark the reserved inputs spent after a successful broadcast.

        Raises:
            StateError: If the transaction is not Finalized.
        """

        async def op(db: AsyncSession) -> TxLogEntry:
            entry = await self._require_entry(db, slate_id)
            check_transition(entry.tx_state, TxState.POSTED)
            result = await db.execute(
                select(Reservation).where(
                    Reservation.slate_id == slate_id,
                    Reservation.status == ReservationStatus.ACTIVE.value,
                )
            )
            reservations = list(result.scalars().all())
            for res in reservations:
                res.status = ReservationStatus.CONSUMED.value
            await db.execute(
                update(Output)
                .where(Output.id.in_([r.output_id for r in reservations]))
                .values(status=OutputStatus.SPENT.value)
            )
            entry.state = TxState.POSTED.value
            return entry

        entry = await self._submit("consume", op)
        self._record_metric(TxState.POSTED)
        return entry

    async def create_output(
        self,
        account: str,
        value: int,
        *,
        height: int = 0,
        status: OutputStatus = OutputStatus.UNSPENT,
        slate_id: str = "",
        is_change: bool = False,
    ) -> Output:
        """Add an output under the next free key index of ``account``."""

        async def op(db: AsyncSession) -> Output:
            key_index = await self._next_key_index(db, account)
            out = self._new_output(
                account,
                key_index,
                value,
                status=status,
                slate_id=slate_id,
                is_change=is_change,
                height=height,
            )
            db.add(out)
            return out

        return await self._submit("create_output", op)

    async def record_received(
        self, slate_id: str, account: str, amount: int, message: str | None = None
    ) -> NewOutput:
        """Create the receiver's output and its Received transaction record.

        Raises:
            StateError: If this slate was already received.
        """

        async def op(db: AsyncSession) -> NewOutput:
            if await db.get(TxLogEntry, slate_id) is not None:
                msg = f"slate {slate_id} was already received"
                raise StateError(msg)
            key_index = await self._next_key_index(db, account)
            out = self._new_output(
                account,
                key_index,
                amount,
                status=OutputStatus.UNCONFIRMED,
                slate_id=slate_id,
            )
            db.add(out)
            db.add(
                TxLogEntry(
                    slate_id=slate_id,
                    account=account,
                    direction=TxDirection.RECEIVED.value,
                    state=TxState.RECEIVED.value,
                    amount=amount,
                    amount_credited=amount,
                    num_outputs=1,
                    message=message or "",
                )
            )
            return NewOutput(out.id, amount, key_index)

        result = await self._submit("record_received", op)
        self._record_metric(TxState.RECEIVED)
        return result

    async def confirm(self, slate_id: str, height: int) -> TxLogEntry:
        """Record that the transaction was mined at ``height``.

        Raises:
            StateError: If the record is missing or was never posted or received.
        """

        async def op(db: AsyncSession) -> TxLogEntry:
            entry = await self._require_entry(db, slate_id)
            if entry.tx_state not in (TxState.POSTED, TxState.RECEIVED):
                msg = f"transaction {slate_id} in state {entry.state} cannot be confirmed"
                raise StateError(msg)
            await db.execute(
                update(Output)
                .where(
                    Output.slate_id == slate_id,
                    Output.status == OutputStatus.UNCONFIRMED.value,
                )
                .values(status=OutputStatus.UNSPENT.value, height=height)
            )
            entry.confirmed = True
            return entry

        return await self._submit("confirm", op)

    async def reservation_status(self, slate_id: str) -> dict[str, int]:
        """Audit helper: reservation counts of ``slate_id`` by status."""
        stmt = (
            select(Reservation.status, func.count(Reservation.id))
            .where(Reservation.slate_id == slate_id)
            .group_by(Reservation.status)
        )
        async with self._session.datastore.session() as db:
            result = await db.execute(stmt)
            counts = {status.value: 0 for status in ReservationStatus}
            counts.update({row[0]: row[1] for row in result.all()})
            return counts

    # ------------------------------------------------------------------
    # Actor loop
    # ------------------------------------------------------------------

    async def _submit(self, name: str, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        if not self.is_running:
            raise RuntimeError(_ERR_NOT_RUNNING)
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await self._queue.put(_Request(name, op, future))
        return await future

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                break
            assert isinstance(item, _Request)
            await self._execute(item)
        self._fail_pending()

    async def _execute(self, request: _Request) -> None:
        if request.future.cancelled():
            return
        async with self._session.datastore.session() as db:
            try:
                result = await request.op(db)
                await db.commit()
            except WalletError as exc:
                await db.rollback()
                outcome: Any = exc
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.exception("Storage failure during %s", request.name)
                outcome = StorageError(f"{request.name} failed: {exc}")
            except Exception as exc:  # noqa: BLE001 - handed back to the caller
                await db.rollback()
                logger.exception("Unexpected failure during %s", request.name)
                outcome = exc
            else:
                outcome = None
        if request.future.done():
            return
        if outcome is None:
            request.future.set_result(result)
        else:
            request.future.set_exception(outcome)

    def _fail_pending(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if isinstance(item, _Request) and not item.future.done():
                item.future.set_exception(StorageError("reservation keeper stopped"))

    # ------------------------------------------------------------------
    # Internal helpers (run inside the actor)
    # ------------------------------------------------------------------

    def _select_from(
        self, eligible: list[Output], account: str, amount: int, strategy: SelectionStrategy
    ) -> Selection:
        cfg = self._session.config.wallet
        return select_coins(
            eligible,
            account,
            amount,
            strategy,
            max_outputs=cfg.max_outputs,
            num_change_outputs=cfg.num_change_outputs,
        )

    async def _eligible(
        self, db: AsyncSession, account: str, chain_height: int, *, exclude: list[str] | tuple
    ) -> list[Output]:
        active = select(Reservation.output_id).where(
            Reservation.status == ReservationStatus.ACTIVE.value
        )
        stmt = select(Output).where(
            Output.account == account,
            Output.status == OutputStatus.UNSPENT.value,
            Output.id.notin_(active),
        )
        if exclude:
            stmt = stmt.where(Output.id.notin_(list(exclude)))
        result = await db.execute(stmt)
        min_conf = self._session.config.wallet.minimum_confirmations
        return [o for o in result.scalars().all() if o.is_spendable(chain_height, min_conf)]

    @staticmethod
    async def _load_outputs(db: AsyncSession, ids: list[str]) -> dict[str, Output]:
        result = await db.execute(select(Output).where(Output.id.in_(ids)))
        return {o.id: o for o in result.scalars().all()}

    @staticmethod
    async def _next_key_index(db: AsyncSession, account: str) -> int:
        result = await db.execute(
            select(func.max(Output.key_index)).where(Output.account == account)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    @staticmethod
    async def _require_entry(db: AsyncSession, slate_id: str) -> TxLogEntry:
        entry = await db.get(TxLogEntry, slate_id)
        if entry is None:
            msg = f"transaction {slate_id} not found"
            raise StateError(msg)
        return entry

    @staticmethod
    async def _release(db: AsyncSession, slate_id: str) -> int:
        result = await db.execute(
            select(Reservation).where(
                Reservation.slate_id == slate_id,
                Reservation.status == ReservationStatus.ACTIVE.value,
            )
        )
        reservations = list(result.scalars().all())
        for res in reservations:
            res.status = ReservationStatus.RELEASED.value
        if reservations:
            await db.execute(
                update(Output)
                .where(
                    Output.id.in_([r.output_id for r in reservations]),
                    Output.status == OutputStatus.LOCKED.value,
                )
                .values(status=OutputStatus.UNSPENT.value)
            )
        # Outputs this transaction would have created never exist on chain.
        await db.execute(
            update(Output)
            .where(
                Output.slate_id == slate_id,
                Output.status == OutputStatus.UNCONFIRMED.value,
            )
            .values(status=OutputStatus.DELETED.value)
        )
        return len(reservations)

    def _new_output(
        self,
        account: str,
        key_index: int,
        value: int,
        *,
        status: OutputStatus,
        slate_id: str = "",
        is_change: bool = False,
        height: int = 0,
    ) -> Output:
        blind_pub = self._session.keychain.derive_public(account, key_index)
        return Output(
            id=commitment(value, blind_pub),
            account=account,
            key_index=key_index,
            value=value,
            height=height,
            status=status.value,
            slate_id=slate_id,
            is_change=is_change,
        )

    def _record_metric(self, state: TxState) -> None:
        metrics = self._session.metrics
        if metrics is not None:
            metrics.record_transition(state.value)
