"""Output service: coin selection, output queries and balance summary."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from slate_wallet.engine.models.output import Output, OutputStatus
from slate_wallet.engine.models.reservation import Reservation, ReservationStatus
from slate_wallet.engine.models.tx_log import TxLogEntry, TxState
from slate_wallet.errors.definitions import ConfigError, InsufficientFunds
from slate_wallet.slate.models import tx_fee

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from slate_wallet.engine.client import WalletSession


class SelectionStrategy(enum.StrEnum):
    """Which spendable outputs a send consumes.

    ``smallest`` takes the fewest smallest outputs that cover the amount,
    keeping change small. ``all`` sweeps every eligible output so the
    wallet ends up with a single change output.
    """

    SMALLEST = "smallest"
    ALL = "all"

    @classmethod
    def parse(cls, value: str | SelectionStrategy) -> SelectionStrategy:
        """Raises ConfigError for an unknown strategy name."""
        try:
            return cls(value)
        except ValueError:
            msg = f"unknown selection strategy: {value}"
            raise ConfigError(msg) from None


@dataclass(frozen=True)
class SelectedOutput:
    id: str
    value: int
    key_index: int


@dataclass(frozen=True)
class Selection:
    """Inputs chosen to fund a send, with the resulting fee and change."""

    account: str
    amount: int
    fee: int
    strategy: SelectionStrategy
    inputs: tuple[SelectedOutput, ...]
    change: tuple[int, ...]

    @property
    def input_ids(self) -> list[str]:
        return [o.id for o in self.inputs]

    @property
    def total_in(self) -> int:
        return sum(o.value for o in self.inputs)

    @property
    def total_change(self) -> int:
        return sum(self.change)


def _pick(
    eligible: Sequence[Output], target: int, strategy: SelectionStrategy, max_outputs: int
) -> list[Output] | None:
    """Outputs covering ``target``, or None when impossible."""
    ordered = sorted(eligible, key=lambda o: (o.value, o.id))
    if strategy is SelectionStrategy.ALL:
        candidates = ordered[-max_outputs:]
        return candidates if sum(o.value for o in candidates) >= target else None

    picked: list[Output] = []
    total = 0
    for out in ordered[:max_outputs]:
        if total >= target:
            break
        picked.append(out)
        total += out.value
    if total >= target:
        return picked
    # Too many small outputs: fall back to the largest ones.
    largest = sorted(ordered, key=lambda o: (-o.value, o.id))[:max_outputs]
    picked, total = [], 0
    for out in largest:
        picked.append(out)
        total += out.value
        if total >= target:
            return sorted(picked, key=lambda o: (o.value, o.id))
    return None


def _split_change(change: int, parts: int) -> tuple[int, ...]:
    if change <= 0:
        return ()
    parts = max(1, min(parts, change))
    share, remainder = divmod(change, parts)
    return tuple([share] * (parts - 1) + [share + remainder])


def select_coins(
    eligible: Sequence[Output],
    account: str,
    amount: int,
    strategy: SelectionStrategy,
    *,
    max_outputs: int,
    num_change_outputs: int,
) -> Selection:
    """Choose inputs for ``amount`` and compute fee and change.

    The fee depends on the number of inputs, so selection repeats with the
    updated target until the chosen set covers amount plus its own fee.

    Raises:
        InsufficientFunds: If no subset of ``eligible`` covers amount plus fee.
    """
    available = sum(o.value for o in eligible)
    num_outputs = 1 + num_change_outputs
    fee = tx_fee(1, num_outputs)
    for _ in range(len(eligible) + 1):
        picked = _pick(eligible, amount + fee, strategy, max_outputs)
        if picked is None:
            break
        fee = tx_fee(len(picked), num_outputs)
        total = sum(o.value for o in picked)
        if total >= amount + fee:
            return Selection(
                account=account,
                amount=amount,
                fee=fee,
                strategy=strategy,
                inputs=tuple(SelectedOutput(o.id, o.value, o.key_index) for o in picked),
                change=_split_change(total - amount - fee, num_change_outputs),
            )
    raise InsufficientFunds(needed=amount + fee, available=available)


class OutputService:
    """Read side of the output ledger.

    Writes (locking, change creation, release) happen inside the
    :class:`~slate_wallet.engine.services.reservation_keeper.ReservationKeeper`.
    """

    def __init__(self, session: WalletSession) -> None:
        self._session = session

    async def get_outputs(
        self,
        *,
        account: str | None = None,
        slate_id: str | None = None,
        statuses: Iterable[OutputStatus] | None = None,
        include_spent: bool = False,
    ) -> list[Output]:
        """Query outputs with optional filters, smallest value first."""
        stmt = select(Output)
        if account is not None:
            stmt = stmt.where(Output.account == account)
        if slate_id is not None:
            stmt = stmt.where(Output.slate_id == slate_id)
        if statuses is not None:
            stmt = stmt.where(Output.status.in_([s.value for s in statuses]))
        elif not include_spent:
            stmt = stmt.where(
                Output.status.notin_([OutputStatus.SPENT.value, OutputStatus.DELETED.value])
            )
        stmt = stmt.order_by(Output.value, Output.id)

        async with self._session.datastore.session() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def reserved_inputs(self, slate_id: str) -> list[str]:
        """Commitments of the outputs actively reserved by ``slate_id``."""
        stmt = select(Reservation.output_id).where(
            Reservation.slate_id == slate_id,
            Reservation.status == ReservationStatus.ACTIVE.value,
        )
        async with self._session.datastore.session() as db:
            result = await db.execute(stmt)
            return sorted(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        stmt = select(Output.status, func.count(Output.id)).group_by(Output.status)
        async with self._session.datastore.session() as db:
            result = await db.execute(stmt)
            counts = {status.value: 0 for status in OutputStatus}
            counts.update({row[0]: row[1] for row in result.all()})
            return counts

    async def summary(
        self, account: str, chain_height: int, minimum_confirmations: int
    ) -> dict[str, Any]:
        """Balance breakdown for ``account`` at ``chain_height``."""
        outputs = await self.get_outputs(account=account)
        async with self._session.datastore.session() as db:
            result = await db.execute(
                select(TxLogEntry.slate_id).where(
                    TxLogEntry.account == account,
                    TxLogEntry.state == TxState.POSTED.value,
                )
            )
            posted = set(result.scalars().all())

        spendable = awaiting_confirmation = awaiting_finalization = locked = 0
        for out in outputs:
            if out.status == OutputStatus.LOCKED:
                locked += out.value
            elif out.status == OutputStatus.UNSPENT:
                if out.confirmations(chain_height) >= minimum_confirmations:
                    spendable += out.value
                else:
                    awaiting_confirmation += out.value
            elif out.status == OutputStatus.UNCONFIRMED:
                if out.slate_id in posted:
                    awaiting_confirmation += out.value
                else:
                    awaiting_finalization += out.value

        return {
            "last_confirmed_height": chain_height,
            "minimum_confirmations": minimum_confirmations,
            "total": spendable + awaiting_confirmation,
            "amount_awaiting_finalization": awaiting_finalization,
            "amount_awaiting_confirmation": awaiting_confirmation,
            "amount_immature": 0,
            "amount_currently_spendable": spendable,
            "amount_locked": locked,
        }


def output_to_dict(out: Output, chain_height: int) -> dict[str, Any]:
    return {
        "commit": out.id,
        "account": out.account,
        "key_index": out.key_index,
        "value": out.value,
        "height": out.height,
        "status": out.status,
        "slate_id": out.slate_id or None,
        "is_change": out.is_change,
        "num_confirmations": out.confirmations(chain_height),
    }
