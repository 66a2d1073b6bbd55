"""Transaction record model and the sender-side state machine."""

from __future__ import annotations

import enum
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from slate_wallet.engine.models.base import Base, TimestampMixin
from slate_wallet.errors.definitions import StateError


class TxState(enum.StrEnum):
    """Lifecycle state of a transaction."""

    DRAFT = "draft"
    LOCKED = "locked"
    EXCHANGING = "exchanging"
    RETURNED = "returned"
    FINALIZED = "finalized"
    POSTED = "posted"
    CANCELLED = "cancelled"
    # Foreign role: the wallet countersigned someone else's slate
    RECEIVED = "received"


class TxDirection(enum.StrEnum):
    SENT = "sent"
    RECEIVED = "received"


TRANSITIONS: dict[TxState, frozenset[TxState]] = {
    TxState.DRAFT: frozenset({TxState.LOCKED}),
    TxState.LOCKED: frozenset({TxState.EXCHANGING, TxState.CANCELLED}),
    TxState.EXCHANGING: frozenset({TxState.RETURNED, TxState.CANCELLED}),
    TxState.RETURNED: frozenset({TxState.FINALIZED, TxState.CANCELLED}),
    TxState.FINALIZED: frozenset({TxState.POSTED, TxState.CANCELLED}),
    TxState.POSTED: frozenset(),
    TxState.CANCELLED: frozenset(),
    TxState.RECEIVED: frozenset({TxState.CANCELLED}),
}

CANCELLABLE: frozenset[TxState] = frozenset(
    {TxState.LOCKED, TxState.EXCHANGING, TxState.RETURNED, TxState.FINALIZED, TxState.RECEIVED}
)


def check_transition(current: TxState, target: TxState) -> None:
    """Raise :class:`StateError` unless ``current -> target`` is allowed."""
    if target not in TRANSITIONS[current]:
        msg = f"invalid transition {current.value} -> {target.value}"
        raise StateError(msg)


class TxLogEntry(Base, TimestampMixin):
    """The bookkeeping record correlating a slate id to its lifecycle."""

    __tablename__ = "tx_log"

    slate_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    account: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    direction: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="sent | received"
    )
    state: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TxState.LOCKED.value, index=True
    )
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount_debited: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount_credited: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    num_inputs: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    num_outputs: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ttl_cutoff_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stored_tx: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Finalized slate, kept for re-posting"
    )

    @property
    def tx_state(self) -> TxState:
        return TxState(self.state)

    def to_dict(self) -> dict[str, Any]:
        return {
            "slate_id": self.slate_id,
            "account": self.account,
            "direction": self.direction,
            "state": self.state,
            "confirmed": self.confirmed,
            "amount": self.amount,
            "fee": self.fee,
            "amount_debited": self.amount_debited,
            "amount_credited": self.amount_credited,
            "num_inputs": self.num_inputs,
            "num_outputs": self.num_outputs,
            "message": self.message,
            "ttl_cutoff_height": self.ttl_cutoff_height,
            "has_stored_tx": self.stored_tx is not None,
        }

    def __repr__(self) -> str:
        return f"<TxLogEntry {self.slate_id} {self.direction} state={self.state}>"
