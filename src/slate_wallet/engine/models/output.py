"""Output model: commitments owned by the wallet."""

from __future__ import annotations

import enum

from sqlalchemy import BigInteger, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from slate_wallet.engine.models.base import Base, TimestampMixin


class OutputStatus(enum.StrEnum):
    """Lifecycle of a wallet output."""

    UNCONFIRMED = "unconfirmed"
    UNSPENT = "unspent"
    LOCKED = "locked"
    SPENT = "spent"
    DELETED = "deleted"


class Output(Base, TimestampMixin):
    """An output owned by one account of the wallet.

    ``slate_id`` names the transaction that created the output (change or
    received funds); it is empty for outputs imported or mined directly.
    """

    __tablename__ = "outputs"

    id: Mapped[str] = mapped_column(
        String(66), primary_key=True, comment="Hex commitment"
    )
    account: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True, comment="Owning account"
    )
    key_index: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Derivation index of the blinding key"
    )
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Amount in nanounits")
    height: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, comment="Block height the output was mined at"
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=OutputStatus.UNSPENT.value,
        index=True,
        comment="unconfirmed | unspent | locked | spent | deleted",
    )
    slate_id: Mapped[str] = mapped_column(
        String(36), nullable=False, default="", index=True, comment="Creating transaction"
    )
    is_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def confirmations(self, chain_height: int) -> int:
        """Number of confirmations at ``chain_height`` (0 while unmined)."""
        if self.height <= 0 or chain_height < self.height:
            return 0
        return chain_height - self.height + 1

    def is_spendable(self, chain_height: int, minimum_confirmations: int) -> bool:
        if self.status != OutputStatus.UNSPENT:
            return False
        return self.confirmations(chain_height) >= minimum_confirmations

    def __repr__(self) -> str:
        return f"<Output {self.id[:16]} value={self.value} status={self.status}>"
