"""Reservation model: an output earmarked for one slate."""

from __future__ import annotations

import enum

from sqlalchemy import Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from slate_wallet.engine.models.base import Base, TimestampMixin


class ReservationStatus(enum.StrEnum):
    ACTIVE = "active"
    RELEASED = "released"
    CONSUMED = "consumed"


class Reservation(Base, TimestampMixin):
    """A claim of one output by one slate.

    A reservation ends in exactly one of ``released`` or ``consumed``.
    The partial unique index enforces a single active claim per output.
    """

    __tablename__ = "reservations"
    __table_args__ = (
        Index(
            "ix_reservations_active_output",
            "output_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    output_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    slate_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=ReservationStatus.ACTIVE.value,
        comment="active | released | consumed",
    )

    def __repr__(self) -> str:
        return f"<Reservation {self.output_id[:16]} slate={self.slate_id} status={self.status}>"
