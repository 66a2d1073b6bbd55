"""Wallet data models (SQLAlchemy ORM).

Import :data:`ALL_MODELS` for migration and table creation.
"""

from slate_wallet.engine.models.base import Base, TimestampMixin
from slate_wallet.engine.models.output import Output, OutputStatus
from slate_wallet.engine.models.reservation import Reservation, ReservationStatus
from slate_wallet.engine.models.tx_log import TxDirection, TxLogEntry, TxState

ALL_MODELS: list[type[Base]] = [
    Output,
    Reservation,
    TxLogEntry,
]

__all__ = [
    "ALL_MODELS",
    "Base",
    "Output",
    "OutputStatus",
    "Reservation",
    "ReservationStatus",
    "TimestampMixin",
    "TxDirection",
    "TxLogEntry",
    "TxState",
]
