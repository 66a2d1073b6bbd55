"""Error taxonomy for the slate negotiation workflows."""

from __future__ import annotations

from slate_wallet.errors.wallet_errors import WalletError


class ConfigError(WalletError):
    """Malformed or unsupported configuration or request arguments."""

    default_message = "invalid configuration"
    default_code = "config-error"
    default_status = 400


class InsufficientFunds(WalletError):
    """No subset of spendable outputs covers amount plus fee."""

    default_message = "not enough funds"
    default_code = "insufficient-funds"
    default_status = 422

    def __init__(
        self, message: str | None = None, *, needed: int = 0, available: int = 0
    ) -> None:
        if message is None and needed:
            message = f"not enough funds: needed {needed}, available {available}"
        super().__init__(message)
        self.needed = needed
        self.available = available


class TransportError(WalletError):
    """Counterparty unreachable, timed out, or replied with garbage."""

    default_message = "transport failure"
    default_code = "transport-error"
    default_status = 502


class ValidationError(WalletError):
    """Signature or message verification failed."""

    default_message = "slate verification failed"
    default_code = "validation-error"
    default_status = 400


class StateError(WalletError):
    """Operation not allowed in the transaction's current state."""

    default_message = "invalid transaction state"
    default_code = "state-error"
    default_status = 409


class BroadcastError(WalletError):
    """The node rejected the finalized transaction."""

    default_message = "transaction rejected by node"
    default_code = "broadcast-error"
    default_status = 502


class StorageError(WalletError):
    """Storage backend I/O failure."""

    default_message = "storage backend failure"
    default_code = "storage-error"
    default_status = 500


ALL_ERRORS: tuple[type[WalletError], ...] = (
    ConfigError,
    InsufficientFunds,
    TransportError,
    ValidationError,
    StateError,
    BroadcastError,
    StorageError,
)
