"""WalletError: base exception class for all py-slate errors."""

from __future__ import annotations

# Three-way result signal handed back across the process boundary
RESULT_OK = 0
RESULT_ERROR = 1
RESULT_UNVALIDATED = 2


class WalletError(Exception):
    """Base error for all wallet operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code.
        code: Machine-readable error code string.
    """

    default_message = "wallet error"
    default_code = "wallet-error"
    default_status = 500

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.code = code or self.default_code

    def to_dict(self) -> dict[str, str]:
        """Structured form used by the foreign listener and result encoding."""
        return {"code": self.code, "message": self.message}


def result_code(*, error: BaseException | None = None, validated: bool = True) -> int:
    """Map an operation outcome to the three-way result signal.

    Args:
        error: The exception raised by the operation, if any.
        validated: Whether a successful result was refreshed against the node.

    Returns:
        ``RESULT_OK``, ``RESULT_ERROR`` or ``RESULT_UNVALIDATED``.
    """
    if error is not None:
        return RESULT_ERROR
    return RESULT_OK if validated else RESULT_UNVALIDATED
