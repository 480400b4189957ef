"""
Error taxonomy and failure-message classification.

Row failures are reduced to a short human-readable reason before they
are written into a row status.
"""

from enum import Enum
from typing import Optional


MAX_ERROR_LENGTH = 50


class BatcherError(Exception):
    """Base class for all batcher errors."""
    pass


class InputValidationError(BatcherError):
    """Raised when user input is rejected before any remote call."""
    pass


class InvalidSecretError(InputValidationError):
    """Raised when a secret is not a well-formed private key."""
    pass


class ConfigurationError(BatcherError):
    """Raised when the selected network lacks a required contract address."""
    pass


class OperationKind(str, Enum):
    """Kind of on-chain operation a row performs."""
    TRANSFER = "transfer"
    BUY = "buy"
    SELL = "sell"
    APPROVE = "approve"


_INSUFFICIENT_FUNDS = {
    OperationKind.TRANSFER: "Insufficient ETH in wallet",
    OperationKind.BUY: "Insufficient ETH in wallet",
    OperationKind.SELL: "Insufficient tokens to sell",
    OperationKind.APPROVE: "Insufficient ETH in wallet",
}

_USER_REJECTED = {
    OperationKind.TRANSFER: "Transaction rejected by user",
    OperationKind.BUY: "Transaction rejected by user",
    OperationKind.SELL: "Transaction rejected by user",
    OperationKind.APPROVE: "Approval rejected by user",
}

_REVERTED = {
    OperationKind.TRANSFER: "Transaction reverted - liquidity or token restrictions",
    OperationKind.BUY: "Transaction reverted - liquidity or token restrictions",
    OperationKind.SELL: "Sell reverted - liquidity or token restrictions",
    OperationKind.APPROVE: "Approval reverted",
}


def truncate_message(message: str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Cut a message to ``limit`` characters, marking the cut with an ellipsis."""
    if len(message) > limit:
        return message[:limit] + "..."
    return message


def classify_error(
    error: BaseException,
    kind: OperationKind = OperationKind.TRANSFER,
) -> str:
    """
    Reduce an exception to a short reason suitable for a row status.

    Args:
        error: The exception raised while submitting or confirming
        kind: Operation the row was performing

    Returns:
        Friendly message for known failures, otherwise the raw message
        truncated to 50 characters
    """
    reason: Optional[str] = getattr(error, "reason", None)
    if isinstance(reason, str) and reason:
        return reason

    message = str(error)
    if not message:
        return "Unknown error"

    lowered = message.lower()
    if "insufficient funds" in lowered:
        return _INSUFFICIENT_FUNDS[kind]
    if "user rejected" in lowered:
        return _USER_REJECTED[kind]
    if "execution reverted" in lowered:
        return _REVERTED[kind]

    return truncate_message(message)


class TransactionRevertedError(BatcherError):
    """Raised when a mined transaction reports a failed status."""

    def __init__(self, tx_hash: str):
        super().__init__(f"execution reverted (tx {tx_hash})")
        self.tx_hash = tx_hash
