"""
Events emitted by the orchestrator.

The orchestrator never mutates rows; it yields these events and the caller
applies them to its own state.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from evm_batcher.core.row import RowState


@dataclass
class RowEvent:
    """
    A status update for one row.

    Fields left as None are not changed when the event is applied.
    """

    index: int
    state: Optional[RowState] = None
    status: Optional[str] = None
    address: Optional[str] = None
    balance: Optional[str] = None
    token_balance: Optional[int] = None
    token_decimals: Optional[int] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TransferResult:
    """Outcome of one submitted row, as listed after a batch."""

    to: str
    amount: str
    hash: Optional[str] = None
    error: Optional[str] = None
    sender: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.hash is not None and self.error is None

    def to_dict(self) -> dict:
        data = {"to": self.to, "amount": self.amount}
        if self.sender:
            data["from"] = self.sender
        if self.hash:
            data["hash"] = self.hash
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BatchSummary:
    """Aggregate emitted once every eligible row has been processed."""

    attempted: int
    succeeded: int
    results: List[TransferResult] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    def describe(self) -> str:
        return f"Batch complete: {self.succeeded}/{self.attempted} transactions succeeded"
