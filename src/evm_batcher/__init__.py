"""
EVM Batch Sender

Sequential batch transfers, wallet generation and router buy/sell operations
for Ethereum-compatible networks. Rows are signed and submitted one at a time
and their progress is reported as a stream of events.
"""

__version__ = "0.1.0"

from evm_batcher.core.orchestrator import BatchOrchestrator
from evm_batcher.core.row import Row, RowState, RowTable
from evm_batcher.core.events import BatchSummary, RowEvent, TransferResult

__all__ = [
    "BatchOrchestrator",
    "Row",
    "RowState",
    "RowTable",
    "BatchSummary",
    "RowEvent",
    "TransferResult",
]
