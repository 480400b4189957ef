"""
Core batching components.
"""

from evm_batcher.core.row import Row, RowState, RowTable
from evm_batcher.core.events import BatchSummary, RowEvent, TransferResult

__all__ = [
    "Row",
    "RowState",
    "RowTable",
    "BatchSummary",
    "RowEvent",
    "TransferResult",
]
