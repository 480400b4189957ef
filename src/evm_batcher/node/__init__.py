"""
Node Integration Layer.

Provides abstracted access to an EVM JSON-RPC endpoint for balance queries,
gas estimation, fee data and transaction submission.
"""

from evm_batcher.node.interface import NodeInterface
from evm_batcher.node.jsonrpc import JsonRpcAdapter

__all__ = [
    "NodeInterface",
    "JsonRpcAdapter",
]
