"""
Transaction signing, gas resolution and contract call encoding.
"""

from evm_batcher.tx.signer import TransactionSigner
from evm_batcher.tx.builder import TransactionBuilder

__all__ = [
    "TransactionSigner",
    "TransactionBuilder",
]
