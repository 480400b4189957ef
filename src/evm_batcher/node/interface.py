"""
Abstract interface for EVM JSON-RPC access.

Defines the contract for blockchain access that all node adapters must implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

from evm_batcher.core.errors import BatcherError

if TYPE_CHECKING:
    from evm_batcher.tx.signer import TransactionSigner

logger = structlog.get_logger(__name__)


@dataclass
class FeeData:
    """Fee parameters reported by the provider."""
    gas_price: Optional[int] = None                 # Legacy gas price (wei)
    max_fee_per_gas: Optional[int] = None           # EIP-1559 fee cap (wei)
    max_priority_fee_per_gas: Optional[int] = None  # EIP-1559 tip (wei)

    @property
    def supports_eip1559(self) -> bool:
        return bool(self.max_fee_per_gas) and bool(self.max_priority_fee_per_gas)


@dataclass
class TransactionReceipt:
    """Subset of a transaction receipt the batcher cares about."""
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class NodeInterface(ABC):
    """
    Abstract interface for EVM node access.

    This interface defines all blockchain operations needed by the batcher:
    - Balance queries and read-only contract calls
    - Gas estimation and fee data
    - Raw transaction submission
    - Receipt monitoring
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the node.

        Raises:
            NodeConnectionError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the node."""
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """
        Get the native balance of an address at the latest block.

        Returns:
            Balance in wei
        """
        pass

    @abstractmethod
    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """
        Estimate the gas a transaction will consume.

        Args:
            tx: Transaction request with from/to/value/data

        Returns:
            Gas limit estimate
        """
        pass

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        """Get current fee parameters."""
        pass

    @abstractmethod
    async def get_gas_price(self) -> int:
        """Get the legacy gas price in wei."""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str) -> int:
        """Get the next nonce for an address, including pending transactions."""
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Get the chain id of the connected network."""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """
        Submit a signed transaction to the network.

        Args:
            raw_tx: RLP-encoded signed transaction

        Returns:
            Transaction hash (0x-prefixed hex)

        Raises:
            TransactionSubmitError: If submission fails
        """
        pass

    @abstractmethod
    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: int = 120,
    ) -> TransactionReceipt:
        """
        Wait for a transaction to be mined.

        Args:
            tx_hash: Hash of the transaction to monitor
            timeout_seconds: Maximum time to wait

        Returns:
            The mined receipt

        Raises:
            TimeoutError: If no receipt appears within the timeout
        """
        pass

    @abstractmethod
    async def call(self, to: str, data: bytes) -> bytes:
        """
        Execute a read-only contract call at the latest block.

        Args:
            to: Contract address
            data: ABI-encoded calldata

        Returns:
            Raw return data
        """
        pass

    async def send_transaction(
        self,
        signer: "TransactionSigner",
        tx: Dict[str, Any],
    ) -> str:
        """
        Fill in nonce and chain id, sign and submit a transaction.

        Args:
            signer: Signer holding the sender's key
            tx: Transaction request with gas and fee fields resolved

        Returns:
            Transaction hash
        """
        request = dict(tx)
        request.setdefault("nonce", await self.get_transaction_count(signer.address))
        request.setdefault("chainId", await self.get_chain_id())
        request.pop("from", None)

        raw_tx, tx_hash = signer.sign_transaction(request)
        submitted = await self.send_raw_transaction(raw_tx)

        logger.debug(
            "transaction_sent",
            sender=signer.address,
            nonce=request["nonce"],
            tx_hash=submitted,
        )
        return submitted or tx_hash


class NodeConnectionError(BatcherError):
    """Raised when connection to node fails."""
    pass


class TransactionSubmitError(BatcherError):
    """Raised when transaction submission fails."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code
