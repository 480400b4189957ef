"""
JSON-RPC adapter for node integration.

Provides blockchain access through web3.py's asynchronous HTTP provider.
"""

from typing import Any, Dict, Optional

import structlog
from aiohttp import ClientTimeout
from eth_utils import to_checksum_address, to_hex
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception

from evm_batcher.config import BatcherConfig, get_config
from evm_batcher.node.interface import (
    FeeData,
    NodeConnectionError,
    NodeInterface,
    TransactionReceipt,
    TransactionSubmitError,
)

logger = structlog.get_logger(__name__)


class JsonRpcAdapter(NodeInterface):
    """
    JSON-RPC adapter.

    Implements the NodeInterface on top of AsyncWeb3.
    """

    def __init__(
        self,
        config: Optional[BatcherConfig] = None,
        rpc_url: Optional[str] = None,
    ):
        """
        Initialize the JSON-RPC adapter.

        Args:
            config: Batcher configuration. Uses global config if not provided.
            rpc_url: Endpoint override; defaults to the configured network's URL
        """
        self.config = config or get_config()
        self.rpc_url = rpc_url or self.config.network_rpc_url
        self._w3: Optional[AsyncWeb3] = None

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            raise NodeConnectionError("Provider is not initialized yet")
        return self._w3

    async def connect(self) -> None:
        """Create the provider and check the endpoint answers."""
        if self._w3 is not None:
            return

        provider = AsyncWeb3.AsyncHTTPProvider(
            self.rpc_url,
            request_kwargs={"timeout": ClientTimeout(total=self.config.request_timeout_seconds)},
        )
        w3 = AsyncWeb3(provider)

        try:
            connected = await w3.is_connected()
        except Exception as e:
            raise NodeConnectionError(f"Failed to initialize provider: {e}") from e
        if not connected:
            raise NodeConnectionError(f"Failed to initialize provider: {self.rpc_url} is not reachable")

        self._w3 = w3
        logger.info("provider_connected", rpc_url=self.rpc_url)

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._w3:
            await self._w3.provider.disconnect()
            self._w3 = None
            logger.info("provider_disconnected", rpc_url=self.rpc_url)

    async def get_balance(self, address: str) -> int:
        balance = await self.w3.eth.get_balance(to_checksum_address(address), "latest")
        logger.debug("balance_fetched", address=address, balance_wei=balance)
        return int(balance)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.w3.eth.estimate_gas(self._format_request(tx)))

    async def get_fee_data(self) -> FeeData:
        """
        Get fee data.

        EIP-1559 fields are reported only when the latest block carries a
        base fee; the fee cap is twice the base fee plus the priority fee.
        """
        block = await self.w3.eth.get_block("latest")
        gas_price = await self.w3.eth.gas_price

        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            return FeeData(gas_price=int(gas_price))

        priority_fee = self.config.priority_fee_wei
        return FeeData(
            gas_price=int(gas_price),
            max_fee_per_gas=int(base_fee) * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def get_gas_price(self) -> int:
        return int(await self.w3.eth.gas_price)

    async def get_transaction_count(self, address: str) -> int:
        return int(await self.w3.eth.get_transaction_count(to_checksum_address(address), "pending"))

    async def get_chain_id(self) -> int:
        return int(await self.w3.eth.chain_id)

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        try:
            tx_hash = await self.w3.eth.send_raw_transaction(raw_tx)
        except Web3Exception as e:
            logger.error("tx_submit_failed", error=str(e))
            raise TransactionSubmitError(str(e)) from e

        tx_hash_hex = to_hex(tx_hash)
        logger.info("tx_submitted", tx_hash=tx_hash_hex)
        return tx_hash_hex

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: int = 120,
    ) -> TransactionReceipt:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=timeout_seconds,
            )
        except TimeExhausted as e:
            logger.warning("tx_confirmation_timeout", tx_hash=tx_hash)
            raise TimeoutError(f"Transaction {tx_hash} not mined within {timeout_seconds}s") from e

        logger.info(
            "tx_mined",
            tx_hash=tx_hash,
            status=receipt["status"],
            block_number=receipt.get("blockNumber"),
        )
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    async def call(self, to: str, data: bytes) -> bytes:
        result = await self.w3.eth.call(
            {"to": to_checksum_address(to), "data": to_hex(data)},
            "latest",
        )
        return bytes(result)

    @staticmethod
    def _format_request(tx: Dict[str, Any]) -> Dict[str, Any]:
        """Convert a transaction request into JSON-RPC friendly types."""
        request = dict(tx)
        if isinstance(request.get("data"), (bytes, bytearray)):
            request["data"] = to_hex(request["data"])
        return request
