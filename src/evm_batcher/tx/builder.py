"""
Transaction Builder - resolves gas and fee fields.

Turns a bare transaction request (to/value/data) into one that can be
signed, using provider estimates where available and fixed defaults
otherwise.
"""

from typing import Any, Dict, Optional

import structlog
from eth_utils import to_checksum_address

from evm_batcher.config import BatcherConfig, get_config
from evm_batcher.node.interface import NodeInterface

logger = structlog.get_logger(__name__)


class TransactionBuilder:
    """
    Builds signable transactions against a node.

    Gas resolution:
    1. Estimate the gas limit
    2. Prefer EIP-1559 fee fields when the provider reports both
    3. Otherwise use the legacy gas price

    If estimation or fee lookup fails, the supplied default gas limit is
    used with the legacy gas price.
    """

    def __init__(
        self,
        node: NodeInterface,
        config: Optional[BatcherConfig] = None,
    ):
        """
        Initialize the transaction builder.

        Args:
            node: Node interface for estimates and fee data
            config: Batcher configuration
        """
        self.node = node
        self.config = config or get_config()

    def request(
        self,
        sender: str,
        to: str,
        value: int = 0,
        data: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        """Create a bare transaction request."""
        tx: Dict[str, Any] = {
            "from": to_checksum_address(sender),
            "to": to_checksum_address(to),
            "value": int(value),
        }
        if data:
            tx["data"] = data
        return tx

    async def resolve_gas(self, tx: Dict[str, Any], default_gas_limit: int) -> Dict[str, Any]:
        """
        Fill in gas limit and fee fields.

        Args:
            tx: Transaction request from request()
            default_gas_limit: Gas limit used when estimation fails

        Returns:
            New transaction dict with gas and fee fields set
        """
        resolved = dict(tx)
        try:
            resolved["gas"] = await self.node.estimate_gas(tx)

            fee_data = await self.node.get_fee_data()
            if fee_data.supports_eip1559:
                resolved["maxFeePerGas"] = fee_data.max_fee_per_gas
                resolved["maxPriorityFeePerGas"] = fee_data.max_priority_fee_per_gas
            else:
                resolved["gasPrice"] = await self.node.get_gas_price()
        except Exception as e:
            logger.warning(
                "gas_estimation_failed",
                to=tx.get("to"),
                default_gas_limit=default_gas_limit,
                error=str(e),
            )
            resolved.pop("maxFeePerGas", None)
            resolved.pop("maxPriorityFeePerGas", None)
            resolved["gas"] = default_gas_limit
            resolved["gasPrice"] = await self.node.get_gas_price()

        return resolved

    async def build(
        self,
        sender: str,
        to: str,
        value: int = 0,
        data: Optional[bytes] = None,
        default_gas_limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create a request and resolve its gas fields in one step."""
        tx = self.request(sender, to, value=value, data=data)
        return await self.resolve_gas(tx, default_gas_limit or self.config.transfer_gas_limit)
