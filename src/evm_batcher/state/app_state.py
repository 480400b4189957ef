"""
Application state.

Holds everything a front end shows: network selection, the row tables of
each tab, the validated token, generated wallets and the last batch
results. Orchestrator events are applied here; nothing else mutates rows.
"""

from typing import AsyncIterator, Callable, List, Optional, Union

import structlog

from evm_batcher.config import BatcherConfig, NetworkType, get_config
from evm_batcher.core.errors import InvalidSecretError
from evm_batcher.core.events import BatchSummary, RowEvent, TransferResult
from evm_batcher.core.orchestrator import BatchOrchestrator
from evm_batcher.core.row import RowTable
from evm_batcher.core.token import TokenDescriptor, fetch_token_descriptor
from evm_batcher.node.interface import NodeConnectionError, NodeInterface
from evm_batcher.node.jsonrpc import JsonRpcAdapter
from evm_batcher.tx.signer import derive_address
from evm_batcher.wallets import Clipboard, GeneratedWallet, copy_wallets, generate_wallets

logger = structlog.get_logger(__name__)

NodeFactory = Callable[[BatcherConfig], NodeInterface]


def apply_event(table: RowTable, event: RowEvent) -> None:
    """Apply a row event to a table in place."""
    row = table[event.index]
    if event.state is not None:
        row.state = event.state
    if event.status is not None:
        row.status = event.status
    if event.address is not None:
        row.address = event.address
    if event.balance is not None:
        row.balance = event.balance
    if event.token_balance is not None:
        row.token_balance = event.token_balance
    if event.token_decimals is not None:
        row.token_decimals = event.token_decimals


class AppState:
    """
    Explicit application state.

    The node handle is created per network selection. While the provider
    is failing, remote operations raise NodeConnectionError until another
    network is selected.
    """

    def __init__(
        self,
        config: Optional[BatcherConfig] = None,
        node_factory: Optional[NodeFactory] = None,
    ):
        """
        Initialize the application state.

        Args:
            config: Batcher configuration
            node_factory: Creates a node for a configuration (JSON-RPC by default)
        """
        self.config = config or get_config()
        self._node_factory = node_factory or (lambda cfg: JsonRpcAdapter(cfg))

        self.node: Optional[NodeInterface] = None
        self.provider_error: Optional[str] = None

        # Single key tab
        self.secret = ""
        self.address = ""
        self.balance = ""
        self.recipients = RowTable(capacity=self.config.max_rows)

        # Multi key tab
        self.transfers = RowTable(capacity=self.config.max_rows)

        # Swap tab
        self.buyers = RowTable(capacity=self.config.max_rows)
        self.token: Optional[TokenDescriptor] = None
        self.slippage_percent = self.config.slippage_percent

        # Generator tab
        self.generated_wallets: List[GeneratedWallet] = []
        self.clipboard = Clipboard()

        # Batch results
        self.results: List[TransferResult] = []
        self.summary: Optional[BatchSummary] = None
        self.status = ""
        self.error = ""

    @property
    def network(self) -> NetworkType:
        return self.config.network

    @property
    def tables(self) -> List[RowTable]:
        return [self.recipients, self.transfers, self.buyers]

    async def select_network(self, network: Union[NetworkType, str]) -> None:
        """
        Switch networks.

        The previous node handle is dropped and all cached balances are
        invalidated.
        """
        network = NetworkType(network)
        if self.node is not None:
            try:
                await self.node.disconnect()
            except Exception as e:
                logger.warning("node_disconnect_failed", error=str(e))
            self.node = None

        self.config = self.config.model_copy(update={"network": network, "rpc_url": None})
        self.balance = ""
        for table in self.tables:
            table.reset_balances()

        await self.connect()

    async def connect(self) -> None:
        """Create and connect the node for the current configuration."""
        self.provider_error = None
        node = self._node_factory(self.config)
        try:
            await node.connect()
        except NodeConnectionError as e:
            self.provider_error = str(e)
            self.error = str(e)
            logger.error("provider_init_failed", network=self.network.value, error=str(e))
            return

        self.node = node
        logger.info("network_selected", network=self.network.value)

    async def close(self) -> None:
        if self.node is not None:
            await self.node.disconnect()
            self.node = None

    def require_node(self) -> NodeInterface:
        """
        Get the connected node.

        Raises:
            NodeConnectionError: If the provider is not initialized
        """
        if self.node is None:
            raise NodeConnectionError(self.provider_error or "Provider is not initialized yet")
        return self.node

    def orchestrator(self) -> BatchOrchestrator:
        return BatchOrchestrator(self.require_node(), self.config)

    def derive_address(self) -> str:
        """
        Derive the single-key address.

        Raises:
            InvalidSecretError: If the secret does not parse
        """
        try:
            self.address = derive_address(self.secret)
        except InvalidSecretError as e:
            self.address = ""
            self.balance = ""
            self.error = str(e)
            raise
        self.error = ""
        return self.address

    async def refresh_single_key_balance(self) -> str:
        event = await self.orchestrator().refresh_balance(0, self.address)
        self.balance = event.balance or ""
        return self.balance

    async def validate_token(self, address: str) -> TokenDescriptor:
        """Validate a token and refresh buyer token balances."""
        self.token = None
        self.token = await fetch_token_descriptor(self.require_node(), address)
        self.status = self.token.describe()

        if self.buyers.with_address():
            await self.drain(
                self.orchestrator().token_balances(self.buyers, self.token),
                self.buyers,
            )
        return self.token

    def generate_wallets(self, count: int) -> List[GeneratedWallet]:
        self.generated_wallets = generate_wallets(count, self.config)
        return self.generated_wallets

    def copy_wallets(self) -> str:
        content = copy_wallets(self.generated_wallets, self.clipboard)
        self.status = "Wallet data copied to clipboard!"
        return content

    def apply(self, event: Union[RowEvent, BatchSummary], table: RowTable) -> None:
        """Apply one orchestrator event."""
        if isinstance(event, BatchSummary):
            self.summary = event
            self.results = list(event.results)
            self.status = event.describe()
        else:
            apply_event(table, event)

    async def drain(
        self,
        events: AsyncIterator[Union[RowEvent, BatchSummary]],
        table: RowTable,
        on_event: Optional[Callable[[Union[RowEvent, BatchSummary]], None]] = None,
    ) -> Optional[BatchSummary]:
        """
        Consume an event stream, applying each event to the table.

        Returns:
            The batch summary if the stream produced one
        """
        summary: Optional[BatchSummary] = None
        async for event in events:
            self.apply(event, table)
            if isinstance(event, BatchSummary):
                summary = event
            if on_event:
                on_event(event)
        return summary
