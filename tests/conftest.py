"""
Pytest configuration and shared fixtures for the test suite.
"""

from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest
from eth_abi import encode
from eth_account import Account
from eth_utils import keccak, to_checksum_address, to_hex

from evm_batcher.config import BatcherConfig, NetworkType
from evm_batcher.core.row import RowTable
from evm_batcher.node.interface import (
    FeeData,
    NodeConnectionError,
    NodeInterface,
    TransactionReceipt,
)
from evm_batcher.tx.contracts import ERC20_BALANCE_OF, ContractFunction


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> BatcherConfig:
    """Create a test configuration with no pacing delays."""
    return BatcherConfig(
        network=NetworkType.BASE,
        row_delay_seconds=0,
        key_load_delay_seconds=0,
        token_balance_delay_seconds=0,
        log_level="DEBUG",
    )


# ============================================================================
# Test Data Generators
# ============================================================================

def generate_test_key(index: int = 1) -> str:
    """Generate a deterministic private key."""
    return "0x" + f"{index:064x}"


def address_for(secret: str) -> str:
    """Derive the address of a test key."""
    return Account.from_key(secret).address


def generate_test_address(index: int = 0) -> str:
    """Generate a deterministic recipient address."""
    return to_checksum_address("0x" + f"{0xbeef0000 + index:040x}")


TOKEN_ADDRESS = to_checksum_address("0x" + "ab" * 20)


def encode_uint(value: int) -> bytes:
    return encode(["uint256"], [value])


def encode_string(value: str) -> bytes:
    return encode(["string"], [value])


@pytest.fixture
def sender_key() -> str:
    return generate_test_key(1)


@pytest.fixture
def transfer_table() -> RowTable:
    """Table with three valid multi-key transfers."""
    table = RowTable(capacity=10)
    for i in range(3):
        table.set_row(
            i,
            secret=generate_test_key(i + 1),
            destination=generate_test_address(i),
            amount="0.01",
        )
    return table


# ============================================================================
# Mock Node Interface
# ============================================================================

class MockNodeInterface(NodeInterface):
    """
    In-memory node for testing.

    Transactions are signed for real; the hash returned for a submission
    is the keccak of the raw bytes, as a node would report.
    """

    def __init__(self):
        self.balances: Dict[str, int] = {}
        self.nonces: Dict[str, int] = {}
        self.call_results: Dict[Tuple[str, bytes], bytes] = {}
        self.failing_balances: Set[str] = set()

        self.fee_data = FeeData(
            gas_price=1_000_000_000,
            max_fee_per_gas=3_000_000_000,
            max_priority_fee_per_gas=1_500_000_000,
        )
        self.gas_price = 1_000_000_000
        self.gas_estimate = 21_000
        self.fail_estimate = False
        self.chain_id = 8453

        # Submission index -> exception raised instead of submitting
        self.submit_failures: Dict[int, Exception] = {}
        # Submission indexes whose receipt reports failure
        self.revert_submissions: Set[int] = set()

        self.sent: List[Dict[str, Any]] = []
        self.submitted_txs: List[str] = []
        self.calls: List[str] = []
        self._reverted: Set[str] = set()
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_balance(self, address: str) -> int:
        self.calls.append("get_balance")
        if address in self.failing_balances:
            raise ConnectionError("rpc unavailable")
        return self.balances.get(address, 0)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        self.calls.append("estimate_gas")
        if self.fail_estimate:
            raise ValueError("execution reverted: estimation failed")
        return self.gas_estimate

    async def get_fee_data(self) -> FeeData:
        self.calls.append("get_fee_data")
        return self.fee_data

    async def get_gas_price(self) -> int:
        self.calls.append("get_gas_price")
        return self.gas_price

    async def get_transaction_count(self, address: str) -> int:
        return self.nonces.get(address, 0)

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def send_transaction(self, signer, tx: Dict[str, Any]) -> str:
        self.sent.append(dict(tx, sender=signer.address))
        tx_hash = await super().send_transaction(signer, tx)
        self.nonces[signer.address] = self.nonces.get(signer.address, 0) + 1
        return tx_hash

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        self.calls.append("send_raw_transaction")
        position = len(self.sent) - 1
        if position in self.submit_failures:
            raise self.submit_failures[position]

        tx_hash = to_hex(keccak(raw_tx))
        self.submitted_txs.append(tx_hash)
        if position in self.revert_submissions:
            self._reverted.add(tx_hash)
        return tx_hash

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: int = 120,
    ) -> TransactionReceipt:
        self.calls.append("wait_for_receipt")
        if tx_hash not in self.submitted_txs:
            raise TimeoutError(f"Transaction {tx_hash} not mined within {timeout_seconds}s")
        status = 0 if tx_hash in self._reverted else 1
        return TransactionReceipt(tx_hash=tx_hash, status=status, block_number=1, gas_used=21_000)

    async def call(self, to: str, data: bytes) -> bytes:
        self.calls.append("call")
        key = (to.lower(), bytes(data[:4]))
        if key not in self.call_results:
            raise ValueError("execution reverted")
        return self.call_results[key]

    def set_call_result(self, to: str, function: ContractFunction, result: bytes) -> None:
        """Return ``result`` for every call of ``function`` on ``to``."""
        self.call_results[(to.lower(), function.selector)] = result

    def set_token_balance(self, token: str, amount: int) -> None:
        self.set_call_result(token, ERC20_BALANCE_OF, encode_uint(amount))


class FailingNodeInterface(MockNodeInterface):
    """Node whose provider never initializes."""

    async def connect(self) -> None:
        raise NodeConnectionError("Failed to initialize provider: connection refused")


@pytest.fixture
def mock_node() -> MockNodeInterface:
    """Create a mock node interface."""
    return MockNodeInterface()


@pytest.fixture
def node_factory() -> Callable[[BatcherConfig], MockNodeInterface]:
    """
    Factory creating one mock node per network selection.

    Created nodes are recorded on the factory's ``nodes`` attribute.
    """
    nodes: List[MockNodeInterface] = []

    def factory(config: BatcherConfig) -> MockNodeInterface:
        node = MockNodeInterface()
        nodes.append(node)
        return node

    factory.nodes = nodes
    return factory


async def collect(events) -> list:
    """Drain an async event stream into a list."""
    return [event async for event in events]
