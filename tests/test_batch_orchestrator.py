"""
Test suite for the batch orchestrator.

Tests sequential submission, per-row failure isolation, and the
approve, swap and unwrap sequence of sells.
"""

from unittest.mock import AsyncMock, patch

import pytest
from eth_abi import decode
from eth_utils import to_checksum_address

from evm_batcher.config import BatcherConfig, NetworkType
from evm_batcher.core.errors import ConfigurationError, InputValidationError, InvalidSecretError
from evm_batcher.core.events import BatchSummary, RowEvent
from evm_batcher.core.orchestrator import BatchOrchestrator
from evm_batcher.core.row import RowState, RowTable
from evm_batcher.core.token import TokenDescriptor, fetch_token_descriptor
from evm_batcher.node.interface import TransactionSubmitError
from evm_batcher.tx.contracts import (
    ERC20_APPROVE,
    ERC20_DECIMALS,
    ERC20_NAME,
    EXACT_INPUT_SINGLE_PARAMS,
    MAX_UINT256,
    ROUTER_EXACT_INPUT_SINGLE,
    WRAPPED_WITHDRAW,
)

from conftest import (
    TOKEN_ADDRESS,
    address_for,
    collect,
    encode_string,
    encode_uint,
    generate_test_address,
    generate_test_key,
)

ROUTER = to_checksum_address("0x2626664c2603336E57B271c5C0b26F421741e481")
WETH = "0x4200000000000000000000000000000000000006"


def row_events(events, index):
    return [e for e in events if isinstance(e, RowEvent) and e.index == index]


def statuses(events, index):
    return [e.status for e in row_events(events, index) if e.status is not None]


def decode_swap(data: bytes):
    assert data[:4] == ROUTER_EXACT_INPUT_SINGLE.selector
    return decode([EXACT_INPUT_SINGLE_PARAMS], data[4:])[0]


@pytest.fixture
def orchestrator(mock_node, test_config) -> BatchOrchestrator:
    return BatchOrchestrator(mock_node, test_config)


@pytest.fixture
def token() -> TokenDescriptor:
    return TokenDescriptor(address=TOKEN_ADDRESS, name="Test Token", symbol="TST", decimals=18)


# ============================================================================
# Test Key Loading
# ============================================================================

class TestLoadKeys:
    """Tests for deriving addresses and balances."""

    @pytest.mark.asyncio
    async def test_valid_and_invalid_keys(self, orchestrator, mock_node):
        table = RowTable(capacity=10)
        table.set_row(0, secret=generate_test_key(1))
        table.set_row(1, secret="0xnotakey")
        table.set_row(3, secret=generate_test_key(3))
        mock_node.balances[address_for(generate_test_key(1))] = 10**18

        events = await collect(orchestrator.load_keys(table))

        first = row_events(events, 0)
        assert first[0].address == address_for(generate_test_key(1))
        assert first[0].balance == "Loading..."
        assert first[-1].balance == "1.0"

        invalid = row_events(events, 1)
        assert len(invalid) == 1
        assert invalid[0].state == RowState.INVALID
        assert invalid[0].status == "invalid key"
        assert invalid[0].address == ""

        assert row_events(events, 3)[-1].balance == "0.0"
        assert row_events(events, 2) == []

    @pytest.mark.asyncio
    async def test_balance_failure_marks_error(self, orchestrator, mock_node):
        table = RowTable(capacity=10)
        table.set_row(0, secret=generate_test_key(1))
        mock_node.failing_balances.add(address_for(generate_test_key(1)))

        events = await collect(orchestrator.load_keys(table))

        assert events[-1].balance == "Error"

    @pytest.mark.asyncio
    async def test_no_keys(self, orchestrator):
        with pytest.raises(InputValidationError, match="No private keys to load"):
            await collect(orchestrator.load_keys(RowTable(capacity=10)))


# ============================================================================
# Test Single Key Transfers
# ============================================================================

class TestSingleKeyTransfers:
    """Tests for sending from one key to many recipients."""

    @pytest.mark.asyncio
    async def test_sends_in_row_order(self, orchestrator, mock_node, sender_key):
        table = RowTable(capacity=10)
        table.set_row(0, destination=generate_test_address(0), amount="0.01")
        table.set_row(1, destination="0xbad", amount="1")
        table.set_row(2, destination=generate_test_address(2), amount="0.02")

        events = await collect(orchestrator.run_single_key(sender_key, table))

        summary = events[-1]
        assert isinstance(summary, BatchSummary)
        assert summary.attempted == 2
        assert summary.succeeded == 2
        assert [r.to for r in summary.results] == [generate_test_address(0), generate_test_address(2)]
        assert all(r.sender is None for r in summary.results)

        assert [tx["to"] for tx in mock_node.sent] == [generate_test_address(0), generate_test_address(2)]
        assert [tx["value"] for tx in mock_node.sent] == [10**16, 2 * 10**16]
        assert mock_node.nonces[address_for(sender_key)] == 2

        assert row_events(events, 1) == []

    @pytest.mark.asyncio
    async def test_row_lifecycle(self, orchestrator, sender_key):
        table = RowTable(capacity=10)
        table.set_row(0, destination=generate_test_address(0), amount="0.01")

        events = await collect(orchestrator.run_single_key(sender_key, table))

        states = [e.state for e in row_events(events, 0)]
        assert states == [RowState.PROCESSING, RowState.PENDING, RowState.CONFIRMED]
        assert statuses(events, 0)[1].startswith("pending: 0x")
        assert statuses(events, 0)[2].startswith("success: 0x")
        assert statuses(events, 0)[2].endswith("...")

    @pytest.mark.asyncio
    async def test_rows_are_strictly_sequential(self, orchestrator, mock_node, transfer_table, sender_key):
        events = await collect(orchestrator.run_single_key(sender_key, transfer_table))

        # Each row finishes before the next begins
        sequence = [(e.index, e.state) for e in events if isinstance(e, RowEvent)]
        assert sequence == [
            (0, RowState.PROCESSING), (0, RowState.PENDING), (0, RowState.CONFIRMED),
            (1, RowState.PROCESSING), (1, RowState.PENDING), (1, RowState.CONFIRMED),
            (2, RowState.PROCESSING), (2, RowState.PENDING), (2, RowState.CONFIRMED),
        ]

        submits = [i for i, c in enumerate(mock_node.calls) if c == "send_raw_transaction"]
        receipts = [i for i, c in enumerate(mock_node.calls) if c == "wait_for_receipt"]
        assert submits[1] > receipts[0]
        assert submits[2] > receipts[1]

    @pytest.mark.asyncio
    async def test_invalid_secret(self, orchestrator, transfer_table):
        with pytest.raises(InvalidSecretError):
            await collect(orchestrator.run_single_key("0x1234", transfer_table))

    @pytest.mark.asyncio
    async def test_no_eligible_rows(self, orchestrator, sender_key):
        table = RowTable(capacity=10)
        table.set_row(0, destination=generate_test_address(0), amount="0")

        with pytest.raises(InputValidationError, match="at least one valid recipient"):
            await collect(orchestrator.run_single_key(sender_key, table))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.0000000000000000001", "1.0000000000000000001"])
    async def test_sub_wei_precision_is_rejected(self, orchestrator, mock_node, sender_key, amount):
        table = RowTable(capacity=10)
        table.set_row(0, destination=generate_test_address(0), amount=amount)
        table.set_row(1, destination=generate_test_address(1), amount="0.5")

        events = await collect(orchestrator.run_single_key(sender_key, table))

        assert row_events(events, 0)[-1].state == RowState.ERROR
        assert statuses(events, 0)[-1] == "error: fractional component exceeds decimals"
        assert [tx["to"] for tx in mock_node.sent] == [generate_test_address(1)]

        summary = events[-1]
        assert summary.attempted == 2
        assert summary.succeeded == 1
        assert summary.results[0].error == "fractional component exceeds decimals"

    @pytest.mark.asyncio
    async def test_delay_between_rows_only(self, mock_node, transfer_table, sender_key):
        config = BatcherConfig(network=NetworkType.BASE, row_delay_seconds=1.0)
        orchestrator = BatchOrchestrator(mock_node, config)

        with patch("evm_batcher.core.orchestrator.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await collect(orchestrator.run_single_key(sender_key, transfer_table))

        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)


# ============================================================================
# Test Multi Key Transfers
# ============================================================================

class TestMultiKeyTransfers:
    """Tests for sending from each row's own key."""

    @pytest.mark.asyncio
    async def test_each_row_signs_with_its_key(self, orchestrator, mock_node, transfer_table):
        events = await collect(orchestrator.run_multi_key(transfer_table))

        summary = events[-1]
        assert summary.succeeded == 3
        assert [r.sender for r in summary.results] == [
            address_for(generate_test_key(i + 1)) for i in range(3)
        ]
        assert [tx["sender"] for tx in mock_node.sent] == [
            address_for(generate_test_key(i + 1)) for i in range(3)
        ]

    @pytest.mark.asyncio
    async def test_invalid_key_is_marked_and_skipped(self, orchestrator, mock_node, transfer_table):
        transfer_table.set_row(1, secret="0xdeadbeef", destination=generate_test_address(1), amount="1")

        events = await collect(orchestrator.run_multi_key(transfer_table))

        assert events[0].index == 1
        assert events[0].state == RowState.INVALID
        assert events[0].status == "invalid key"
        assert len(row_events(events, 1)) == 1

        summary = events[-1]
        assert summary.attempted == 2
        assert len(mock_node.sent) == 2

    @pytest.mark.asyncio
    async def test_only_invalid_rows(self, orchestrator):
        table = RowTable(capacity=10)
        table.set_row(0, secret="bad", destination=generate_test_address(0), amount="1")

        events = []
        with pytest.raises(InputValidationError, match="at least one valid transfer"):
            async for event in orchestrator.run_multi_key(table):
                events.append(event)

        assert [e.state for e in events] == [RowState.INVALID]

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_batch(self, orchestrator, mock_node, transfer_table):
        mock_node.submit_failures[0] = TransactionSubmitError("insufficient funds for gas * price + value")

        events = await collect(orchestrator.run_multi_key(transfer_table))

        assert statuses(events, 0)[-1] == "error: Insufficient ETH in wallet"
        assert row_events(events, 0)[-1].state == RowState.ERROR

        summary = events[-1]
        assert summary.attempted == 3
        assert summary.succeeded == 2
        assert summary.results[0].error == "Insufficient ETH in wallet"
        assert summary.results[0].hash is None
        assert summary.results[1].succeeded

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, orchestrator, mock_node, transfer_table):
        mock_node.revert_submissions.add(1)

        events = await collect(orchestrator.run_multi_key(transfer_table))

        assert statuses(events, 1)[-1] == "error: Transaction reverted - liquidity or token restrictions"
        summary = events[-1]
        assert summary.succeeded == 2
        assert summary.results[1].hash is not None
        assert not summary.results[1].succeeded

    @pytest.mark.asyncio
    async def test_unknown_error_is_truncated(self, orchestrator, mock_node, transfer_table):
        mock_node.submit_failures[2] = RuntimeError("nonce too low: " + "x" * 60)

        events = await collect(orchestrator.run_multi_key(transfer_table))

        message = row_events(events, 2)[-1].error
        assert len(message) == 53
        assert message.endswith("...")


# ============================================================================
# Test Buys
# ============================================================================

class TestBuys:
    """Tests for buying a token through the router."""

    @pytest.mark.asyncio
    async def test_buy_swaps_native_for_token(self, orchestrator, mock_node, token):
        secret = generate_test_key(5)
        table = RowTable(capacity=10)
        table.set_row(0, secret=secret, amount="0.001")
        mock_node.set_token_balance(TOKEN_ADDRESS, 42 * 10**18)

        events = await collect(orchestrator.run_buys(table, token))

        tx = mock_node.sent[0]
        assert tx["to"] == ROUTER
        assert tx["value"] == 10**15

        params = decode_swap(tx["data"])
        assert params[0].lower() == WETH.lower()
        assert params[1].lower() == TOKEN_ADDRESS.lower()
        assert params[2] == 10_000
        assert params[3].lower() == address_for(secret).lower()
        assert params[4] == 10**15
        assert params[5] == 0

        assert row_events(events, 0)[0].address == address_for(secret)
        assert any(e.token_balance == 42 * 10**18 for e in row_events(events, 0))
        assert events[-1].succeeded == 1

    @pytest.mark.asyncio
    async def test_buy_failure_uses_buy_messages(self, orchestrator, mock_node, token):
        table = RowTable(capacity=10)
        table.set_row(0, secret=generate_test_key(5), amount="1")
        mock_node.submit_failures[0] = TransactionSubmitError("execution reverted: STF")

        events = await collect(orchestrator.run_buys(table, token))

        assert statuses(events, 0)[-1] == "error: Transaction reverted - liquidity or token restrictions"
        assert events[-1].succeeded == 0

    @pytest.mark.asyncio
    async def test_sub_wei_buy_is_rejected(self, orchestrator, mock_node, token):
        table = RowTable(capacity=10)
        table.set_row(0, secret=generate_test_key(5), amount="0.0000000000000000001")

        events = await collect(orchestrator.run_buys(table, token))

        assert mock_node.sent == []
        assert statuses(events, 0)[-1] == "error: fractional component exceeds decimals"
        assert events[-1].succeeded == 0

    @pytest.mark.asyncio
    async def test_unsupported_network(self, mock_node, token):
        config = BatcherConfig(network=NetworkType.SEPOLIA, row_delay_seconds=0)
        orchestrator = BatchOrchestrator(mock_node, config)
        table = RowTable(capacity=10)
        table.set_row(0, secret=generate_test_key(5), amount="1")

        with pytest.raises(ConfigurationError, match="sepolia"):
            await collect(orchestrator.run_buys(table, token))

    @pytest.mark.asyncio
    async def test_invalid_token_address(self, orchestrator):
        table = RowTable(capacity=10)
        table.set_row(0, secret=generate_test_key(5), amount="1")

        with pytest.raises(InputValidationError, match="valid token address"):
            await collect(orchestrator.run_buys(table, "0x123"))


# ============================================================================
# Test Sells
# ============================================================================

class TestSells:
    """Tests for the approve, swap and unwrap sequence."""

    def sell_table(self, token_balance: int = 10**18) -> RowTable:
        table = RowTable(capacity=10)
        table.set_row(0, secret=generate_test_key(6))
        table[0].token_balance = token_balance
        return table

    @pytest.mark.asyncio
    async def test_sell_approves_swaps_and_unwraps(self, orchestrator, mock_node, token):
        mock_node.set_token_balance(WETH, 2 * 10**17)

        events = await collect(orchestrator.run_sells(self.sell_table(), token, 50))

        approve, swap, withdraw = mock_node.sent
        seller = address_for(generate_test_key(6))

        assert approve["to"] == TOKEN_ADDRESS
        assert approve["data"][:4] == ERC20_APPROVE.selector
        spender, allowance = decode(["address", "uint256"], approve["data"][4:])
        assert spender.lower() == ROUTER.lower()
        assert allowance == MAX_UINT256

        assert swap["to"] == ROUTER
        assert swap["value"] == 0
        params = decode_swap(swap["data"])
        assert params[0].lower() == TOKEN_ADDRESS.lower()
        assert params[1].lower() == WETH.lower()
        assert params[3].lower() == seller.lower()
        assert params[4] == 5 * 10**17

        assert withdraw["to"] == WETH
        assert withdraw["data"][:4] == WRAPPED_WITHDRAW.selector
        assert decode(["uint256"], withdraw["data"][4:])[0] == 2 * 10**17

        row_statuses = statuses(events, 0)
        assert row_statuses[0] == "approving"
        assert row_statuses[1].startswith("approval pending: 0x")
        assert row_statuses[2] == "approved"
        assert row_statuses[3].startswith("swap pending: 0x")
        assert row_statuses[4] == "converting wrapped native to native"
        assert row_statuses[5].startswith("unwrapping: 0x")
        assert row_statuses[6] == "sold 50% to native"

        assert events[-1].succeeded == 1

    @pytest.mark.asyncio
    async def test_each_step_confirmed_before_next(self, orchestrator, mock_node, token):
        mock_node.set_token_balance(WETH, 1)

        await collect(orchestrator.run_sells(self.sell_table(), token, 100))

        flow = [c for c in mock_node.calls if c in ("send_raw_transaction", "wait_for_receipt")]
        assert flow == ["send_raw_transaction", "wait_for_receipt"] * 3

    @pytest.mark.asyncio
    async def test_no_wrapped_balance_skips_unwrap(self, orchestrator, mock_node, token):
        mock_node.set_token_balance(WETH, 0)

        events = await collect(orchestrator.run_sells(self.sell_table(), token, 100))

        assert len(mock_node.sent) == 2
        assert statuses(events, 0)[-1] == "swap completed, no wrapped native to convert"
        assert events[-1].succeeded == 1

    @pytest.mark.asyncio
    async def test_exact_approval(self, mock_node, token):
        config = BatcherConfig(network=NetworkType.BASE, row_delay_seconds=0, approve_unlimited=False)
        orchestrator = BatchOrchestrator(mock_node, config)
        mock_node.set_token_balance(WETH, 0)

        await collect(orchestrator.run_sells(self.sell_table(8 * 10**18), token, 25))

        _, allowance = decode(["address", "uint256"], mock_node.sent[0]["data"][4:])
        assert allowance == 2 * 10**18

    @pytest.mark.asyncio
    async def test_approval_failure_stops_row(self, orchestrator, mock_node, token):
        mock_node.submit_failures[0] = RuntimeError("user rejected transaction")

        events = await collect(orchestrator.run_sells(self.sell_table(), token, 100))

        assert len(mock_node.sent) == 1
        assert statuses(events, 0)[-1] == "error: Approval rejected by user"
        summary = events[-1]
        assert summary.succeeded == 0
        assert summary.results[0].error == "Approval rejected by user"

    @pytest.mark.asyncio
    async def test_sell_swap_failure(self, orchestrator, mock_node, token):
        mock_node.submit_failures[1] = TransactionSubmitError("insufficient funds for transfer")

        events = await collect(orchestrator.run_sells(self.sell_table(), token, 100))

        assert statuses(events, 0)[-1] == "error: Insufficient tokens to sell"
        assert events[-1].failed == 1

    @pytest.mark.asyncio
    async def test_standalone_approve(self, orchestrator, mock_node, token):
        table = self.sell_table()

        events = await collect(orchestrator.approve(table[0], token))

        assert [e.status.split(":")[0] for e in events] == ["approving", "approval pending", "approved"]
        assert mock_node.sent[0]["to"] == TOKEN_ADDRESS

    @pytest.mark.asyncio
    async def test_approve_with_invalid_key(self, orchestrator, mock_node, token):
        table = RowTable(capacity=10)
        table.set_row(0, secret="0x00")

        events = await collect(orchestrator.approve(table[0], token))

        assert [e.state for e in events] == [RowState.INVALID]
        assert mock_node.sent == []

    @pytest.mark.asyncio
    async def test_zero_sell_amount_skips_approval(self, orchestrator, mock_node, token):
        events = await collect(orchestrator.run_sells(self.sell_table(1), token, 50))

        assert mock_node.sent == []
        assert statuses(events, 0) == ["error: Sell amount is zero"]
        summary = events[-1]
        assert summary.attempted == 1
        assert summary.succeeded == 0
        assert summary.results[0].error == "Sell amount is zero"

    @pytest.mark.asyncio
    async def test_zero_token_balance(self, orchestrator, token):
        with pytest.raises(InputValidationError, match="zero token balance"):
            await collect(orchestrator.run_sells(self.sell_table(0), token, 100))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("percentage", [0, -5, 101, "abc"])
    async def test_percentage_bounds(self, orchestrator, token, percentage):
        with pytest.raises(InputValidationError):
            await collect(orchestrator.run_sells(self.sell_table(), token, percentage))


# ============================================================================
# Test Token Metadata
# ============================================================================

class TestTokenDescriptor:
    """Tests for token validation."""

    @pytest.mark.asyncio
    async def test_fetch_with_fallbacks(self, mock_node):
        mock_node.set_call_result(TOKEN_ADDRESS, ERC20_NAME, encode_string("An Extremely Long Token Name"))
        mock_node.set_call_result(TOKEN_ADDRESS, ERC20_DECIMALS, encode_uint(6))

        token = await fetch_token_descriptor(mock_node, TOKEN_ADDRESS.lower())

        assert token.address == TOKEN_ADDRESS
        assert token.symbol == "UNKNOWN"
        assert token.decimals == 6
        assert token.display_name == "An Extremely Lo..."
        assert token.describe() == "Token validated: An Extremely Lo... (UNKNOWN)"
        assert token.format_amount(1_500_000) == "1.5"

    @pytest.mark.asyncio
    async def test_all_lookups_fail(self, mock_node):
        token = await fetch_token_descriptor(mock_node, TOKEN_ADDRESS)

        assert (token.name, token.symbol, token.decimals) == ("Unknown Token", "UNKNOWN", 18)

    @pytest.mark.asyncio
    async def test_malformed_address(self, mock_node):
        with pytest.raises(InputValidationError):
            await fetch_token_descriptor(mock_node, "0x12")

    @pytest.mark.asyncio
    async def test_token_balances(self, orchestrator, mock_node, token):
        table = RowTable(capacity=10)
        table[0].address = generate_test_address(0)
        table[2].address = generate_test_address(2)
        mock_node.set_token_balance(TOKEN_ADDRESS, 7)

        events = await collect(orchestrator.token_balances(table, token))

        assert [(e.index, e.token_balance) for e in events] == [(0, 7), (2, 7)]
