"""
Batch Transaction Orchestrator.

Signs and submits one on-chain operation per row, strictly in order, and
reports progress as a stream of events.
"""

import asyncio
from decimal import Decimal
from typing import AsyncIterator, Iterable, List, Optional, Tuple, Union

import structlog

from evm_batcher.config import BatcherConfig, get_config
from evm_batcher.core.errors import (
    ConfigurationError,
    InputValidationError,
    InvalidSecretError,
    OperationKind,
    TransactionRevertedError,
    classify_error,
)
from evm_batcher.core.events import BatchSummary, RowEvent, TransferResult
from evm_batcher.core.row import (
    BALANCE_ERROR,
    BALANCE_LOADING,
    INVALID_KEY,
    Row,
    RowState,
    error_status,
    filter_swap_rows,
    filter_transfer_rows,
    is_valid_address,
    pending_status,
    success_status,
)
from evm_batcher.core.token import (
    TokenDescriptor,
    fetch_token_balance,
    format_ether,
    parse_units,
)
from evm_batcher.node.interface import NodeInterface
from evm_batcher.tx.builder import TransactionBuilder
from evm_batcher.tx.contracts import (
    MAX_UINT256,
    encode_approve,
    encode_exact_input_single,
    encode_withdraw,
)
from evm_batcher.tx.signer import TransactionSigner, derive_address

logger = structlog.get_logger(__name__)

Event = Union[RowEvent, BatchSummary]

TokenRef = Union[TokenDescriptor, str]


def _token_address(token: TokenRef) -> str:
    address = token.address if isinstance(token, TokenDescriptor) else token
    if not is_valid_address(address):
        raise InputValidationError("Please enter a valid token address")
    return address


def _invalid_key_event(row: Row) -> RowEvent:
    return RowEvent(
        index=row.index,
        state=RowState.INVALID,
        status=INVALID_KEY,
        address="",
        balance="",
    )


class BatchOrchestrator:
    """
    Sequential batch submission.

    Every operation is an async generator. Rows are processed one at a
    time; each remote call is awaited before the next begins, so rows that
    share a key never race for a nonce. A failure is scoped to its row and
    the batch continues.

    Usage:
        ```python
        orchestrator = BatchOrchestrator(node)
        async for event in orchestrator.run_multi_key(table):
            state.apply(event, table)
        ```
    """

    def __init__(
        self,
        node: NodeInterface,
        config: Optional[BatcherConfig] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            node: Connected node interface
            config: Batcher configuration
        """
        self.node = node
        self.config = config or get_config()
        self.builder = TransactionBuilder(node, self.config)

    # Balances

    async def refresh_balance(self, index: int, address: str) -> RowEvent:
        """Fetch the native balance for one row."""
        try:
            balance = format_ether(await self.node.get_balance(address))
        except Exception as e:
            logger.warning("balance_fetch_failed", index=index, address=address, error=str(e))
            return RowEvent(index=index, balance=BALANCE_ERROR)
        return RowEvent(index=index, balance=balance)

    async def load_keys(self, rows: Iterable[Row]) -> AsyncIterator[RowEvent]:
        """
        Derive addresses and fetch balances for every row with a secret.

        A secret that does not parse marks the row invalid; its address is
        never populated.
        """
        targets = [r for r in rows if r.has_secret]
        if not targets:
            raise InputValidationError("No private keys to load")

        logger.info("loading_keys", count=len(targets))

        for position, row in enumerate(targets):
            try:
                address = derive_address(row.secret)
            except InvalidSecretError:
                logger.warning("invalid_key", index=row.index)
                yield _invalid_key_event(row)
                continue

            yield RowEvent(index=row.index, address=address, balance=BALANCE_LOADING)
            yield await self.refresh_balance(row.index, address)

            if position < len(targets) - 1:
                await asyncio.sleep(self.config.key_load_delay_seconds)

    async def token_balances(
        self,
        rows: Iterable[Row],
        token: TokenDescriptor,
    ) -> AsyncIterator[RowEvent]:
        """Refresh token balances for every row with a derived address."""
        targets = [r for r in rows if is_valid_address(r.address)]

        for position, row in enumerate(targets):
            yield await self._token_balance_event(row.index, row.address, token)

            if position < len(targets) - 1:
                await asyncio.sleep(self.config.token_balance_delay_seconds)

    async def _token_balance_event(
        self,
        index: int,
        address: str,
        token: TokenDescriptor,
    ) -> RowEvent:
        try:
            balance = await fetch_token_balance(self.node, token.address, address)
        except Exception as e:
            logger.warning("token_balance_fetch_failed", index=index, token=token.address, error=str(e))
            return RowEvent(index=index, error=f"Failed to fetch token balance: {e}")
        return RowEvent(index=index, token_balance=balance, token_decimals=token.decimals)

    # Transfers

    async def run_single_key(
        self,
        secret: str,
        rows: Iterable[Row],
    ) -> AsyncIterator[Event]:
        """
        Send native value from one key to every eligible recipient row.

        Raises:
            InvalidSecretError: If the secret does not parse
            InputValidationError: If no row has a valid address and amount
        """
        signer = TransactionSigner.from_secret(secret)
        eligible, _ = filter_transfer_rows(list(rows), require_secret=False)
        if not eligible:
            raise InputValidationError(
                "Please enter at least one valid recipient with address and amount"
            )

        logger.info("single_key_batch_starting", sender=signer.address, rows=len(eligible))

        jobs = [(row, signer) for row in eligible]
        async for event in self._run_transfers(jobs, record_sender=False):
            yield event

    async def run_multi_key(self, rows: Iterable[Row]) -> AsyncIterator[Event]:
        """
        Send native value from each row's own key to its destination.

        Raises:
            InputValidationError: If no row is eligible
        """
        eligible, invalid = filter_transfer_rows(list(rows), require_secret=True)

        for row in invalid:
            yield _invalid_key_event(row)

        if not eligible:
            raise InputValidationError(
                "Please enter at least one valid transfer with private key, "
                "destination address, and amount"
            )

        logger.info("multi_key_batch_starting", rows=len(eligible))

        jobs = [(row, TransactionSigner.from_secret(row.secret)) for row in eligible]
        async for event in self._run_transfers(jobs, record_sender=True):
            yield event

    async def _run_transfers(
        self,
        jobs: List[Tuple[Row, TransactionSigner]],
        record_sender: bool,
    ) -> AsyncIterator[Event]:
        results: List[TransferResult] = []
        succeeded = 0

        for position, (row, signer) in enumerate(jobs):
            destination = row.destination.strip()
            result = TransferResult(
                to=destination,
                amount=row.amount.strip(),
                sender=signer.address if record_sender else None,
            )

            yield RowEvent(index=row.index, state=RowState.PROCESSING, status="processing")
            logger.info(
                "processing_row",
                index=row.index,
                position=f"{position + 1}/{len(jobs)}",
                to=destination,
            )

            try:
                tx = await self.builder.build(
                    signer.address,
                    destination,
                    value=parse_units(row.amount_value, 18),
                    default_gas_limit=self.config.transfer_gas_limit,
                )
                tx_hash = await self.node.send_transaction(signer, tx)
                result.hash = tx_hash
                yield RowEvent(
                    index=row.index,
                    state=RowState.PENDING,
                    status=pending_status(tx_hash),
                    tx_hash=tx_hash,
                )

                await self._confirm(tx_hash)
                succeeded += 1
                yield RowEvent(
                    index=row.index,
                    state=RowState.CONFIRMED,
                    status=success_status(tx_hash),
                    tx_hash=tx_hash,
                )
                logger.info("row_confirmed", index=row.index, tx_hash=tx_hash)

            except Exception as e:
                message = classify_error(e, OperationKind.TRANSFER)
                result.error = message
                logger.error("row_failed", index=row.index, error=str(e))
                yield RowEvent(
                    index=row.index,
                    state=RowState.ERROR,
                    status=error_status(message),
                    tx_hash=result.hash,
                    error=message,
                )

            results.append(result)

            if position < len(jobs) - 1:
                await asyncio.sleep(self.config.row_delay_seconds)

        yield self._summarize(results, succeeded)

    # Swaps

    def _swap_contracts(self) -> Tuple[str, str]:
        router = self.config.router_address
        wrapped = self.config.wrapped_native_address
        if not router or not wrapped:
            raise ConfigurationError(
                f"Swap router not available for {self.config.network.value} network"
            )
        return router, wrapped

    async def run_buys(
        self,
        rows: Iterable[Row],
        token: TokenRef,
    ) -> AsyncIterator[Event]:
        """
        Buy a token with each row's native amount through the router.

        The swap is a fixed-input single-hop from the wrapped native asset
        with no minimum output.

        Raises:
            ConfigurationError: If the network has no router
            InputValidationError: If the token address is malformed or no row is eligible
        """
        router, wrapped = self._swap_contracts()
        token_address = _token_address(token)
        eligible, invalid = filter_swap_rows(list(rows), require_amount=True)

        for row in invalid:
            yield _invalid_key_event(row)

        if not eligible:
            raise InputValidationError("Please enter at least one wallet with a private key and amount")

        logger.info(
            "buy_batch_starting",
            token=token_address,
            rows=len(eligible),
            fee_tier=self.config.swap_fee_tier,
            slippage_percent=str(self.config.slippage_percent),
            amount_out_minimum=0,
        )

        results: List[TransferResult] = []
        succeeded = 0

        for position, row in enumerate(eligible):
            signer = TransactionSigner.from_secret(row.secret)
            result = TransferResult(to=token_address, amount=row.amount.strip(), sender=signer.address)

            yield RowEvent(
                index=row.index,
                state=RowState.PROCESSING,
                status="processing",
                address=signer.address,
            )

            try:
                amount_in = parse_units(row.amount_value, 18)
                data = encode_exact_input_single(
                    token_in=wrapped,
                    token_out=token_address,
                    fee=self.config.swap_fee_tier,
                    recipient=signer.address,
                    amount_in=amount_in,
                    amount_out_minimum=0,
                )
                tx = await self.builder.build(
                    signer.address,
                    router,
                    value=amount_in,
                    data=data,
                    default_gas_limit=self.config.swap_gas_limit,
                )
                tx_hash = await self.node.send_transaction(signer, tx)
                result.hash = tx_hash
                yield RowEvent(
                    index=row.index,
                    state=RowState.PENDING,
                    status=pending_status(tx_hash),
                    tx_hash=tx_hash,
                )

                await self._confirm(tx_hash)
                succeeded += 1
                yield RowEvent(
                    index=row.index,
                    state=RowState.CONFIRMED,
                    status=success_status(tx_hash),
                    tx_hash=tx_hash,
                )
                logger.info("buy_confirmed", index=row.index, tx_hash=tx_hash)

                yield await self.refresh_balance(row.index, signer.address)
                if isinstance(token, TokenDescriptor):
                    yield await self._token_balance_event(row.index, signer.address, token)

            except Exception as e:
                message = classify_error(e, OperationKind.BUY)
                result.error = message
                logger.error("buy_failed", index=row.index, error=str(e))
                yield RowEvent(
                    index=row.index,
                    state=RowState.ERROR,
                    status=error_status(message),
                    tx_hash=result.hash,
                    error=message,
                )

            results.append(result)

            if position < len(eligible) - 1:
                await asyncio.sleep(self.config.row_delay_seconds)

        yield self._summarize(results, succeeded)

    async def approve(
        self,
        row: Row,
        token: TokenRef,
        amount: Optional[int] = None,
    ) -> AsyncIterator[RowEvent]:
        """
        Approve the router to spend a row's tokens.

        Args:
            row: Row whose key owns the tokens
            token: Token to approve
            amount: Allowance; defaults to the maximum when unlimited approval is configured
        """
        router, _ = self._swap_contracts()
        token_address = _token_address(token)
        try:
            signer = TransactionSigner.from_secret(row.secret)
        except InvalidSecretError:
            yield _invalid_key_event(row)
            return

        async for event in self._approve(row, signer, token_address, router, amount):
            yield event

    async def _approve(
        self,
        row: Row,
        signer: TransactionSigner,
        token_address: str,
        router: str,
        amount: Optional[int],
    ) -> AsyncIterator[RowEvent]:
        allowance = MAX_UINT256 if self.config.approve_unlimited or amount is None else amount

        yield RowEvent(index=row.index, state=RowState.PROCESSING, status="approving")
        try:
            tx = await self.builder.build(
                signer.address,
                token_address,
                data=encode_approve(router, allowance),
                default_gas_limit=self.config.approve_gas_limit,
            )
            tx_hash = await self.node.send_transaction(signer, tx)
            yield RowEvent(
                index=row.index,
                state=RowState.PENDING,
                status=pending_status(tx_hash, "approval pending"),
                tx_hash=tx_hash,
            )

            await self._confirm(tx_hash)
            logger.info(
                "approval_confirmed",
                index=row.index,
                token=token_address,
                unlimited=allowance == MAX_UINT256,
            )
            yield RowEvent(index=row.index, state=RowState.PROCESSING, status="approved", tx_hash=tx_hash)

        except Exception as e:
            message = classify_error(e, OperationKind.APPROVE)
            logger.error("approval_failed", index=row.index, error=str(e))
            yield RowEvent(
                index=row.index,
                state=RowState.ERROR,
                status=error_status(message),
                error=message,
            )

    async def run_sells(
        self,
        rows: Iterable[Row],
        token: TokenRef,
        percentage: Union[int, float, Decimal, str],
    ) -> AsyncIterator[Event]:
        """
        Sell a percentage of each row's token balance for native currency.

        Each row approves the router, swaps token to wrapped native, then
        unwraps the wrapped balance. Each step is confirmed before the next.
        Rows are eligible when their cached token balance is nonzero.

        Raises:
            ConfigurationError: If the network has no router
            InputValidationError: If the percentage is out of range or no row is eligible
        """
        router, wrapped = self._swap_contracts()
        token_address = _token_address(token)

        try:
            percent = Decimal(str(percentage))
        except ArithmeticError as e:
            raise InputValidationError(f"Invalid sell percentage: {percentage}") from e
        if not percent.is_finite() or not 0 < percent <= 100:
            raise InputValidationError("Sell percentage must be between 0 and 100")

        candidates, invalid = filter_swap_rows(list(rows), require_amount=False)
        eligible = [r for r in candidates if r.token_balance > 0]

        for row in invalid:
            yield _invalid_key_event(row)

        if not eligible:
            raise InputValidationError("Invalid or zero token balance")

        logger.info(
            "sell_batch_starting",
            token=token_address,
            rows=len(eligible),
            percentage=str(percent),
            slippage_percent=str(self.config.slippage_percent),
            amount_out_minimum=0,
        )

        results: List[TransferResult] = []
        succeeded = 0
        percent_label = format(percent.normalize(), "f")

        for position, row in enumerate(eligible):
            signer = TransactionSigner.from_secret(row.secret)
            sell_amount = int(Decimal(row.token_balance) * percent / 100)
            result = TransferResult(
                to=wrapped,
                amount=str(sell_amount),
                sender=signer.address,
            )

            approved = False
            if sell_amount <= 0:
                message = "Sell amount is zero"
                result.error = message
                logger.warning("sell_amount_zero", index=row.index, token_balance=row.token_balance)
                yield RowEvent(
                    index=row.index,
                    state=RowState.ERROR,
                    status=error_status(message),
                    error=message,
                )
            else:
                async for event in self._approve(row, signer, token_address, router, sell_amount):
                    yield event
                    if event.status == "approved":
                        approved = True
                    elif event.state == RowState.ERROR:
                        result.error = event.error

            if approved:
                try:
                    tx_hash = await self._sell_swap(row, signer, token_address, wrapped, router, sell_amount)
                    result.hash = tx_hash
                    yield RowEvent(
                        index=row.index,
                        state=RowState.PENDING,
                        status=pending_status(tx_hash, "swap pending"),
                        tx_hash=tx_hash,
                    )
                    await self._confirm(tx_hash)

                    yield RowEvent(
                        index=row.index,
                        state=RowState.PROCESSING,
                        status="converting wrapped native to native",
                    )
                    wrapped_balance = await fetch_token_balance(self.node, wrapped, signer.address)

                    if wrapped_balance > 0:
                        unwrap_hash = await self._unwrap(signer, wrapped, wrapped_balance)
                        yield RowEvent(
                            index=row.index,
                            state=RowState.PENDING,
                            status=pending_status(unwrap_hash, "unwrapping"),
                            tx_hash=unwrap_hash,
                        )
                        await self._confirm(unwrap_hash)
                        final_status = f"sold {percent_label}% to native"
                    else:
                        final_status = "swap completed, no wrapped native to convert"

                    succeeded += 1
                    yield RowEvent(
                        index=row.index,
                        state=RowState.CONFIRMED,
                        status=final_status,
                        tx_hash=tx_hash,
                    )
                    logger.info("sell_confirmed", index=row.index, tx_hash=tx_hash, unwrapped=wrapped_balance)

                    yield await self.refresh_balance(row.index, signer.address)
                    if isinstance(token, TokenDescriptor):
                        yield await self._token_balance_event(row.index, signer.address, token)

                except Exception as e:
                    message = classify_error(e, OperationKind.SELL)
                    result.error = message
                    logger.error("sell_failed", index=row.index, error=str(e))
                    yield RowEvent(
                        index=row.index,
                        state=RowState.ERROR,
                        status=error_status(message),
                        tx_hash=result.hash,
                        error=message,
                    )

            results.append(result)

            if position < len(eligible) - 1:
                await asyncio.sleep(self.config.row_delay_seconds)

        yield self._summarize(results, succeeded)

    async def _sell_swap(
        self,
        row: Row,
        signer: TransactionSigner,
        token_address: str,
        wrapped: str,
        router: str,
        amount_in: int,
    ) -> str:
        data = encode_exact_input_single(
            token_in=token_address,
            token_out=wrapped,
            fee=self.config.swap_fee_tier,
            recipient=signer.address,
            amount_in=amount_in,
            amount_out_minimum=0,
        )
        tx = await self.builder.build(
            signer.address,
            router,
            data=data,
            default_gas_limit=self.config.swap_gas_limit,
        )
        logger.info("sell_swap_submitting", index=row.index, amount_in=amount_in)
        return await self.node.send_transaction(signer, tx)

    async def _unwrap(self, signer: TransactionSigner, wrapped: str, amount: int) -> str:
        tx = await self.builder.build(
            signer.address,
            wrapped,
            data=encode_withdraw(amount),
            default_gas_limit=self.config.unwrap_gas_limit,
        )
        return await self.node.send_transaction(signer, tx)

    # Helpers

    async def _confirm(self, tx_hash: str) -> None:
        receipt = await self.node.wait_for_receipt(
            tx_hash,
            timeout_seconds=self.config.confirmation_timeout_seconds,
        )
        if not receipt.succeeded:
            raise TransactionRevertedError(tx_hash)

    def _summarize(self, results: List[TransferResult], succeeded: int) -> BatchSummary:
        summary = BatchSummary(attempted=len(results), succeeded=succeeded, results=results)
        logger.info(
            "batch_complete",
            attempted=summary.attempted,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return summary
