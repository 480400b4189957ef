"""
Command-line interface for the EVM Batch Sender.

Reads rows from CSV files, runs the orchestrator and prints per-row
status updates as they happen.
"""

import argparse
import asyncio
import csv
import logging
import os
import sys
from typing import List, Optional, Union

import structlog

from evm_batcher import __version__
from evm_batcher.config import BatcherConfig, NetworkType, set_config
from evm_batcher.core.errors import BatcherError
from evm_batcher.core.events import BatchSummary, RowEvent
from evm_batcher.core.row import RowTable
from evm_batcher.state.app_state import AppState
from evm_batcher.wallets import export_wallets, wallets_to_csv


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stderr,
    )


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--network",
        choices=[n.value for n in NetworkType],
        default=NetworkType.BASE.value,
        help="Network (default: base)",
    )
    parser.add_argument(
        "--rpc-url",
        help="Custom JSON-RPC endpoint",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds to wait between rows (default: 1.0)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs in JSON format",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="evm-batcher",
        description="Sequential batch transfers and swaps for EVM networks",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Balances
    balances_parser = subparsers.add_parser("balances", help="Derive addresses and show balances")
    balances_parser.add_argument("--file", required=True, help="CSV with a 'secret' column")
    _add_common_arguments(balances_parser)

    # Single key transfer
    send_parser = subparsers.add_parser("send", help="Send from one key to many recipients")
    send_parser.add_argument(
        "--secret-env",
        default="EVM_BATCHER_SECRET",
        help="Environment variable holding the sender's private key",
    )
    send_parser.add_argument("--file", required=True, help="CSV with 'destination,amount' columns")
    _add_common_arguments(send_parser)

    # Multi key transfer
    multi_parser = subparsers.add_parser("multi-send", help="Send from many keys")
    multi_parser.add_argument("--file", required=True, help="CSV with 'secret,destination,amount' columns")
    _add_common_arguments(multi_parser)

    # Wallet generation
    generate_parser = subparsers.add_parser("generate", help="Generate random wallets")
    generate_parser.add_argument("--count", type=int, default=5, help="Number of wallets (1-100)")
    generate_parser.add_argument("--output", help="File to write (prints to stdout if omitted)")
    generate_parser.add_argument("--log-level", default="WARNING")

    # Token info
    token_parser = subparsers.add_parser("token-info", help="Validate a token and show its metadata")
    token_parser.add_argument("--token", required=True, help="Token contract address")
    _add_common_arguments(token_parser)

    # Buy
    buy_parser = subparsers.add_parser("buy", help="Buy a token from many wallets")
    buy_parser.add_argument("--token", required=True, help="Token contract address")
    buy_parser.add_argument("--file", required=True, help="CSV with 'secret,amount' columns")
    buy_parser.add_argument("--slippage", type=float, default=0.5, help="Slippage percent (not enforced on-chain)")
    _add_common_arguments(buy_parser)

    # Sell
    sell_parser = subparsers.add_parser("sell", help="Sell a token from many wallets")
    sell_parser.add_argument("--token", required=True, help="Token contract address")
    sell_parser.add_argument("--file", required=True, help="CSV with a 'secret' column")
    sell_parser.add_argument(
        "--percent",
        type=float,
        default=100.0,
        help="Percentage of each token balance to sell (default: 100)",
    )
    sell_parser.add_argument("--slippage", type=float, default=0.5, help="Slippage percent (not enforced on-chain)")
    _add_common_arguments(sell_parser)

    return parser


def build_config(args: argparse.Namespace) -> BatcherConfig:
    """Create a configuration from command-line arguments."""
    overrides = {
        "network": NetworkType(args.network),
        "log_level": args.log_level,
        "log_json": args.log_json,
    }
    if args.rpc_url:
        overrides["rpc_url"] = args.rpc_url
    if args.delay is not None:
        overrides["row_delay_seconds"] = args.delay
    if getattr(args, "slippage", None) is not None:
        overrides["slippage_percent"] = args.slippage
    config = BatcherConfig(**overrides)
    set_config(config)
    return config


def load_table(path: str, capacity: int = 30) -> RowTable:
    """
    Read rows from a CSV file with any of the columns secret, destination, amount.

    Raises:
        BatcherError: If the file holds more rows than the table capacity
    """
    with open(path, newline="", encoding="utf-8") as f:
        records = [r for r in csv.DictReader(f) if any((v or "").strip() for v in r.values())]

    table = RowTable(capacity=capacity)
    if len(records) > capacity:
        raise BatcherError(f"{path} has {len(records)} rows; at most {capacity} are supported")

    for index, record in enumerate(records):
        table.set_row(
            index,
            secret=(record.get("secret") or "").strip(),
            destination=(record.get("destination") or record.get("address") or "").strip(),
            amount=(record.get("amount") or "").strip(),
        )
    return table


def print_event(event: Union[RowEvent, BatchSummary]) -> None:
    """Print a single orchestrator event."""
    if isinstance(event, BatchSummary):
        print()
        print(event.describe())
        for result in event.results:
            outcome = result.hash if result.succeeded else f"error: {result.error}"
            print(f"  {result.to}  {result.amount}  {outcome}")
        return

    parts = [f"[row {event.index + 1:>2}]"]
    if event.address is not None:
        parts.append(f"address={event.address or '-'}")
    if event.balance is not None:
        parts.append(f"balance={event.balance or '-'}")
    if event.token_balance is not None:
        parts.append(f"token_balance={event.token_balance}")
    if event.status is not None:
        parts.append(event.status)
    elif event.error:
        parts.append(f"error: {event.error}")
    print(" ".join(parts))


async def _connected_state(args: argparse.Namespace) -> AppState:
    config = build_config(args)
    state = AppState(config)
    await state.connect()
    state.require_node()
    print(f"Network: {config.network.value} ({config.network_rpc_url})")
    return state


async def run_balances(args: argparse.Namespace) -> None:
    state = await _connected_state(args)
    try:
        table = load_table(args.file, state.config.max_rows)
        state.transfers = table
        await state.drain(state.orchestrator().load_keys(table), table, on_event=print_event)
    finally:
        await state.close()


async def run_send(args: argparse.Namespace) -> None:
    secret = os.environ.get(args.secret_env, "")
    if not secret:
        raise BatcherError(f"Set the sender's private key in ${args.secret_env}")

    state = await _connected_state(args)
    try:
        state.secret = secret
        print(f"Sender: {state.derive_address()}")
        print(f"Balance: {await state.refresh_single_key_balance()}")
        print()

        state.recipients = load_table(args.file, state.config.max_rows)
        await state.drain(
            state.orchestrator().run_single_key(secret, state.recipients),
            state.recipients,
            on_event=print_event,
        )
    finally:
        await state.close()


async def run_multi_send(args: argparse.Namespace) -> None:
    state = await _connected_state(args)
    try:
        state.transfers = load_table(args.file, state.config.max_rows)
        await state.drain(
            state.orchestrator().run_multi_key(state.transfers),
            state.transfers,
            on_event=print_event,
        )
    finally:
        await state.close()


async def run_token_info(args: argparse.Namespace) -> None:
    state = await _connected_state(args)
    try:
        token = await state.validate_token(args.token)
        print(token.describe())
        print(f"  Address:  {token.address}")
        print(f"  Name:     {token.name}")
        print(f"  Symbol:   {token.symbol}")
        print(f"  Decimals: {token.decimals}")
    finally:
        await state.close()


async def run_buy(args: argparse.Namespace) -> None:
    state = await _connected_state(args)
    try:
        token = await state.validate_token(args.token)
        print(token.describe())
        print()

        state.buyers = load_table(args.file, state.config.max_rows)
        await state.drain(
            state.orchestrator().run_buys(state.buyers, token),
            state.buyers,
            on_event=print_event,
        )
    finally:
        await state.close()


async def run_sell(args: argparse.Namespace) -> None:
    state = await _connected_state(args)
    try:
        state.buyers = load_table(args.file, state.config.max_rows)
        orchestrator = state.orchestrator()

        await state.drain(orchestrator.load_keys(state.buyers), state.buyers, on_event=print_event)
        token = await state.validate_token(args.token)
        print(token.describe())
        print()

        await state.drain(
            orchestrator.run_sells(state.buyers, token, args.percent),
            state.buyers,
            on_event=print_event,
        )
    finally:
        await state.close()


def run_generate(args: argparse.Namespace) -> None:
    state = AppState(BatcherConfig())
    wallets = state.generate_wallets(args.count)
    if args.output:
        path = export_wallets(wallets, args.output)
        print(f"Wrote {len(wallets)} wallets to {path}")
        print("Keep this file secret!")
    else:
        sys.stdout.write(wallets_to_csv(wallets))


COMMANDS = {
    "balances": run_balances,
    "send": run_send,
    "multi-send": run_multi_send,
    "token-info": run_token_info,
    "buy": run_buy,
    "sell": run_sell,
}


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Setup logging
    log_level = getattr(args, "log_level", "WARNING")
    log_json = getattr(args, "log_json", False)
    setup_logging(log_level, log_json)

    try:
        if args.command == "generate":
            run_generate(args)
        else:
            asyncio.run(COMMANDS[args.command](args))
    except BatcherError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
