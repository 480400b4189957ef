#!/usr/bin/env python3
"""
Check native balances of exported wallets.
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from evm_batcher.config import BatcherConfig, NetworkType
from evm_batcher.core.token import format_ether
from evm_batcher.node.jsonrpc import JsonRpcAdapter
from evm_batcher.wallets import DEFAULT_EXPORT_FILE, EXPORT_HEADER


def read_addresses(path: Path) -> list:
    """Read addresses from a wallet export file."""
    addresses = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line == EXPORT_HEADER:
            continue
        addresses.append(line.split(",", 1)[0])
    return addresses


async def check_balances(network: str, wallets_file: str):
    """Print the balance of every wallet in an export file."""

    path = Path(wallets_file)
    if not path.exists():
        print(f"❌ Error: Wallet file not found at {path}")
        print("   Run: evm-batcher generate --output generated_wallets.txt first")
        return

    addresses = read_addresses(path)
    config = BatcherConfig(network=NetworkType(network))

    node = JsonRpcAdapter(config)
    await node.connect()

    try:
        total = 0
        print(f"\n💰 Balances on {config.network.value}:")
        for i, address in enumerate(addresses):
            balance = await node.get_balance(address)
            total += balance
            print(f"   {i+1}. {address}  {format_ether(balance)}")

        print(f"\n   Total: {format_ether(total)} across {len(addresses)} wallets")

        if total == 0:
            print(f"\n❌ No balance found. Fund the wallets before sending.")

        return {"wallets": len(addresses), "total_wei": total}

    finally:
        await node.disconnect()


def main():
    parser = argparse.ArgumentParser(description="Check balances of generated wallets")
    parser.add_argument(
        "--network", "-n",
        choices=[n.value for n in NetworkType],
        default=NetworkType.BASE_SEPOLIA.value,
        help="Network (default: base_sepolia)"
    )
    parser.add_argument(
        "--wallets-file", "-w",
        default=DEFAULT_EXPORT_FILE,
        help=f"Wallet export file (default: {DEFAULT_EXPORT_FILE})"
    )

    args = parser.parse_args()
    asyncio.run(check_balances(args.network, args.wallets_file))


if __name__ == "__main__":
    main()
