"""
Wallet generation and export.

Generated keys live only in memory until explicitly exported.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import structlog

from evm_batcher.config import BatcherConfig, get_config
from evm_batcher.core.errors import InputValidationError
from evm_batcher.tx.signer import TransactionSigner

logger = structlog.get_logger(__name__)

EXPORT_HEADER = "Wallet Address,Private Key"
DEFAULT_EXPORT_FILE = "generated_wallets.txt"


@dataclass
class GeneratedWallet:
    """An address/secret pair."""
    address: str
    secret: str

    def to_line(self) -> str:
        return f"{self.address},{self.secret}"


def validate_wallet_count(count: int, max_count: int) -> None:
    """Check that the requested number of wallets is allowed."""
    if count <= 0 or count > max_count:
        raise InputValidationError(f"Please enter a number between 1 and {max_count}")


def generate_wallets(count: int, config: Optional[BatcherConfig] = None) -> List[GeneratedWallet]:
    """
    Generate random wallets.

    Args:
        count: Number of wallets, 1 to the configured maximum
        config: Batcher configuration

    Returns:
        Generated wallets in creation order
    """
    config = config or get_config()
    validate_wallet_count(count, config.max_generated_wallets)

    wallets = []
    for _ in range(count):
        signer = TransactionSigner.generate()
        wallets.append(GeneratedWallet(address=signer.address, secret=signer.secret))

    logger.info("wallets_generated", count=count)
    return wallets


def wallets_to_csv(wallets: List[GeneratedWallet]) -> str:
    """Serialize wallets as a header followed by one address,secret line each."""
    if not wallets:
        raise InputValidationError("No wallets to export")
    lines = [EXPORT_HEADER] + [w.to_line() for w in wallets]
    return "\n".join(lines) + "\n"


def export_wallets(
    wallets: List[GeneratedWallet],
    path: Union[str, Path] = DEFAULT_EXPORT_FILE,
) -> Path:
    """Write wallets to a text file."""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(wallets_to_csv(wallets), encoding="utf-8")
    logger.info("wallets_exported", path=str(output), count=len(wallets))
    return output


class Clipboard:
    """In-memory clipboard buffer."""

    def __init__(self):
        self._content = ""

    def copy(self, text: str) -> None:
        self._content = text

    def paste(self) -> str:
        return self._content

    def clear(self) -> None:
        self._content = ""


def copy_wallets(wallets: List[GeneratedWallet], clipboard: Clipboard) -> str:
    """Copy the wallet export to a clipboard."""
    content = wallets_to_csv(wallets)
    clipboard.copy(content)
    logger.info("wallets_copied", count=len(wallets))
    return content
