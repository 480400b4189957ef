"""
Transaction Signer - handles transaction signing.

Wraps an eth_account local account derived from a user-supplied secret.
"""

from typing import Any, Dict, Tuple

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_hex

from evm_batcher.core.errors import InvalidSecretError

logger = structlog.get_logger(__name__)


def is_valid_secret(secret: str) -> bool:
    """Check whether a secret parses to a signing key."""
    try:
        TransactionSigner.from_secret(secret)
    except InvalidSecretError:
        return False
    return True


def derive_address(secret: str) -> str:
    """
    Derive the checksummed address for a secret.

    Raises:
        InvalidSecretError: If the secret is not a valid private key
    """
    return TransactionSigner.from_secret(secret).address


class TransactionSigner:
    """
    Signs transactions with a single private key.

    Keys are held only in memory for the lifetime of the signer.
    """

    def __init__(self, account: LocalAccount):
        """
        Initialize the transaction signer.

        Args:
            account: eth_account local account holding the key
        """
        self._account = account

    @classmethod
    def from_secret(cls, secret: str) -> "TransactionSigner":
        """
        Create a signer from a hex private key, with or without 0x prefix.

        Raises:
            InvalidSecretError: If the secret is not a well-formed private key
        """
        if not secret or not secret.strip():
            raise InvalidSecretError("Empty private key")
        try:
            account = Account.from_key(secret.strip())
        except Exception as e:
            raise InvalidSecretError(f"Invalid private key format: {e}") from e
        return cls(account)

    @classmethod
    def generate(cls) -> "TransactionSigner":
        """Create a signer for a fresh random key."""
        return cls(Account.create())

    @property
    def address(self) -> str:
        """Get the checksummed address."""
        return self._account.address

    @property
    def secret(self) -> str:
        """Get the private key as 0x-prefixed hex."""
        return to_hex(self._account.key)

    def sign_transaction(self, tx: Dict[str, Any]) -> Tuple[bytes, str]:
        """
        Sign a transaction.

        Args:
            tx: Complete transaction dict (nonce, chainId, gas and fee fields set)

        Returns:
            Tuple of (raw signed transaction, transaction hash)
        """
        signed = self._account.sign_transaction(tx)
        tx_hash = to_hex(signed.hash)
        logger.debug("transaction_signed", address=self.address, tx_hash=tx_hash[:18] + "...")
        return bytes(signed.raw_transaction), tx_hash

    def __repr__(self) -> str:
        return f"TransactionSigner(address={self.address})"
