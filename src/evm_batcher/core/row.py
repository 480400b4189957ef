"""
Row model.

A row is one unit of batch work: one transfer, or one wallet's buy/sell action.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from evm_batcher.core.errors import InputValidationError

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

INVALID_KEY = "invalid key"
BALANCE_LOADING = "Loading..."
BALANCE_ERROR = "Error"


class RowState(str, Enum):
    """Lifecycle state of a row."""
    EMPTY = "empty"               # No input, never attempted
    ELIGIBLE = "eligible"         # Passed the eligibility filter
    INVALID = "invalid"           # Secret failed to parse
    PROCESSING = "processing"     # Submission in progress
    PENDING = "pending"           # Transaction accepted, awaiting receipt
    CONFIRMED = "confirmed"       # Receipt with success status
    ERROR = "error"               # Submission or confirmation failed

    @property
    def is_terminal(self) -> bool:
        return self in (RowState.CONFIRMED, RowState.ERROR, RowState.INVALID, RowState.EMPTY)


def is_valid_address(address: Optional[str]) -> bool:
    """Check that a string is a 20-byte hex address."""
    return bool(address) and ADDRESS_PATTERN.match(address) is not None


def parse_amount(amount: Optional[str]) -> Optional[Decimal]:
    """Parse a positive decimal amount, returning None when absent or invalid."""
    if amount is None:
        return None
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


def short_id(tx_hash: str) -> str:
    """Shorten a transaction hash for display in a status string."""
    return f"{tx_hash[:10]}..."


def pending_status(tx_hash: str, prefix: str = "pending") -> str:
    return f"{prefix}: {short_id(tx_hash)}"


def success_status(tx_hash: str) -> str:
    return f"success: {short_id(tx_hash)}"


def error_status(message: str) -> str:
    return f"error: {message}"


@dataclass
class Row:
    """
    One row of batch work.

    Attributes:
        index: Position of the row in its table
        secret: Private key entered for the row
        address: Address derived from the secret
        destination: Recipient address for transfers
        amount: Decimal amount as entered (native units)
        balance: Native balance display string
        token_balance: Raw token balance in base units
        token_decimals: Decimals used to format token_balance
        status: Free-text status shown to the user
        state: Lifecycle state
    """

    index: int
    secret: str = ""
    address: str = ""
    destination: str = ""
    amount: str = ""
    balance: str = ""
    token_balance: int = 0
    token_decimals: int = 18
    status: str = ""
    state: RowState = RowState.EMPTY

    def __post_init__(self):
        if isinstance(self.state, str):
            self.state = RowState(self.state)

    @property
    def is_empty(self) -> bool:
        """A row without any user input is skipped entirely."""
        return not (self.secret.strip() or self.destination.strip() or self.amount.strip())

    @property
    def has_secret(self) -> bool:
        return bool(self.secret.strip())

    @property
    def amount_value(self) -> Optional[Decimal]:
        return parse_amount(self.amount)

    def clear(self) -> None:
        """Reset the row to its empty state."""
        self.secret = ""
        self.address = ""
        self.destination = ""
        self.amount = ""
        self.balance = ""
        self.token_balance = 0
        self.token_decimals = 18
        self.status = ""
        self.state = RowState.EMPTY

    def to_dict(self) -> dict:
        """Convert to dictionary for display. The secret is never included."""
        return {
            "index": self.index,
            "address": self.address,
            "destination": self.destination,
            "amount": self.amount,
            "balance": self.balance,
            "token_balance": self.token_balance,
            "token_decimals": self.token_decimals,
            "status": self.status,
            "state": self.state.value,
        }


@dataclass
class RowTable:
    """
    Fixed-capacity ordered collection of rows.

    Rows are created empty at initialization and mutated in place as
    events are applied.
    """

    capacity: int = 30
    rows: List[Row] = field(default_factory=list)

    def __post_init__(self):
        if not 1 <= self.capacity <= 30:
            raise InputValidationError("Row table capacity must be between 1 and 30")
        if not self.rows:
            self.rows = [Row(index=i) for i in range(self.capacity)]
        elif len(self.rows) > self.capacity:
            raise InputValidationError(
                f"Too many rows: {len(self.rows)} exceeds capacity {self.capacity}"
            )
        else:
            self.rows = list(self.rows) + [
                Row(index=i) for i in range(len(self.rows), self.capacity)
            ]

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index: int) -> Row:
        return self.rows[index]

    def set_row(
        self,
        index: int,
        secret: str = "",
        destination: str = "",
        amount: str = "",
    ) -> Row:
        """Fill in user input for a row."""
        row = self.rows[index]
        row.secret = secret
        row.destination = destination
        row.amount = str(amount) if amount != "" else ""
        return row

    def non_empty(self) -> List[Row]:
        return [r for r in self.rows if not r.is_empty]

    def with_secret(self) -> List[Row]:
        return [r for r in self.rows if r.has_secret]

    def with_address(self) -> List[Row]:
        return [r for r in self.rows if is_valid_address(r.address)]

    def reset_balances(self) -> None:
        """Invalidate cached balances, e.g. after a network change."""
        for row in self.rows:
            row.balance = ""
            row.token_balance = 0

    def clear(self) -> None:
        for row in self.rows:
            row.clear()


def _secret_parses(secret: str) -> bool:
    # Imported here: tx.signer imports core.errors, which initializes this package
    from evm_batcher.tx.signer import is_valid_secret
    return is_valid_secret(secret)


def filter_transfer_rows(rows: List[Row], require_secret: bool = True) -> Tuple[List[Row], List[Row]]:
    """
    Split rows into eligible transfers and rows with a secret that does not parse.

    Secret parsing is delegated to the signer so that invalid keys can be
    marked rather than silently dropped.

    Args:
        rows: Candidate rows in table order
        require_secret: Whether each row must carry its own secret

    Returns:
        Tuple of (eligible rows, rows with an invalid secret)
    """
    eligible: List[Row] = []
    invalid: List[Row] = []

    for row in rows:
        if row.is_empty:
            continue
        if require_secret:
            if not row.has_secret:
                continue
            if not _secret_parses(row.secret):
                invalid.append(row)
                continue
        if not is_valid_address(row.destination.strip()):
            continue
        if row.amount_value is None:
            continue
        eligible.append(row)

    return eligible, invalid


def filter_swap_rows(rows: List[Row], require_amount: bool = True) -> Tuple[List[Row], List[Row]]:
    """
    Split rows into eligible swap rows and rows with an invalid secret.

    Swap rows act on their own derived address, so no destination is needed.
    """
    eligible: List[Row] = []
    invalid: List[Row] = []

    for row in rows:
        if not row.has_secret:
            continue
        if not _secret_parses(row.secret):
            invalid.append(row)
            continue
        if require_amount and row.amount_value is None:
            continue
        eligible.append(row)

    return eligible, invalid
