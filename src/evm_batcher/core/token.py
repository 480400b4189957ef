"""
Token descriptor and amount formatting.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Union

import structlog
from eth_utils import to_checksum_address

from evm_batcher.core.errors import InputValidationError
from evm_batcher.core.row import is_valid_address
from evm_batcher.node.interface import NodeInterface
from evm_batcher.tx.contracts import (
    ERC20_DECIMALS,
    ERC20_NAME,
    ERC20_SYMBOL,
    WRAPPED_BALANCE_OF,
    encode_balance_of,
)

logger = structlog.get_logger(__name__)

UNKNOWN_NAME = "Unknown Token"
UNKNOWN_SYMBOL = "UNKNOWN"
DEFAULT_DECIMALS = 18
DISPLAY_LIMIT = 15


def _truncate(text: str, limit: int = DISPLAY_LIMIT) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def format_units(value: int, decimals: int = 18) -> str:
    """Format base units as a decimal string, e.g. 10**18 -> '1.0'."""
    with localcontext() as ctx:
        ctx.prec = 100
        amount = Decimal(int(value)).scaleb(-decimals)
        text = format(amount.normalize(), "f") if amount else "0"
    if "." not in text:
        text += ".0"
    return text


def format_ether(value: int) -> str:
    return format_units(value, 18)


def parse_units(amount: Union[str, Decimal], decimals: int = 18) -> int:
    """
    Convert a decimal amount to base units.

    Raises:
        InputValidationError: If the amount is not a number or has more
            fractional digits than the unit allows
    """
    try:
        value = Decimal(str(amount))
    except ArithmeticError as e:
        raise InputValidationError(f"Invalid amount: {amount}") from e
    if not value.is_finite():
        raise InputValidationError(f"Invalid amount: {amount}")

    with localcontext() as ctx:
        ctx.prec = 100
        # Trailing zeros do not count as precision
        if value.normalize().as_tuple().exponent < -decimals:
            raise InputValidationError("fractional component exceeds decimals")
        return int(value.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_DOWN))


@dataclass
class TokenDescriptor:
    """ERC20 token metadata, fetched once per validated address."""

    address: str
    name: str = UNKNOWN_NAME
    symbol: str = UNKNOWN_SYMBOL
    decimals: int = DEFAULT_DECIMALS

    @property
    def display_name(self) -> str:
        return _truncate(self.name)

    @property
    def display_symbol(self) -> str:
        return _truncate(self.symbol)

    def format_amount(self, value: int) -> str:
        return format_units(value, self.decimals)

    def describe(self) -> str:
        return f"Token validated: {self.display_name} ({self.display_symbol})"


async def fetch_token_descriptor(node: NodeInterface, address: str) -> TokenDescriptor:
    """
    Validate a token address and read its metadata.

    Failures reading name, symbol or decimals are not fatal; placeholder
    values are used instead.

    Raises:
        InputValidationError: If the address is malformed
    """
    if not is_valid_address(address):
        raise InputValidationError("Please enter a valid token address")

    token = to_checksum_address(address)
    descriptor = TokenDescriptor(address=token)

    try:
        descriptor.name = ERC20_NAME.decode_result(await node.call(token, ERC20_NAME.encode_call()))[0]
    except Exception as e:
        logger.warning("token_name_unavailable", token=token, error=str(e))

    try:
        descriptor.symbol = ERC20_SYMBOL.decode_result(await node.call(token, ERC20_SYMBOL.encode_call()))[0]
    except Exception as e:
        logger.warning("token_symbol_unavailable", token=token, error=str(e))

    try:
        descriptor.decimals = int(
            ERC20_DECIMALS.decode_result(await node.call(token, ERC20_DECIMALS.encode_call()))[0]
        )
    except Exception as e:
        logger.warning("token_decimals_unavailable", token=token, error=str(e))

    logger.info(
        "token_validated",
        token=token,
        name=descriptor.name,
        symbol=descriptor.symbol,
        decimals=descriptor.decimals,
    )
    return descriptor


async def fetch_token_balance(node: NodeInterface, token: str, owner: str) -> int:
    """Read an ERC20 balance in base units."""
    data = await node.call(token, encode_balance_of(owner))
    return int(WRAPPED_BALANCE_OF.decode_result(data)[0])
