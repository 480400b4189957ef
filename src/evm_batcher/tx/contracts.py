"""
Contract call encoding for ERC20 tokens, the swap router and the wrapped
native asset.

Only the handful of functions the batcher uses are described here.
"""

from dataclasses import dataclass
from typing import Any, List, Sequence

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

MAX_UINT256 = 2**256 - 1


@dataclass(frozen=True)
class ContractFunction:
    """A contract function with its argument and return types."""
    name: str
    inputs: Sequence[str]
    outputs: Sequence[str] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode_call(self, *args: Any) -> bytes:
        """ABI-encode calldata for this function."""
        return self.selector + encode(list(self.inputs), list(args))

    def decode_result(self, data: bytes) -> List[Any]:
        """Decode raw return data."""
        return list(decode(list(self.outputs), bytes(data)))


# ERC20
ERC20_NAME = ContractFunction("name", (), ("string",))
ERC20_SYMBOL = ContractFunction("symbol", (), ("string",))
ERC20_DECIMALS = ContractFunction("decimals", (), ("uint8",))
ERC20_BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))
ERC20_APPROVE = ContractFunction("approve", ("address", "uint256"), ("bool",))

# Wrapped native asset (WETH-style)
WRAPPED_DEPOSIT = ContractFunction("deposit", ())
WRAPPED_WITHDRAW = ContractFunction("withdraw", ("uint256",))
WRAPPED_BALANCE_OF = ERC20_BALANCE_OF
WRAPPED_APPROVE = ERC20_APPROVE

# Uniswap V3 style router
EXACT_INPUT_SINGLE_PARAMS = "(address,address,uint24,address,uint256,uint256,uint160)"
ROUTER_EXACT_INPUT_SINGLE = ContractFunction(
    "exactInputSingle",
    (EXACT_INPUT_SINGLE_PARAMS,),
    ("uint256",),
)


def encode_balance_of(owner: str) -> bytes:
    return ERC20_BALANCE_OF.encode_call(to_checksum_address(owner))


def encode_approve(spender: str, amount: int) -> bytes:
    return ERC20_APPROVE.encode_call(to_checksum_address(spender), amount)


def encode_withdraw(amount: int) -> bytes:
    return WRAPPED_WITHDRAW.encode_call(amount)


def encode_exact_input_single(
    token_in: str,
    token_out: str,
    fee: int,
    recipient: str,
    amount_in: int,
    amount_out_minimum: int = 0,
    sqrt_price_limit_x96: int = 0,
) -> bytes:
    """
    Encode a fixed-input single-hop swap.

    Args:
        token_in: Token sold
        token_out: Token bought
        fee: Pool fee tier
        recipient: Receiver of the output tokens
        amount_in: Exact input amount in base units
        amount_out_minimum: Minimum acceptable output
        sqrt_price_limit_x96: Price limit, 0 for none
    """
    params = (
        to_checksum_address(token_in),
        to_checksum_address(token_out),
        fee,
        to_checksum_address(recipient),
        amount_in,
        amount_out_minimum,
        sqrt_price_limit_x96,
    )
    return ROUTER_EXACT_INPUT_SINGLE.encode_call(params)
