"""
Configuration management for the EVM Batch Sender.

Supports configuration via environment variables and .env files.
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NetworkType(str, Enum):
    """Selectable EVM networks."""
    BASE = "base"
    BASE_SEPOLIA = "base_sepolia"
    MAINNET = "mainnet"
    SEPOLIA = "sepolia"
    GOERLI = "goerli"


RPC_URLS: Dict[NetworkType, str] = {
    NetworkType.BASE: "https://mainnet.base.org",
    NetworkType.BASE_SEPOLIA: "https://sepolia.base.org",
    NetworkType.MAINNET: "https://eth-mainnet.g.alchemy.com/v2/demo",
    NetworkType.SEPOLIA: "https://eth-sepolia.g.alchemy.com/v2/demo",
    NetworkType.GOERLI: "https://eth-goerli.g.alchemy.com/v2/demo",
}

# Uniswap V3 SwapRouter deployments
ROUTER_ADDRESSES: Dict[NetworkType, str] = {
    NetworkType.BASE: "0x2626664c2603336E57B271c5C0b26F421741e481",
    NetworkType.MAINNET: "0xE592427A0AEce92De3Edee1F18E0157C05861564",
}

WRAPPED_NATIVE_ADDRESSES: Dict[NetworkType, str] = {
    NetworkType.BASE: "0x4200000000000000000000000000000000000006",
    NetworkType.MAINNET: "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
}


class BatcherConfig(BaseSettings):
    """
    Configuration settings for the EVM Batch Sender.

    All settings can be configured via environment variables with the EVM_BATCHER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="EVM_BATCHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Network settings
    network: NetworkType = Field(
        default=NetworkType.BASE,
        description="Network to connect to"
    )
    rpc_url: Optional[str] = Field(
        default=None,
        description="Custom JSON-RPC endpoint (overrides the network default)"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for JSON-RPC requests"
    )

    # Row table settings
    max_rows: int = Field(
        default=30,
        ge=10,
        le=30,
        description="Capacity of each row table"
    )

    # Pacing between rows
    row_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay between submissions of consecutive rows"
    )
    key_load_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Delay between balance lookups while loading keys"
    )
    token_balance_delay_seconds: float = Field(
        default=0.3,
        ge=0,
        description="Delay between token balance lookups"
    )

    # Gas defaults used when estimation fails
    transfer_gas_limit: int = Field(default=21_000, ge=21_000)
    swap_gas_limit: int = Field(default=500_000, ge=21_000)
    unwrap_gas_limit: int = Field(default=100_000, ge=21_000)
    approve_gas_limit: int = Field(default=100_000, ge=21_000)
    priority_fee_wei: int = Field(
        default=1_500_000_000,
        ge=0,
        description="Priority fee suggested alongside EIP-1559 base fees"
    )

    # Confirmation settings
    confirmation_timeout_seconds: int = Field(
        default=120,
        ge=1,
        description="Maximum time to wait for a receipt"
    )

    # Swap settings
    swap_fee_tier: int = Field(
        default=10_000,
        description="Router pool fee tier (hundredths of a bip)"
    )
    slippage_percent: Decimal = Field(
        default=Decimal("0.5"),
        ge=0,
        le=100,
        description="Slippage tolerance collected from the user (not enforced on-chain)"
    )
    approve_unlimited: bool = Field(
        default=True,
        description="Approve the router for the maximum allowance instead of the sell amount"
    )

    # Wallet generation
    max_generated_wallets: int = Field(default=100, ge=1)

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @property
    def network_rpc_url(self) -> str:
        """Get the JSON-RPC URL for the selected network."""
        if self.rpc_url:
            return self.rpc_url
        return RPC_URLS[self.network]

    @property
    def router_address(self) -> Optional[str]:
        """Router address on the selected network, if deployed."""
        return ROUTER_ADDRESSES.get(self.network)

    @property
    def wrapped_native_address(self) -> Optional[str]:
        """Wrapped native asset address on the selected network, if known."""
        return WRAPPED_NATIVE_ADDRESSES.get(self.network)


# Global config instance
_config: Optional[BatcherConfig] = None


def get_config() -> BatcherConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = BatcherConfig()
    return _config


def set_config(config: BatcherConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
