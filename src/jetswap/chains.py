"""Supported chains and tokens for Jet Swap routes.

Chains are keyed by lowercase id, tokens by uppercase symbol. Route descriptors
use the chain display names (``"Ethereum -> Arbitrum"``).
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for a blockchain."""

    id: str
    name: str
    native_token: str
    chain_id: Optional[int] = None  # EVM chains only


@dataclass(frozen=True)
class TokenConfig:
    """Configuration for a swappable token."""

    symbol: str
    name: str
    decimals: int


# ======================
# Chain Configurations
# ======================

CHAINS: dict[str, ChainConfig] = {
    "ethereum": ChainConfig(id="ethereum", name="Ethereum", native_token="ETH", chain_id=1),
    "arbitrum": ChainConfig(id="arbitrum", name="Arbitrum", native_token="ETH", chain_id=42161),
    "optimism": ChainConfig(id="optimism", name="Optimism", native_token="ETH", chain_id=10),
    "base": ChainConfig(id="base", name="Base", native_token="ETH", chain_id=8453),
    "polygon": ChainConfig(id="polygon", name="Polygon", native_token="POL", chain_id=137),
    "solana": ChainConfig(id="solana", name="Solana", native_token="SOL"),
}

TOKENS: dict[str, TokenConfig] = {
    "ETH": TokenConfig(symbol="ETH", name="Ethereum", decimals=18),
    "USDC": TokenConfig(symbol="USDC", name="USD Coin", decimals=6),
    "USDT": TokenConfig(symbol="USDT", name="Tether", decimals=6),
    "WETH": TokenConfig(symbol="WETH", name="Wrapped Ether", decimals=18),
    "ARB": TokenConfig(symbol="ARB", name="Arbitrum", decimals=18),
    "SOL": TokenConfig(symbol="SOL", name="Solana", decimals=9),
}


def get_chain(chain_id: str) -> Optional[ChainConfig]:
    """Get chain configuration by id (case-insensitive)."""
    return CHAINS.get(chain_id.strip().lower())


def get_token(symbol: str) -> Optional[TokenConfig]:
    """Get token configuration by symbol (case-insensitive)."""
    return TOKENS.get(symbol.strip().upper())


def route_descriptor(source_chain: str, dest_chain: str) -> str:
    """Build the human-readable route stored on swap records."""
    source = get_chain(source_chain)
    dest = get_chain(dest_chain)
    source_name = source.name if source else source_chain
    dest_name = dest.name if dest else dest_chain
    return f"{source_name} -> {dest_name}"
