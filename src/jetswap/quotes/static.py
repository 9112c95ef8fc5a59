"""Static reference prices (dry-run rate source)."""

from datetime import timedelta
from decimal import Decimal
from typing import Optional

from jetswap.quotes.base import RateSource

# Reference USD prices. For demonstration only, not a market feed.
SIMULATED_PRICES: dict[str, Decimal] = {
    "ETH": Decimal("2640.00"),
    "WETH": Decimal("2640.00"),
    "USDC": Decimal("1.00"),
    "USDT": Decimal("1.00"),
    "ARB": Decimal("0.85"),
    "SOL": Decimal("150.00"),
}


class StaticRateTable(RateSource):
    """Cross rates derived from a fixed USD price table."""

    def __init__(
        self,
        prices: Optional[dict[str, Decimal]] = None,
        ttl_seconds: float = 30.0,
    ):
        self._prices = dict(prices if prices is not None else SIMULATED_PRICES)
        self._ttl = timedelta(seconds=ttl_seconds)

    @property
    def name(self) -> str:
        return "static"

    @property
    def supported_tokens(self) -> list[str]:
        return list(self._prices.keys())

    def set_price(self, token: str, price: Decimal) -> None:
        """Set reference price for a token."""
        self._prices[token.upper()] = price

    def get_rate(self, source_token: str, dest_token: str) -> Optional[Decimal]:
        source_price = self._prices.get(source_token.upper())
        dest_price = self._prices.get(dest_token.upper())
        if source_price is None or dest_price is None or dest_price == 0:
            return None
        return source_price / dest_price

    def validity(self) -> timedelta:
        return self._ttl
