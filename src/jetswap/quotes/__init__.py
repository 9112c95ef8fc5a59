"""Quote Engine: rate sources, fee models and the engine itself."""

from jetswap.quotes.base import FeeModel, HaircutFeeModel, Quote, RateSource
from jetswap.quotes.engine import QuoteEngine
from jetswap.quotes.static import SIMULATED_PRICES, StaticRateTable

__all__ = [
    "FeeModel",
    "HaircutFeeModel",
    "Quote",
    "QuoteEngine",
    "RateSource",
    "SIMULATED_PRICES",
    "StaticRateTable",
]
