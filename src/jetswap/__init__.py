"""Jet Swap: cross-chain swap orchestration and settlement core."""

__version__ = "0.1.0"
