"""Quote model and the pluggable rate/fee interfaces."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    """A time-bounded price for a swap intent."""

    source_token: str
    dest_token: str
    amount_in: Decimal
    amount_out: Decimal
    fee: Decimal
    fee_token: str
    quoted_at: datetime
    expires_at: datetime

    @property
    def rate(self) -> Decimal:
        """Effective exchange rate including fees."""
        if self.amount_in == 0:
            return Decimal("0")
        return self.amount_out / self.amount_in

    def is_expired(self, now: datetime) -> bool:
        """Check if quote has expired."""
        return now >= self.expires_at

    def seconds_until_expiry(self, now: datetime) -> float:
        """Seconds until quote expires (negative if expired)."""
        return (self.expires_at - now).total_seconds()

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "source_token": self.source_token,
            "dest_token": self.dest_token,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "rate": str(self.rate),
            "fee": str(self.fee),
            "fee_token": self.fee_token,
            "quoted_at": self.quoted_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class RateSource(ABC):
    """Market-rate input for the Quote Engine."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Rate source identifier."""
        pass

    @abstractmethod
    def get_rate(self, source_token: str, dest_token: str) -> Optional[Decimal]:
        """Units of ``dest_token`` per unit of ``source_token``, or None if unknown."""
        pass

    def validity(self) -> timedelta:
        """How long a rate from this source may be relied on."""
        return timedelta(seconds=30)


class FeeModel(ABC):
    """Splits a gross output amount into net output and fee."""

    @abstractmethod
    def apply(self, gross_out: Decimal) -> tuple[Decimal, Decimal]:
        """Return ``(net_out, fee)`` for a gross output amount."""
        pass


class HaircutFeeModel(FeeModel):
    """Flat percentage haircut on the output (0.005 == 0.5%)."""

    def __init__(self, haircut: Decimal = Decimal("0.005")):
        if haircut < 0 or haircut >= 1:
            raise ValueError(f"Haircut must be in [0, 1): {haircut}")
        self.haircut = haircut

    def apply(self, gross_out: Decimal) -> tuple[Decimal, Decimal]:
        fee = gross_out * self.haircut
        return gross_out - fee, fee
