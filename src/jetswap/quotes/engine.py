"""Quote Engine: prices a token pair for a given amount."""

import logging
from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Any, Callable, Optional

from jetswap.chains import get_token
from jetswap.errors import UnsupportedPair
from jetswap.models import parse_amount, utcnow
from jetswap.quotes.base import FeeModel, HaircutFeeModel, Quote, RateSource

logger = logging.getLogger(__name__)

# Enough headroom for 18-decimal tokens at large notional amounts
_PRECISION = 60


class QuoteEngine:
    """Deterministic quoting over a rate source and a fee model.

    Side-effect free: the same rate table, amount and clock always produce the
    same quote.
    """

    def __init__(
        self,
        rates: RateSource,
        fee_model: Optional[FeeModel] = None,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.rates = rates
        self.fee_model = fee_model or HaircutFeeModel()
        self.ttl = ttl if ttl is not None else rates.validity()
        self.clock = clock

    def quote(self, source_token: str, dest_token: str, amount: Any) -> Quote:
        """Price ``amount`` of ``source_token`` in ``dest_token``.

        Raises:
            InvalidAmount: If amount <= 0 or non-numeric
            UnsupportedPair: If either token is unknown to the registry or rate source
        """
        amount_in = parse_amount(amount)
        source_token = source_token.strip().upper()
        dest_token = dest_token.strip().upper()

        dest_config = get_token(dest_token)
        if get_token(source_token) is None or dest_config is None:
            raise UnsupportedPair(f"Unsupported token pair {source_token} -> {dest_token}")

        rate = self.rates.get_rate(source_token, dest_token)
        if rate is None:
            raise UnsupportedPair(f"No {self.rates.name} rate for {source_token} -> {dest_token}")

        step = Decimal(1).scaleb(-dest_config.decimals)
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            gross_out = amount_in * rate
            net_out, fee = self.fee_model.apply(gross_out)
            net_out = net_out.quantize(step, rounding=ROUND_DOWN)
            fee = fee.quantize(step, rounding=ROUND_DOWN)

        now = self.clock()
        quote = Quote(
            source_token=source_token,
            dest_token=dest_token,
            amount_in=amount_in,
            amount_out=net_out,
            fee=fee,
            fee_token=dest_token,
            quoted_at=now,
            expires_at=now + self.ttl,
        )
        logger.debug(
            f"Quote {amount_in} {source_token} -> {net_out} {dest_token} "
            f"(fee {fee}, expires {quote.expires_at.isoformat()})"
        )
        return quote
