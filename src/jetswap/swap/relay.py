"""Cross-chain relay collaborator."""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from jetswap.models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayRequest:
    """Instruction to move a locked swap across chains.

    ``idempotency_key`` is the swap record id; a relay must never settle the
    same key twice.
    """

    idempotency_key: str
    route: str
    source_token: str
    dest_token: str
    amount: Decimal
    expected_output: Decimal


@dataclass(frozen=True)
class RelayReceipt:
    """Relay provider's answer for a request."""

    idempotency_key: str
    settled: bool
    tx_reference: Optional[str] = None
    settled_at: datetime = field(default_factory=utcnow)


class RelayClient(ABC):
    """Performs the relay step for a locked swap."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def relay(self, request: RelayRequest) -> RelayReceipt:
        """Relay the request.

        Raises:
            RelayFailure: ``definitive=True`` only if no funds moved
        """
        pass


class DryRunRelay(RelayClient):
    """Simulated relay with at-most-once settlement per idempotency key."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._receipts: dict[str, RelayReceipt] = {}
        self._settlements: dict[str, int] = {}
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "dryrun"

    async def relay(self, request: RelayRequest) -> RelayReceipt:
        key = request.idempotency_key
        async with self._lock:
            existing = self._receipts.get(key)
        if existing is not None:
            logger.info(f"Relay {key} already settled; returning stored receipt")
            return existing

        if self.latency:
            await asyncio.sleep(self.latency)

        async with self._lock:
            existing = self._receipts.get(key)
            if existing is not None:
                return existing
            receipt = RelayReceipt(
                idempotency_key=key,
                settled=True,
                tx_reference=f"sim:{uuid.uuid4().hex[:16]}",
            )
            self._receipts[key] = receipt
            self._settlements[key] = self._settlements.get(key, 0) + 1
        logger.info(
            f"Relayed {request.amount} {request.source_token} -> "
            f"{request.expected_output} {request.dest_token} via {request.route} ({key})"
        )
        return receipt

    def settlement_count(self, key: str) -> int:
        """How many times funds moved for a key (0 or 1)."""
        return self._settlements.get(key, 0)
