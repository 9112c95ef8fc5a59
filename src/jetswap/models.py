"""Domain models shared by the orchestrator and the Ledger Record Store."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from jetswap.errors import InvalidAmount


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def parse_amount(value: Any) -> Decimal:
    """Parse a decimal-string amount.

    Floats are refused so that no binary rounding ever reaches the ledger.

    Raises:
        InvalidAmount: If the value is not a finite, strictly positive number
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Amount must be a decimal string, got {type(value).__name__}")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmount(f"Amount is not numeric: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"Amount is not finite: {value!r}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be greater than zero: {value!r}")
    return amount


class SwapStatus(str, Enum):
    """Status of a swap, shared by the state machine and the stored record."""

    IDLE = "idle"
    CONFIRMING = "confirming"
    LOCKED_PENDING_RELAY = "locked_pending_relay"
    RELAYING = "relaying"
    SETTLED_SUCCESS = "success"
    FLAGGED = "flagged"
    FAILED = "failed"

    @property
    def is_final(self) -> bool:
        """Success or failure; only an admin may move a record out of these."""
        return self in (SwapStatus.SETTLED_SUCCESS, SwapStatus.FAILED)

    @property
    def is_terminal(self) -> bool:
        """Final, or waiting on an admin disposition."""
        return self.is_final or self is SwapStatus.FLAGGED


@dataclass(frozen=True)
class SwapIntent:
    """User-declared swap request. Immutable once created."""

    user_id: str
    source_chain: str
    source_token: str
    dest_chain: str
    dest_token: str
    amount: Decimal

    @classmethod
    def create(
        cls,
        user_id: str,
        source_chain: str,
        source_token: str,
        dest_chain: str,
        dest_token: str,
        amount: Any,
    ) -> "SwapIntent":
        """Build an intent, normalizing identifiers and parsing the amount."""
        return cls(
            user_id=user_id,
            source_chain=source_chain.strip().lower(),
            source_token=source_token.strip().upper(),
            dest_chain=dest_chain.strip().lower(),
            dest_token=dest_token.strip().upper(),
            amount=parse_amount(amount),
        )


@dataclass(frozen=True)
class EncryptedBundle:
    """Opaque AEAD output plus bookkeeping metadata.

    ``ciphertext`` and ``iv`` always come from the same encrypt call.
    """

    ciphertext: str  # base64
    iv: str  # base64, 96-bit nonce
    timestamp: int  # milliseconds since epoch
    custodian_id: str
    algorithm: str = "AES-256-GCM"
    wrapped_key: Optional[str] = None  # set when a key escrow is configured

    def to_dict(self) -> dict:
        return {
            "ciphertext": self.ciphertext,
            "iv": self.iv,
            "timestamp": self.timestamp,
            "custodian_id": self.custodian_id,
            "algorithm": self.algorithm,
            "wrapped_key": self.wrapped_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedBundle":
        return cls(
            ciphertext=data["ciphertext"],
            iv=data["iv"],
            timestamp=int(data["timestamp"]),
            custodian_id=data["custodian_id"],
            algorithm=data.get("algorithm", "AES-256-GCM"),
            wrapped_key=data.get("wrapped_key"),
        )


def record_path(user_id: str, record_id: str) -> str:
    """Key-path locator of a swap record."""
    return f"users/{user_id}/swaps/{record_id}"


@dataclass
class SwapRecord:
    """Durable, auditable unit stored in the Ledger Record Store."""

    id: str
    user_id: str
    route: str
    source_token: str
    dest_token: str
    amount: str  # decimal string
    expected_output: str
    status: SwapStatus
    bundle: EncryptedBundle
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    path: Optional[str] = None
    is_local: bool = False

    def __post_init__(self):
        if self.path is None:
            self.path = record_path(self.user_id, self.id)

    def with_status(self, status: SwapStatus) -> "SwapRecord":
        """Copy of the record with a new status and updated timestamp."""
        return replace(self, status=status, updated_at=utcnow())

    def to_dict(self) -> dict:
        """Convert to a JSON-compatible dictionary for storage."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "route": self.route,
            "source_token": self.source_token,
            "dest_token": self.dest_token,
            "amount": self.amount,
            "expected_output": self.expected_output,
            "status": self.status.value,
            "bundle": self.bundle.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "path": self.path,
            "is_local": self.is_local,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SwapRecord":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            route=data["route"],
            source_token=data["source_token"],
            dest_token=data["dest_token"],
            amount=str(data["amount"]),
            expected_output=str(data.get("expected_output", "0")),
            status=SwapStatus(data["status"]),
            bundle=EncryptedBundle.from_dict(data["bundle"]),
            created_at=_parse_time(data["created_at"]),
            updated_at=_parse_time(data.get("updated_at", data["created_at"])),
            path=data.get("path"),
            is_local=bool(data.get("is_local", False)),
        )


@dataclass(frozen=True)
class AuditEntry:
    """Append-only record of an administrative status change."""

    record_id: str
    actor_id: str
    from_status: SwapStatus
    to_status: SwapStatus
    reason: str = ""
    at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "actor_id": self.actor_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "reason": self.reason,
            "at": self.at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            record_id=data["record_id"],
            actor_id=data["actor_id"],
            from_status=SwapStatus(data["from_status"]),
            to_status=SwapStatus(data["to_status"]),
            reason=data.get("reason", ""),
            at=_parse_time(data["at"]),
        )


@dataclass(frozen=True)
class StatusChange:
    """Event delivered to status observers."""

    swap_id: str
    previous: SwapStatus
    current: SwapStatus
    at: datetime = field(default_factory=utcnow)
    reason: str = ""


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
