"""Repository for ledger operations."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jetswap.identity import UserProfile
from jetswap.ledger.models import AuditLog, Swap, User
from jetswap.models import AuditEntry, EncryptedBundle, SwapRecord, SwapStatus, utcnow


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def swap_to_record(row: Swap) -> SwapRecord:
    """Convert a swap row into a domain record."""
    return SwapRecord(
        id=row.id,
        user_id=row.user_id,
        route=row.route,
        source_token=row.source_token,
        dest_token=row.dest_token,
        amount=row.amount,
        expected_output=row.expected_output,
        status=SwapStatus(row.status),
        bundle=EncryptedBundle(
            ciphertext=row.ciphertext,
            iv=row.iv,
            timestamp=row.bundle_timestamp,
            custodian_id=row.custodian_id,
            algorithm=row.algorithm,
            wrapped_key=row.wrapped_key,
        ),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        path=row.path,
    )


def audit_to_entry(row: AuditLog) -> AuditEntry:
    return AuditEntry(
        record_id=row.record_id,
        actor_id=row.actor_id,
        from_status=SwapStatus(row.from_status),
        to_status=SwapStatus(row.to_status),
        reason=row.reason,
        at=_aware(row.created_at),
    )


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Swap record operations
    async def create_swap(self, record: SwapRecord) -> Swap:
        """Insert a swap record."""
        bundle = record.bundle
        row = Swap(
            id=record.id,
            user_id=record.user_id,
            path=record.path,
            route=record.route,
            source_token=record.source_token,
            dest_token=record.dest_token,
            amount=record.amount,
            expected_output=record.expected_output,
            status=record.status.value,
            ciphertext=bundle.ciphertext,
            iv=bundle.iv,
            bundle_timestamp=bundle.timestamp,
            custodian_id=bundle.custodian_id,
            algorithm=bundle.algorithm,
            wrapped_key=bundle.wrapped_key,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_swap(self, id_or_path: str) -> Optional[Swap]:
        """Get swap by record id or key-path locator."""
        stmt = select(Swap).where(or_(Swap.id == id_or_path, Swap.path == id_or_path))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_swaps(self, user_id: str, limit: int = 10) -> list[Swap]:
        """Get a user's swaps, newest first."""
        stmt = (
            select(Swap)
            .where(Swap.user_id == user_id)
            .order_by(Swap.created_at.desc(), Swap.seq.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_all_swaps(self, limit: int = 200) -> list[Swap]:
        """Get swaps across all users, newest first."""
        stmt = select(Swap).order_by(Swap.created_at.desc(), Swap.seq.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_swap_status(self, id_or_path: str, status: SwapStatus) -> Optional[Swap]:
        """Set a swap's status. Returns None if the swap does not exist."""
        swap = await self.get_swap(id_or_path)
        if swap is None:
            return None
        swap.status = status.value
        swap.updated_at = utcnow()
        await self.session.flush()
        return swap

    # Audit log operations
    async def add_audit_log(self, entry: AuditEntry) -> AuditLog:
        """Append an audit log entry."""
        row = AuditLog(
            record_id=entry.record_id,
            actor_id=entry.actor_id,
            from_status=entry.from_status.value,
            to_status=entry.to_status.value,
            reason=entry.reason,
            created_at=entry.at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_audit_logs(self, record_id: str) -> list[AuditLog]:
        """Get audit entries for a record, oldest first."""
        stmt = select(AuditLog).where(AuditLog.record_id == record_id).order_by(AuditLog.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # User operations
    async def upsert_user(self, profile: UserProfile) -> User:
        """Create or update a user profile."""
        user = await self.session.get(User, profile.id)
        if user is None:
            user = User(id=profile.id)
            self.session.add(user)
        user.auth_method = profile.auth_method.value
        user.identifier = profile.identifier
        user.display_name = profile.display_name
        user.role = profile.role.value
        user.last_seen = utcnow()
        await self.session.flush()
        return user

    async def get_all_users(self, limit: int = 100) -> list[User]:
        """Get users, most recently seen first."""
        stmt = select(User).order_by(User.last_seen.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
