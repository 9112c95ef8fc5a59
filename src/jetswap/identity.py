"""Identity collaborator: user profiles, role policy and sessions.

The core only consumes an opaque authenticated user id. Roles come from an
injected ``RolePolicy``; no privileged identifiers are baked in here.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Protocol

from jetswap.errors import LedgerError

if TYPE_CHECKING:
    from jetswap.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


class AuthMethod(str, Enum):
    """How the user authenticated with the identity provider."""

    WALLET = "wallet"
    EMAIL = "email"
    SOCIAL = "social"
    WEB3_PROFILE = "web3-profile"


class Role(str, Enum):
    """Authorization role."""

    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class UserProfile:
    """Profile supplied by the identity provider on session establishment."""

    id: str
    auth_method: AuthMethod
    identifier: str  # email, wallet address, or handle
    display_name: Optional[str] = None
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "auth_method": self.auth_method.value,
            "identifier": self.identifier,
            "display_name": self.display_name,
            "role": self.role.value,
        }


class RolePolicy(Protocol):
    """Authorization policy deciding a profile's role."""

    def role_for(self, profile: UserProfile) -> Role: ...


class AllowListRolePolicy:
    """Grants admin to identifiers on an allow-list (case-insensitive)."""

    def __init__(self, identifiers: Iterable[str]):
        self._identifiers = frozenset(i.strip().lower() for i in identifiers if i.strip())

    def role_for(self, profile: UserProfile) -> Role:
        if profile.identifier.strip().lower() in self._identifiers:
            return Role.ADMIN
        return profile.role


async def sync_profile(
    profile: UserProfile,
    policy: RolePolicy,
    store: Optional["LedgerStore"] = None,
) -> UserProfile:
    """Apply the role policy and persist the profile.

    A store failure does not block the session: the policy-derived profile is
    still returned.
    """
    synced = replace(profile, role=policy.role_for(profile))
    if store is not None:
        try:
            await store.upsert_profile(synced)
        except LedgerError as e:
            logger.warning(f"Profile sync for {profile.id} not persisted: {type(e).__name__}: {e}")
    return synced


class SessionRegistry:
    """Tracks authenticated sessions reported by the identity provider."""

    def __init__(self):
        self._sessions: dict[str, UserProfile] = {}
        self._listeners: list[Callable[[str], None]] = []

    def establish(self, profile: UserProfile) -> None:
        """Record a newly authenticated session."""
        self._sessions[profile.id] = profile
        logger.info(f"Session established for {profile.id} ({profile.auth_method.value})")

    def invalidate(self, user_id: str) -> bool:
        """Drop a session. Returns False if none was active."""
        profile = self._sessions.pop(user_id, None)
        if profile is None:
            return False
        logger.info(f"Session invalidated for {user_id}")
        for listener in list(self._listeners):
            try:
                listener(user_id)
            except Exception:
                logger.exception(f"Session invalidation listener failed for {user_id}")
        return True

    def is_active(self, user_id: str) -> bool:
        return user_id in self._sessions

    def get(self, user_id: str) -> Optional[UserProfile]:
        return self._sessions.get(user_id)

    def on_invalidate(self, listener: Callable[[str], None]) -> None:
        """Register a callback for session invalidation events."""
        self._listeners.append(listener)
