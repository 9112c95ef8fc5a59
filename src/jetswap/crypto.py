"""Encryption Service for auditable swap payloads.

Each payload is sealed with AES-256-GCM under a fresh random key and a fresh
96-bit nonce. The per-payload key is handed to a ``KeyEscrow`` before it is
dropped; without an escrow the bundle can never be opened again, so that mode
is logged loudly.

Usage:
    service = EncryptionService(custodian_id, escrow=FernetKeyEscrow(master_key))
    bundle = service.encrypt({"amount": "1.5"})
    payload = service.decrypt(bundle)
"""

import base64
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from jetswap.errors import EncryptionError
from jetswap.models import EncryptedBundle

logger = logging.getLogger(__name__)

KEY_BITS = 256
NONCE_BYTES = 12  # 96-bit GCM nonce


def generate_master_key() -> str:
    """Generate a new escrow master key.

    Returns:
        Base64-encoded 32-byte key suitable for Fernet
    """
    return Fernet.generate_key().decode()


def _json_default(value: Any) -> str:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not serializable")


def serialize_payload(payload: dict) -> bytes:
    """Canonical JSON encoding of a payload."""
    if not isinstance(payload, dict):
        raise EncryptionError(f"Payload must be a dict, got {type(payload).__name__}")
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_json_default).encode()
    except (TypeError, ValueError) as e:
        raise EncryptionError(f"Payload serialization failed: {e}") from e


class KeyEscrow(ABC):
    """Extension point that keeps per-payload keys recoverable.

    The key-exchange scheme used by custodians is deployment specific; an
    implementation only has to turn a raw key into an opaque reference and
    back.
    """

    @abstractmethod
    def wrap(self, key: bytes) -> str:
        """Escrow a raw key and return the reference stored on the bundle."""
        pass

    @abstractmethod
    def unwrap(self, wrapped: str) -> bytes:
        """Recover the raw key from a bundle's reference."""
        pass


class FernetKeyEscrow(KeyEscrow):
    """Wraps per-payload keys under a long-lived admin master key (Fernet)."""

    def __init__(self, master_key: str):
        """Initialize with master encryption key.

        Args:
            master_key: Base64-encoded Fernet key (32 bytes)
        """
        self._fernet = Fernet(master_key.encode())

    def wrap(self, key: bytes) -> str:
        return self._fernet.encrypt(key).decode()

    def unwrap(self, wrapped: str) -> bytes:
        try:
            return self._fernet.decrypt(wrapped.encode())
        except InvalidToken as e:
            raise EncryptionError("Wrapped key cannot be opened with this master key") from e


class MemoryKeyEscrow(KeyEscrow):
    """Keeps raw keys in process memory. Test mode only."""

    def __init__(self):
        self._keys: dict[str, bytes] = {}

    def wrap(self, key: bytes) -> str:
        ref = f"mem:{len(self._keys)}:{os.urandom(8).hex()}"
        self._keys[ref] = key
        return ref

    def unwrap(self, wrapped: str) -> bytes:
        try:
            return self._keys[wrapped]
        except KeyError:
            raise EncryptionError(f"Unknown key reference {wrapped}")


def decrypt_bundle(bundle: EncryptedBundle, key: bytes) -> dict:
    """Open a bundle with its raw key.

    Raises:
        EncryptionError: If the key is wrong or the bundle was tampered with
    """
    try:
        nonce = base64.b64decode(bundle.iv)
        ciphertext = base64.b64decode(bundle.ciphertext)
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, bundle.custodian_id.encode())
        return json.loads(plaintext)
    except (InvalidTag, ValueError) as e:
        raise EncryptionError(f"Bundle authentication failed: {type(e).__name__}") from e


class EncryptionService:
    """Seals swap payloads into ``EncryptedBundle`` objects."""

    def __init__(self, custodian_id: str, escrow: Optional[KeyEscrow] = None):
        self.custodian_id = custodian_id
        self.escrow = escrow
        if escrow is None:
            logger.warning(
                "No key escrow configured: encrypted swap payloads will be unreadable"
            )

    def encrypt(self, payload: dict) -> EncryptedBundle:
        """Encrypt a payload under a fresh key and nonce.

        Either a complete bundle is returned or ``EncryptionError`` is raised;
        nothing is emitted on partial failure.
        """
        data = serialize_payload(payload)
        key = AESGCM.generate_key(bit_length=KEY_BITS)
        nonce = os.urandom(NONCE_BYTES)

        try:
            ciphertext = AESGCM(key).encrypt(nonce, data, self.custodian_id.encode())
        except (ValueError, OverflowError) as e:
            raise EncryptionError(f"Cipher failure: {e}") from e

        wrapped_key = None
        if self.escrow is not None:
            try:
                wrapped_key = self.escrow.wrap(key)
            except EncryptionError:
                raise
            except Exception as e:
                raise EncryptionError(f"Key escrow failed: {type(e).__name__}: {e}") from e
        else:
            logger.warning(f"Per-payload key discarded without escrow (custodian {self.custodian_id})")
        del key

        return EncryptedBundle(
            ciphertext=base64.b64encode(ciphertext).decode(),
            iv=base64.b64encode(nonce).decode(),
            timestamp=int(time.time() * 1000),
            custodian_id=self.custodian_id,
            wrapped_key=wrapped_key,
        )

    def decrypt(self, bundle: EncryptedBundle) -> dict:
        """Decrypt a bundle through the configured escrow.

        Raises:
            EncryptionError: If no escrow is configured or the key is not recoverable
        """
        if self.escrow is None or not bundle.wrapped_key:
            raise EncryptionError("Bundle key was not escrowed; payload is unrecoverable")
        return decrypt_bundle(bundle, self.escrow.unwrap(bundle.wrapped_key))
