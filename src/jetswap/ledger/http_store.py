"""Ledger backend for a remote key-path document store.

Documents live at paths such as ``users/{uid}/swaps/{id}``; the ``swaps``
collection-group endpoint serves the cross-user admin aggregate.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from jetswap.errors import (
    LedgerError,
    LedgerNotFound,
    LedgerPermissionDenied,
    LedgerUnavailable,
)
from jetswap.identity import AuthMethod, Role, UserProfile
from jetswap.ledger.store import LedgerStore
from jetswap.models import AuditEntry, SwapRecord, SwapStatus, utcnow

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 425, 429}


class HttpDocumentStore(LedgerStore):
    """Async client for a REST document store."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return "http"

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json", "content-type": "application/json"}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        accept: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and translate failures into ledger errors.

        Status codes listed in ``accept`` are returned to the caller as-is.
        """
        try:
            response = await self._get_client().request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise LedgerUnavailable(f"{method} {path}: {type(e).__name__}: {e}", path=path) from e

        status = response.status_code
        if status < 400 or status in accept:
            return response
        detail = response.text[:200]
        if status in (401, 403):
            raise LedgerPermissionDenied(f"{method} {path}: permission denied", path=path)
        if status == 404:
            raise LedgerNotFound(f"{method} {path}: not found", path=path)
        if status >= 500 or status in _TRANSIENT_STATUS:
            raise LedgerUnavailable(f"{method} {path}: HTTP {status} {detail}", path=path)
        raise LedgerError(f"{method} {path}: HTTP {status} {detail}", path=path)

    @staticmethod
    def _documents(response: httpx.Response) -> list[dict]:
        body = response.json()
        return body.get("documents", []) if isinstance(body, dict) else body

    async def create(self, user_id: str, record: SwapRecord) -> str:
        if record.user_id != user_id:
            raise LedgerError(f"Record {record.id} belongs to {record.user_id}, not {user_id}")
        response = await self._request(
            "POST", f"users/{user_id}/swaps", accept=(409,), json=record.to_dict()
        )
        if response.status_code == 409:
            logger.info(f"Swap record {record.id} already stored; create is a no-op")
            return record.id
        return response.json().get("id", record.id)

    async def list(self, user_id: str, limit: int = 10) -> list[SwapRecord]:
        response = await self._request(
            "GET", f"users/{user_id}/swaps", params={"limit": limit, "order": "-created_at"}
        )
        return [SwapRecord.from_dict(doc) for doc in self._documents(response)]

    async def list_all(self, limit: int = 200) -> list[SwapRecord]:
        response = await self._request("GET", "swaps", params={"limit": limit, "order": "-created_at"})
        return [SwapRecord.from_dict(doc) for doc in self._documents(response)]

    def _document_path(self, id_or_path: str) -> str:
        return id_or_path if "/" in id_or_path else f"swaps/{id_or_path}"

    async def get(self, id_or_path: str) -> SwapRecord | None:
        try:
            response = await self._request("GET", self._document_path(id_or_path))
        except LedgerNotFound:
            return None
        return SwapRecord.from_dict(response.json())

    async def update_status(self, id_or_path: str, status: SwapStatus) -> bool:
        try:
            await self._request(
                "PATCH",
                self._document_path(id_or_path),
                json={"status": status.value, "updated_at": utcnow().isoformat()},
            )
        except LedgerNotFound:
            return False
        return True

    async def append_audit(self, entry: AuditEntry) -> None:
        await self._request("POST", f"swaps/{entry.record_id}/audit", json=entry.to_dict())

    async def list_audit(self, record_id: str) -> list[AuditEntry]:
        response = await self._request("GET", f"swaps/{record_id}/audit")
        return [AuditEntry.from_dict(doc) for doc in self._documents(response)]

    async def upsert_profile(self, profile: UserProfile) -> None:
        await self._request("PUT", f"users/{profile.id}", json=profile.to_dict())

    async def list_profiles(self, limit: int = 100) -> list[UserProfile]:
        response = await self._request("GET", "users", params={"limit": limit, "order": "-last_seen"})
        return [
            UserProfile(
                id=doc["id"],
                auth_method=AuthMethod(doc["auth_method"]),
                identifier=doc["identifier"],
                display_name=doc.get("display_name"),
                role=Role(doc.get("role", "user")),
            )
            for doc in self._documents(response)
        ]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
