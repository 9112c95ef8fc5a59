"""Tests for the HTTP API."""

from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from conftest import make_record
from jetswap.advice import ADVICE_FALLBACK, CHAT_FALLBACK
from jetswap.api.app import create_app, status_code_for
from jetswap.config import Settings
from jetswap.errors import LedgerUnavailable, QuoteExpired, RelayFailure
from jetswap.models import SwapStatus
from jetswap.swap.factory import SwapServices, build_services
from jetswap.utils.locks import LockTimeoutError

ADMIN_HEADERS = {"X-Admin-Token": "test-token", "X-Admin-Actor": "root@example.com"}


@pytest_asyncio.fixture
async def services(tmp_path) -> AsyncGenerator[SwapServices, None]:
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        local_history_path=str(tmp_path / "history.json"),
        admin_token="test-token",
        admin_identifiers="root@example.com",
        dry_run=True,
    )
    services = build_services(settings)
    await services.start()
    yield services
    await services.stop()


@pytest_asyncio.fixture
async def client(services) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def swap_body(**overrides) -> dict:
    body = {
        "user_id": "u1",
        "source_chain": "ethereum",
        "source_token": "ETH",
        "dest_chain": "arbitrum",
        "dest_token": "ARB",
        "amount": "1.5",
    }
    body.update(overrides)
    return body


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "jetswap"}

    @pytest.mark.asyncio
    async def test_detailed_health_hides_secrets(self, client):
        response = await client.get("/health/detailed")

        data = response.json()
        assert data["ledger"] == "sql+local"
        assert data["config"]["admin_token"] == "***"
        assert "test-token" not in response.text


class TestSwapEndpoints:
    """Tests for quoting, submission and history."""

    @pytest.mark.asyncio
    async def test_quote(self, client):
        response = await client.post(
            "/api/v1/quotes", json={"source_token": "ETH", "dest_token": "ARB", "amount": "1.5"}
        )

        assert response.status_code == 200
        assert response.json()["amount_in"] == "1.5"

    @pytest.mark.asyncio
    async def test_submit_and_settle(self, client, services):
        """Test a submitted swap settles and shows up in the user's history."""
        response = await client.post("/api/v1/swaps", json=swap_body())

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "confirming"
        swap_id = data["swap_id"]

        assert await services.orchestrator.wait(swap_id, timeout=3) is SwapStatus.SETTLED_SUCCESS

        status = (await client.get(f"/api/v1/swaps/{swap_id}")).json()
        assert status["status"] == "success"
        assert [h["current"] for h in status["history"]] == [
            "confirming",
            "locked_pending_relay",
            "relaying",
            "success",
        ]

        history = (await client.get("/api/v1/users/u1/swaps")).json()
        assert len(history) == 1
        assert history[0]["id"] == swap_id
        assert history[0]["amount"] == "1.5"
        assert history[0]["route"] == "Ethereum -> Arbitrum"
        assert "ciphertext" not in history[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,error",
        [
            ({"amount": "0"}, "InvalidAmount"),
            ({"amount": "abc"}, "InvalidAmount"),
            ({"source_chain": "bitcoin"}, "UnsupportedPair"),
            ({"dest_token": "DOGE"}, "UnsupportedPair"),
        ],
    )
    async def test_rejected_submission(self, client, services, overrides, error):
        response = await client.post("/api/v1/swaps", json=swap_body(**overrides))

        assert response.status_code == 400
        assert response.json()["error"] == error
        assert len(services.orchestrator) == 0

    @pytest.mark.asyncio
    async def test_unknown_swap(self, client):
        response = await client.get("/api/v1/swaps/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "SwapNotFound"

    @pytest.mark.asyncio
    async def test_cancel_after_settlement_conflicts(self, client, services):
        swap_id = (await client.post("/api/v1/swaps", json=swap_body())).json()["swap_id"]
        await services.orchestrator.wait(swap_id, timeout=3)

        response = await client.post(f"/api/v1/swaps/{swap_id}/cancel", json={"actor_id": "u1"})

        assert response.status_code == 409
        assert response.json()["error"] == "CancellationRejected"

    @pytest.mark.asyncio
    async def test_advice_fallback(self, client):
        response = await client.get(
            "/api/v1/advice", params={"source": "Ethereum", "dest": "Arbitrum", "token": "ETH"}
        )

        assert response.json() == {"advice": ADVICE_FALLBACK}

    @pytest.mark.asyncio
    async def test_chat_fallback(self, client):
        response = await client.post("/api/v1/chat", json={"message": "which route is fastest?"})

        assert response.status_code == 200
        assert response.text == CHAT_FALLBACK


class TestSessionEndpoints:
    """Tests for identity provider session sync."""

    @pytest.mark.asyncio
    async def test_establish_and_end_session(self, client, services):
        response = await client.post("/api/v1/sessions", json={
            "user_id": "u9",
            "auth_method": "email",
            "identifier": "Root@Example.com",
        })

        assert response.status_code == 200
        assert response.json()["role"] == "admin"
        assert services.sessions.is_active("u9")
        assert (await services.ledger.list_profiles())[0].id == "u9"

        ended = (await client.delete("/api/v1/sessions/u9")).json()
        assert ended == {"user_id": "u9", "invalidated": True}
        assert not services.sessions.is_active("u9")


class TestAdminEndpoints:
    """Tests for the admin dashboard API."""

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get("/admin/swaps", headers={"X-Admin-Token": "wrong"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_actor_not_on_allow_list(self, client):
        headers = {"X-Admin-Token": "test-token", "X-Admin-Actor": "someone@example.com"}

        response = await client.get("/admin/swaps", headers=headers)

        assert response.status_code == 403
        assert response.json()["error"] == "LedgerPermissionDenied"

    @pytest.mark.asyncio
    async def test_list_swaps(self, client, services):
        swap_id = (await client.post("/api/v1/swaps", json=swap_body(user_id="u2"))).json()["swap_id"]
        await services.orchestrator.wait(swap_id, timeout=3)

        response = await client.get("/admin/swaps", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert [(s["id"], s["user_id"]) for s in response.json()] == [(swap_id, "u2")]

    @pytest.mark.asyncio
    async def test_resolve_flagged_swap(self, client, services):
        """Test resolving a flagged record writes an attributed audit entry."""
        record = make_record(services.orchestrator.encryption, record_id="flagged1", status=SwapStatus.FLAGGED)
        await services.ledger.create("u1", record)

        response = await client.post(
            "/admin/swaps/flagged1/status",
            json={"status": "success", "reason": "verified on chain"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        entry = response.json()
        assert entry["actor_id"] == "root@example.com"
        assert entry["from_status"] == "flagged"
        assert entry["to_status"] == "success"
        assert (await services.ledger.get("flagged1")).status is SwapStatus.SETTLED_SUCCESS

        trail = (await client.get("/admin/swaps/flagged1/audit", headers=ADMIN_HEADERS)).json()
        assert [e["reason"] for e in trail] == ["verified on chain"]

        again = await client.post(
            "/admin/swaps/flagged1/status", json={"status": "failed"}, headers=ADMIN_HEADERS
        )
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_status_value(self, client):
        response = await client.post(
            "/admin/swaps/any/status", json={"status": "settled"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_users(self, client):
        await client.post("/api/v1/sessions", json={
            "user_id": "u1", "auth_method": "wallet", "identifier": "0xabc",
        })

        response = await client.get("/admin/users", headers=ADMIN_HEADERS)

        assert [u["id"] for u in response.json()] == ["u1"]


class TestErrorMapping:
    def test_status_codes(self):
        assert status_code_for(QuoteExpired("old")) == 400
        assert status_code_for(LedgerUnavailable("down")) == 503
        assert status_code_for(RelayFailure("lost")) == 500
        assert status_code_for(LockTimeoutError("busy")) == 503
