"""Component tests for Jet Swap modules.

Tests the quote engine, payload encryption, state guard, locks, retry,
identity, authorizers, relay and advice components.
"""

import asyncio
import base64
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from jetswap.advice import (
    ADVICE_FALLBACK,
    CHAT_FALLBACK,
    AdviceService,
    ChatMessage,
    HttpTextGenerator,
)
from jetswap.crypto import (
    EncryptionService,
    FernetKeyEscrow,
    MemoryKeyEscrow,
    generate_master_key,
    serialize_payload,
)
from jetswap.errors import (
    AuthorizationError,
    EncryptionError,
    InvalidAmount,
    JetSwapError,
    LedgerUnavailable,
    RelayFailure,
    UnsupportedPair,
)
from jetswap.identity import (
    AllowListRolePolicy,
    AuthMethod,
    Role,
    SessionRegistry,
    UserProfile,
    sync_profile,
)
from jetswap.models import SwapStatus, parse_amount
from jetswap.quotes import QuoteEngine, StaticRateTable
from jetswap.swap.authorization import AutoApproveAuthorizer, SessionAuthorizer
from jetswap.swap.states import ADMIN_TARGETS, TransitionGuard
from jetswap.utils.locks import LockTimeoutError, SwapLockRegistry
from jetswap.utils.retry import RetryPolicy, retry_async

from conftest import CUSTODIAN, MemoryLedgerStore, make_intent

FIXED_NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestAmounts:
    """Tests for decimal amount parsing."""

    def test_parse_decimal_string(self):
        assert parse_amount("1.5") == Decimal("1.5")
        assert parse_amount(" 0.000000000000000001 ") == Decimal("1E-18")

    @pytest.mark.parametrize("value", ["0", "-1", "abc", "NaN", "Infinity", "", 1.5, True])
    def test_rejects_bad_amounts(self, value):
        """Test non-numeric, non-finite, non-positive and float amounts are refused."""
        with pytest.raises(InvalidAmount):
            parse_amount(value)


class TestQuoteEngine:
    """Tests for deterministic quoting."""

    def test_quote_is_deterministic(self):
        """Test identical inputs under a fixed clock give identical quotes."""
        engine = QuoteEngine(StaticRateTable(), clock=lambda: FIXED_NOW)

        assert engine.quote("ETH", "ARB", "1.5") == engine.quote("eth", "arb", "1.5")

    def test_quote_applies_haircut(self):
        """Test the default fee model keeps 99.5% of the gross output."""
        engine = QuoteEngine(StaticRateTable(), clock=lambda: FIXED_NOW)

        quote = engine.quote("USDC", "USDT", "100")

        assert quote.amount_out == Decimal("99.5")
        assert quote.fee == Decimal("0.5")
        assert quote.fee_token == "USDT"
        assert quote.expires_at == FIXED_NOW + timedelta(seconds=30)

    def test_quote_rounds_down_to_token_decimals(self):
        engine = QuoteEngine(StaticRateTable(), clock=lambda: FIXED_NOW)

        quote = engine.quote("ETH", "USDC", "0.333333")

        assert quote.amount_out.as_tuple().exponent >= -6
        assert quote.amount_out <= Decimal("0.333333") * Decimal("2640") * Decimal("0.995")

    def test_quote_expiry(self):
        engine = QuoteEngine(StaticRateTable(ttl_seconds=10), clock=lambda: FIXED_NOW)

        quote = engine.quote("ETH", "ARB", "1")

        assert not quote.is_expired(FIXED_NOW + timedelta(seconds=9))
        assert quote.is_expired(FIXED_NOW + timedelta(seconds=10))
        assert quote.seconds_until_expiry(FIXED_NOW) == 10

    def test_unknown_token_rejected(self):
        engine = QuoteEngine(StaticRateTable())

        with pytest.raises(UnsupportedPair):
            engine.quote("ETH", "DOGE", "1")

    def test_invalid_amount_rejected(self):
        engine = QuoteEngine(StaticRateTable())

        with pytest.raises(InvalidAmount):
            engine.quote("ETH", "ARB", "0")

    def test_to_dict_uses_strings(self):
        engine = QuoteEngine(StaticRateTable(), clock=lambda: FIXED_NOW)

        data = engine.quote("ETH", "ARB", "1.5").to_dict()

        assert data["amount_in"] == "1.5"
        assert data["quoted_at"] == FIXED_NOW.isoformat()


class TestEncryption:
    """Tests for payload encryption and key escrow."""

    def test_round_trip_with_memory_escrow(self):
        service = EncryptionService(CUSTODIAN, escrow=MemoryKeyEscrow())
        payload = {"swap_id": "s1", "amount": Decimal("1.5"), "at": FIXED_NOW}

        bundle = service.encrypt(payload)

        assert bundle.custodian_id == CUSTODIAN
        assert bundle.algorithm == "AES-256-GCM"
        assert len(base64.b64decode(bundle.iv)) == 12
        assert service.decrypt(bundle) == {
            "swap_id": "s1",
            "amount": "1.5",
            "at": FIXED_NOW.isoformat(),
        }

    def test_round_trip_with_fernet_escrow(self):
        """Test a second service holding the same master key can decrypt."""
        master_key = generate_master_key()
        bundle = EncryptionService(CUSTODIAN, FernetKeyEscrow(master_key)).encrypt({"a": 1})

        reader = EncryptionService(CUSTODIAN, FernetKeyEscrow(master_key))

        assert reader.decrypt(bundle) == {"a": 1}

    def test_wrong_master_key(self):
        bundle = EncryptionService(CUSTODIAN, FernetKeyEscrow(generate_master_key())).encrypt({"a": 1})
        reader = EncryptionService(CUSTODIAN, FernetKeyEscrow(generate_master_key()))

        with pytest.raises(EncryptionError):
            reader.decrypt(bundle)

    def test_tampered_ciphertext_detected(self):
        service = EncryptionService(CUSTODIAN, escrow=MemoryKeyEscrow())
        bundle = service.encrypt({"amount": "1.5"})
        raw = bytearray(base64.b64decode(bundle.ciphertext))
        raw[0] ^= 0x01
        tampered = replace(bundle, ciphertext=base64.b64encode(bytes(raw)).decode())

        with pytest.raises(EncryptionError):
            service.decrypt(tampered)

    def test_custodian_is_authenticated(self):
        """Test a bundle relabelled with another custodian fails authentication."""
        service = EncryptionService(CUSTODIAN, escrow=MemoryKeyEscrow())
        bundle = service.encrypt({"amount": "1.5"})

        with pytest.raises(EncryptionError):
            service.decrypt(replace(bundle, custodian_id="someone-else"))

    def test_fresh_nonce_per_call(self):
        service = EncryptionService(CUSTODIAN, escrow=MemoryKeyEscrow())

        first = service.encrypt({"amount": "1.5"})
        second = service.encrypt({"amount": "1.5"})

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_no_escrow_is_unrecoverable(self):
        service = EncryptionService(CUSTODIAN)

        bundle = service.encrypt({"amount": "1.5"})

        assert bundle.wrapped_key is None
        with pytest.raises(EncryptionError):
            service.decrypt(bundle)

    def test_unserializable_payload(self):
        with pytest.raises(EncryptionError):
            serialize_payload({"bad": object()})
        with pytest.raises(EncryptionError):
            serialize_payload(["not", "a", "dict"])


class TestTransitionGuard:
    """Tests for the swap state machine rules."""

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (SwapStatus.IDLE, SwapStatus.CONFIRMING),
            (SwapStatus.CONFIRMING, SwapStatus.LOCKED_PENDING_RELAY),
            (SwapStatus.CONFIRMING, SwapStatus.FAILED),
            (SwapStatus.LOCKED_PENDING_RELAY, SwapStatus.RELAYING),
            (SwapStatus.RELAYING, SwapStatus.SETTLED_SUCCESS),
            (SwapStatus.RELAYING, SwapStatus.FLAGGED),
            (SwapStatus.RELAYING, SwapStatus.FAILED),
        ],
    )
    def test_valid_transitions(self, from_state, to_state):
        allowed, _ = TransitionGuard.can_transition(from_state, to_state)
        assert allowed

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (SwapStatus.IDLE, SwapStatus.RELAYING),
            (SwapStatus.CONFIRMING, SwapStatus.SETTLED_SUCCESS),
            (SwapStatus.LOCKED_PENDING_RELAY, SwapStatus.CONFIRMING),
        ],
    )
    def test_invalid_transitions(self, from_state, to_state):
        allowed, reason = TransitionGuard.can_transition(from_state, to_state)
        assert not allowed
        assert "not a valid transition" in reason

    @pytest.mark.parametrize("terminal", [SwapStatus.SETTLED_SUCCESS, SwapStatus.FAILED, SwapStatus.FLAGGED])
    def test_terminal_states_are_immutable(self, terminal):
        """Test the automatic path can never leave a terminal state."""
        for target in SwapStatus:
            allowed, _ = TransitionGuard.can_transition(terminal, target)
            assert not allowed

    def test_admin_overrides(self):
        assert ADMIN_TARGETS == {SwapStatus.SETTLED_SUCCESS, SwapStatus.FAILED, SwapStatus.FLAGGED}
        assert TransitionGuard.can_override(SwapStatus.FLAGGED, SwapStatus.SETTLED_SUCCESS)[0]
        assert TransitionGuard.can_override(SwapStatus.RELAYING, SwapStatus.FLAGGED)[0]
        assert not TransitionGuard.can_override(SwapStatus.FLAGGED, SwapStatus.FLAGGED)[0]
        assert not TransitionGuard.can_override(SwapStatus.SETTLED_SUCCESS, SwapStatus.FAILED)[0]
        assert not TransitionGuard.can_override(SwapStatus.FLAGGED, SwapStatus.RELAYING)[0]

    def test_cancellable_states(self):
        assert TransitionGuard.can_cancel(SwapStatus.IDLE)
        assert TransitionGuard.can_cancel(SwapStatus.CONFIRMING)
        assert not TransitionGuard.can_cancel(SwapStatus.LOCKED_PENDING_RELAY)
        assert not TransitionGuard.can_cancel(SwapStatus.RELAYING)


class TestSwapLocks:
    """Tests for the per-swap lock registry."""

    def test_same_swap_same_lock(self):
        locks = SwapLockRegistry()

        assert locks.get_lock("a") is locks.get_lock("a")
        assert locks.get_lock("a") is not locks.get_lock("b")
        assert len(locks) == 2

    @pytest.mark.asyncio
    async def test_hold_releases(self):
        locks = SwapLockRegistry()

        async with locks.hold("a"):
            assert locks.get_lock("a").locked()

        assert not locks.get_lock("a").locked()

    @pytest.mark.asyncio
    async def test_hold_serializes_same_swap(self):
        """Test two holders of one swap never overlap."""
        locks = SwapLockRegistry()
        order = []

        async def worker(name):
            async with locks.hold("a", operation=name):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("w1"), worker("w2"))

        assert order == ["w1-start", "w1-end", "w2-start", "w2-end"]

    @pytest.mark.asyncio
    async def test_hold_timeout(self):
        locks = SwapLockRegistry(timeout=0.01)
        await locks.get_lock("a").acquire()

        with pytest.raises(LockTimeoutError) as exc_info:
            async with locks.hold("a"):
                pass
        assert isinstance(exc_info.value, JetSwapError)

    @pytest.mark.asyncio
    async def test_discard_keeps_held_locks(self):
        locks = SwapLockRegistry()
        await locks.get_lock("a").acquire()
        locks.get_lock("b")

        locks.discard("a")
        locks.discard("b")

        assert len(locks) == 1
        assert locks.is_held("a")
        assert not locks.is_held("b")


class TestRetry:
    """Tests for jittered exponential backoff."""

    def test_delay_grows_and_caps(self):
        policy = RetryPolicy(initial_delay=1.0, max_delay=5.0, jitter=0.0)

        assert [policy.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        sleeps = []
        calls = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise LedgerUnavailable("down")
            return "ok"

        result = await retry_async(
            flaky, RetryPolicy(jitter=0.0), (LedgerUnavailable,), sleep=fake_sleep
        )

        assert result == "ok"
        assert len(calls) == 3
        assert sleeps == [0.2, 0.4]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self):
        calls = []

        async def down():
            calls.append(1)
            raise LedgerUnavailable(f"down {len(calls)}")

        async def no_sleep(delay):
            pass

        with pytest.raises(LedgerUnavailable, match="down 5"):
            await retry_async(down, RetryPolicy(), (LedgerUnavailable,), sleep=no_sleep)
        assert len(calls) == 5

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self):
        calls = []

        async def broken():
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            await retry_async(broken, RetryPolicy(), (LedgerUnavailable,))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_should_retry_predicate(self):
        """Test a rejected retryable error is raised without retrying."""
        calls = []

        async def refused():
            calls.append(1)
            raise RelayFailure("no liquidity", definitive=True)

        with pytest.raises(RelayFailure):
            await retry_async(
                refused, RetryPolicy(), (RelayFailure,), should_retry=lambda e: not e.definitive
            )
        assert len(calls) == 1


class TestIdentity:
    """Tests for profiles, roles and sessions."""

    def _profile(self, identifier="alice@example.com", user_id="u1"):
        return UserProfile(id=user_id, auth_method=AuthMethod.EMAIL, identifier=identifier)

    def test_allow_list_policy(self):
        policy = AllowListRolePolicy(["Admin@Example.com", " "])

        assert policy.role_for(self._profile("admin@example.com")) is Role.ADMIN
        assert policy.role_for(self._profile("alice@example.com")) is Role.USER

    @pytest.mark.asyncio
    async def test_sync_profile_persists(self):
        store = MemoryLedgerStore()
        policy = AllowListRolePolicy(["admin@example.com"])

        synced = await sync_profile(self._profile("admin@example.com"), policy, store)

        assert synced.is_admin
        assert store.profiles["u1"].role is Role.ADMIN

    @pytest.mark.asyncio
    async def test_sync_profile_survives_store_outage(self):
        store = MemoryLedgerStore()
        store.unavailable = True

        synced = await sync_profile(self._profile(), AllowListRolePolicy([]), store)

        assert synced.role is Role.USER
        assert store.profiles == {}

    def test_session_lifecycle(self):
        sessions = SessionRegistry()
        invalidated = []
        sessions.on_invalidate(invalidated.append)

        sessions.establish(self._profile())
        assert sessions.is_active("u1")
        assert sessions.get("u1").identifier == "alice@example.com"

        assert sessions.invalidate("u1") is True
        assert sessions.invalidate("u1") is False
        assert not sessions.is_active("u1")
        assert invalidated == ["u1"]

    def test_profile_to_dict(self):
        data = self._profile().to_dict()

        assert data["auth_method"] == "email"
        assert data["role"] == "user"


class TestAuthorizers:
    """Tests for the confirmation step collaborators."""

    @pytest.mark.asyncio
    async def test_auto_approve(self):
        await AutoApproveAuthorizer(delay=0.001).authorize(make_intent(), "s1")

    @pytest.mark.asyncio
    async def test_session_authorizer(self):
        sessions = SessionRegistry()
        authorizer = SessionAuthorizer(sessions)

        with pytest.raises(AuthorizationError):
            await authorizer.authorize(make_intent(user_id="u1"), "s1")

        sessions.establish(UserProfile(id="u1", auth_method=AuthMethod.WALLET, identifier="0xabc"))
        await authorizer.authorize(make_intent(user_id="u1"), "s1")


class TestAdvice:
    """Tests for route advice and chat fallbacks."""

    @staticmethod
    def _generator(handler):
        return HttpTextGenerator("http://textgen.test", transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_advice_from_service(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/advice"
            return httpx.Response(200, json={"text": "Bridge during low gas hours."})

        service = AdviceService(self._generator(handler))

        assert await service.get_advice("Ethereum", "Arbitrum", "ETH") == "Bridge during low gas hours."

    @pytest.mark.asyncio
    async def test_advice_fallbacks(self):
        def failing(request):
            return httpx.Response(503)

        def empty(request):
            return httpx.Response(200, json={"text": ""})

        assert await AdviceService().get_advice("a", "b", "ETH") == ADVICE_FALLBACK
        assert await AdviceService(self._generator(failing)).get_advice("a", "b", "ETH") == ADVICE_FALLBACK
        assert await AdviceService(self._generator(empty)).get_advice("a", "b", "ETH") == ADVICE_FALLBACK

    @pytest.mark.asyncio
    async def test_chat_stream(self):
        """Test chat chunks are streamed line by line with history attached."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            return httpx.Response(200, text="Hello\nthere\n")

        service = AdviceService(self._generator(handler))
        history = [ChatMessage("user", "hi"), ChatMessage("model", "hey")]

        chunks = [chunk async for chunk in service.get_chat_stream("route?", history)]

        assert chunks == ["Hello", "there"]
        assert b'"parts"' in seen["body"]

    @pytest.mark.asyncio
    async def test_chat_fallback(self):
        def handler(request):
            return httpx.Response(500)

        chunks = [c async for c in AdviceService(self._generator(handler)).get_chat_stream("x")]
        assert chunks == [CHAT_FALLBACK]
        assert [c async for c in AdviceService().get_chat_stream("x")] == [CHAT_FALLBACK]
