"""Swap Orchestrator: drives each swap through the settlement state machine.

Each submitted swap gets its own driver task:

1. CONFIRMING: the authorizer confirms the swap under a timeout.
2. Custody lock: the audit payload is encrypted and the swap record is
   durably created in the Ledger (with retries) before the swap may enter
   LOCKED_PENDING_RELAY. If the Ledger never acknowledges, the swap fails
   closed and no relay is attempted.
3. RELAYING: the relay is called with the record id as idempotency key,
   bounded by per-attempt timeouts, retries and an overall deadline. Any
   ambiguous outcome ends in FLAGGED for an administrator to resolve.

Transitions for one swap are serialised by that swap's lock; different swaps
never contend.
Settled and failed swaps stop being tracked in memory after a retention
window; their status is then read from the Ledger.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Optional, Union

from jetswap.chains import get_chain, route_descriptor
from jetswap.config import Settings
from jetswap.crypto import EncryptionService
from jetswap.errors import (
    AdminOverrideConflict,
    AuthorizationError,
    CancellationRejected,
    EncryptionError,
    LedgerError,
    LedgerUnavailable,
    QuoteExpired,
    RelayFailure,
    RelayTimeout,
    SwapNotFound,
    UnsupportedPair,
    ValidationError,
)
from jetswap.ledger.store import LedgerStore
from jetswap.models import (
    AuditEntry,
    StatusChange,
    SwapIntent,
    SwapRecord,
    SwapStatus,
    parse_amount,
    record_path,
)
from jetswap.quotes import Quote, QuoteEngine
from jetswap.swap.authorization import Authorizer
from jetswap.swap.relay import RelayClient, RelayReceipt, RelayRequest
from jetswap.swap.states import TransitionGuard
from jetswap.utils.locks import SwapLockRegistry
from jetswap.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

StatusCallback = Callable[[StatusChange], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class OrchestratorConfig:
    """Timeouts and retry budgets for the orchestrator."""

    confirm_timeout: float = 1.5
    ledger_retry: RetryPolicy = field(default_factory=RetryPolicy)
    relay_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=5, initial_delay=0.5, max_delay=10.0)
    )
    relay_attempt_timeout: float = 10.0
    relay_deadline: float = 60.0
    max_residency: float = 300.0
    watchdog_interval: float = 15.0
    completed_retention: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorConfig":
        return cls(
            confirm_timeout=settings.confirm_timeout_seconds,
            ledger_retry=RetryPolicy(
                max_attempts=settings.ledger_max_attempts,
                initial_delay=settings.ledger_initial_backoff,
                max_delay=settings.ledger_max_backoff,
                jitter=settings.backoff_jitter,
            ),
            relay_retry=RetryPolicy(
                max_attempts=settings.relay_max_attempts,
                initial_delay=settings.relay_initial_backoff,
                max_delay=settings.relay_max_backoff,
                jitter=settings.backoff_jitter,
            ),
            relay_attempt_timeout=settings.relay_attempt_timeout,
            relay_deadline=settings.relay_deadline_seconds,
            max_residency=settings.max_residency_seconds,
            watchdog_interval=settings.watchdog_interval_seconds,
            completed_retention=settings.completed_retention_seconds,
        )


@dataclass
class TrackedSwap:
    """In-memory state of a swap owned by this orchestrator."""

    swap_id: str
    intent: SwapIntent
    quote: Quote
    status: SwapStatus = SwapStatus.IDLE
    entered_at: float = 0.0  # loop time the current status was entered
    history: list[StatusChange] = field(default_factory=list)
    record: Optional[SwapRecord] = None  # set once the Ledger acknowledged the create
    failure_reason: Optional[str] = None
    task: Optional[asyncio.Task] = None
    observers: list[StatusCallback] = field(default_factory=list)
    done: asyncio.Event = field(default_factory=asyncio.Event)


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class SwapOrchestrator:
    """Owns the swap state machine and its collaborators."""

    def __init__(
        self,
        quote_engine: QuoteEngine,
        encryption: EncryptionService,
        ledger: LedgerStore,
        authorizer: Authorizer,
        relay: RelayClient,
        config: Optional[OrchestratorConfig] = None,
        locks: Optional[SwapLockRegistry] = None,
    ):
        self.quote_engine = quote_engine
        self.encryption = encryption
        self.ledger = ledger
        self.authorizer = authorizer
        self.relay = relay
        self.config = config or OrchestratorConfig()
        self.locks = locks or SwapLockRegistry()
        self._swaps: dict[str, TrackedSwap] = {}
        self._global_observers: list[StatusCallback] = []
        self._watchdog: Optional[asyncio.Task] = None

    # ======================
    # Public API
    # ======================

    async def submit(self, intent: SwapIntent, quote: Optional[Quote] = None) -> str:
        """Validate and price an intent, then start the swap.

        The swap is CONFIRMING when this returns; everything after runs in the
        swap's driver task.

        Raises:
            ValidationError: If the intent or quote is rejected (no state created)
        """
        self._validate(intent)
        quote = self._price(intent, quote)

        swap_id = uuid.uuid4().hex
        tracked = TrackedSwap(
            swap_id=swap_id,
            intent=intent,
            quote=quote,
            entered_at=self._now(),
        )
        self._swaps[swap_id] = tracked
        logger.info(
            f"Swap {swap_id} submitted by {intent.user_id}: {intent.amount} {intent.source_token} "
            f"({intent.source_chain}) -> {quote.amount_out} {intent.dest_token} ({intent.dest_chain})"
        )

        await self._transition(tracked, SwapStatus.CONFIRMING)
        tracked.task = asyncio.create_task(self._drive(tracked), name=f"swap-{swap_id}")
        return swap_id

    async def get_status(self, swap_id: str) -> SwapStatus:
        """Current status; swaps not held in memory are read from the Ledger."""
        tracked = self._swaps.get(swap_id)
        if tracked is not None:
            return tracked.status
        record = await self.ledger.get(swap_id)
        if record is None:
            raise SwapNotFound(f"Swap {swap_id} not found")
        return record.status

    def get_history(self, swap_id: str) -> list[StatusChange]:
        return list(self._tracked(swap_id).history)

    def get_failure_reason(self, swap_id: str) -> Optional[str]:
        return self._tracked(swap_id).failure_reason

    def get_record(self, swap_id: str) -> Optional[SwapRecord]:
        """The acknowledged Ledger record, or None before the custody lock."""
        return self._tracked(swap_id).record

    def on_status_change(self, swap_id: str, callback: StatusCallback) -> Callable[[], None]:
        """Subscribe to one swap's status changes. Returns an unsubscribe function."""
        tracked = self._tracked(swap_id)
        tracked.observers.append(callback)

        def unsubscribe() -> None:
            if callback in tracked.observers:
                tracked.observers.remove(callback)

        return unsubscribe

    def on_any_status_change(self, callback: StatusCallback) -> Callable[[], None]:
        """Subscribe to status changes of every swap."""
        self._global_observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._global_observers:
                self._global_observers.remove(callback)

        return unsubscribe

    async def wait(self, swap_id: str, timeout: Optional[float] = None) -> SwapStatus:
        """Wait until the swap is settled, failed or flagged.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        tracked = self._swaps.get(swap_id)
        if tracked is None:
            return await self.get_status(swap_id)
        await asyncio.wait_for(tracked.done.wait(), timeout=timeout)
        return tracked.status

    async def cancel(self, swap_id: str, actor_id: str) -> None:
        """Cancel a swap that has not reached the custody lock.

        Raises:
            CancellationRejected: If the swap is already locked or finished
            SwapNotFound: If the swap is unknown
        """
        tracked = self._swaps.get(swap_id)
        if tracked is None:
            if await self.ledger.get(swap_id) is not None:
                raise CancellationRejected(f"Swap {swap_id} is already locked")
            raise SwapNotFound(f"Swap {swap_id} not found")

        async with self.locks.hold(swap_id, operation="cancel"):
            if not TransitionGuard.can_cancel(tracked.status):
                raise CancellationRejected(
                    f"Swap {swap_id} cannot be cancelled in {tracked.status.value}"
                )
            tracked.failure_reason = "cancelled"
            change = self._apply(tracked, SwapStatus.FAILED, f"cancelled by {actor_id}")

        logger.info(f"Swap {swap_id} cancelled by {actor_id}")
        self._stop_driver(tracked)
        await self._publish(tracked, change)

    async def admin_set_status(
        self,
        swap_id: str,
        status: Union[SwapStatus, str],
        actor_id: str,
        reason: str = "",
    ) -> AuditEntry:
        """Administrative override of a swap's status.

        The audit entry is appended before the record status changes.

        Raises:
            AdminOverrideConflict: If the record is already success/failed
            SwapNotFound: If the swap is unknown
        """
        status = SwapStatus(status)
        tracked = self._swaps.get(swap_id)
        if tracked is None:
            return await self._override_stored(swap_id, status, actor_id, reason)

        async with self.locks.hold(swap_id, operation="admin_override"):
            current = tracked.status
            allowed, denial = TransitionGuard.can_override(current, status)
            if not allowed:
                raise AdminOverrideConflict(f"Swap {swap_id}: {denial}")
            entry = AuditEntry(
                record_id=tracked.record.id if tracked.record is not None else swap_id,
                actor_id=actor_id,
                from_status=current,
                to_status=status,
                reason=reason,
            )
            await self._ledger_call(
                lambda: self.ledger.append_audit(entry), f"Audit append for swap {swap_id}"
            )
            if tracked.record is not None:
                await self._ledger_call(
                    lambda: self.ledger.update_status(tracked.record.path, status),
                    f"Status update for swap {swap_id}",
                )
            note = f"admin {actor_id}" + (f": {reason}" if reason else "")
            change = self._apply(tracked, status, note)

        logger.info(f"Swap {swap_id} set {current.value} -> {status.value} by admin {actor_id}")
        self._stop_driver(tracked)
        await self._publish(tracked, change)
        return entry

    async def flag_stale_swaps(self) -> list[str]:
        """Force swaps stuck beyond the maximum residency into FLAGGED."""
        flagged = []
        now = self._now()
        for tracked in list(self._swaps.values()):
            if tracked.status.is_terminal:
                continue
            if now - tracked.entered_at <= self.config.max_residency:
                continue
            reason = f"stale in {tracked.status.value} for {now - tracked.entered_at:.1f}s"
            if await self._transition(tracked, SwapStatus.FLAGGED, reason):
                logger.error(f"Swap {tracked.swap_id} flagged: {reason}")
                tracked.failure_reason = reason
                self._stop_driver(tracked)
                flagged.append(tracked.swap_id)
        return flagged

    def evict_completed(self, retention: Optional[float] = None) -> list[str]:
        """Stop tracking settled or failed swaps once ``retention`` seconds have passed.

        Only swaps whose driver has finished and whose lock is idle are
        evicted. Their status is then read from the Ledger.
        """
        retention = retention if retention is not None else self.config.completed_retention
        now = self._now()
        evicted = []
        for swap_id, tracked in list(self._swaps.items()):
            if not tracked.status.is_final or now - tracked.entered_at < retention:
                continue
            if tracked.task is not None and not tracked.task.done():
                continue
            if self.locks.is_held(swap_id):
                continue
            del self._swaps[swap_id]
            self.locks.discard(swap_id)
            evicted.append(swap_id)
        if evicted:
            logger.debug(f"Evicted {len(evicted)} completed swap(s)")
        return evicted

    async def run_watchdog(self, interval: Optional[float] = None) -> None:
        """Sweep for stale and completed swaps until cancelled."""
        interval = interval if interval is not None else self.config.watchdog_interval
        logger.info(f"Stale swap watchdog running every {interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                await self.flag_stale_swaps()
                self.evict_completed()
            except Exception:
                logger.exception("Stale swap sweep failed")

    def start_watchdog(self) -> asyncio.Task:
        if self._watchdog is None or self._watchdog.done():
            self._watchdog = asyncio.create_task(self.run_watchdog(), name="swap-watchdog")
        return self._watchdog

    async def shutdown(self) -> None:
        """Stop the watchdog and in-flight drivers without changing any status."""
        tasks = [t.task for t in self._swaps.values() if t.task is not None and not t.task.done()]
        if self._watchdog is not None:
            tasks.append(self._watchdog)
            self._watchdog = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Orchestrator stopped ({len(tasks)} task(s) cancelled)")

    # ======================
    # Validation and pricing
    # ======================

    @staticmethod
    def _validate(intent: SwapIntent) -> None:
        if not intent.user_id:
            raise ValidationError("Swap intent has no user")
        parse_amount(intent.amount)
        for chain in (intent.source_chain, intent.dest_chain):
            if get_chain(chain) is None:
                raise UnsupportedPair(f"Unsupported chain: {chain}")
        if intent.source_chain == intent.dest_chain and intent.source_token == intent.dest_token:
            raise UnsupportedPair(f"Cannot swap {intent.source_token} for itself on {intent.source_chain}")

    def _price(self, intent: SwapIntent, quote: Optional[Quote]) -> Quote:
        if quote is None:
            return self.quote_engine.quote(intent.source_token, intent.dest_token, intent.amount)
        if (
            quote.source_token != intent.source_token
            or quote.dest_token != intent.dest_token
            or quote.amount_in != intent.amount
        ):
            raise ValidationError("Quote does not match the swap intent")
        if quote.is_expired(self.quote_engine.clock()):
            raise QuoteExpired(f"Quote expired at {quote.expires_at.isoformat()}")
        return quote

    # ======================
    # Driver
    # ======================

    async def _drive(self, tracked: TrackedSwap) -> None:
        try:
            if not await self._confirm(tracked):
                return
            if not await self._lock_custody(tracked):
                return
            await self._relay(tracked)
        except asyncio.CancelledError:
            logger.debug(f"Driver for swap {tracked.swap_id} cancelled in {tracked.status.value}")
            raise
        except Exception as e:
            logger.exception(f"Swap {tracked.swap_id}: unexpected error in {tracked.status.value}")
            # Funds may have moved once the record exists
            target = SwapStatus.FAILED if tracked.record is None else SwapStatus.FLAGGED
            tracked.failure_reason = _describe(e)
            await self._transition(tracked, target, _describe(e))

    async def _confirm(self, tracked: TrackedSwap) -> bool:
        try:
            await asyncio.wait_for(
                self.authorizer.authorize(tracked.intent, tracked.swap_id),
                timeout=self.config.confirm_timeout,
            )
        except AuthorizationError as e:
            logger.warning(f"Swap {tracked.swap_id} not authorized: {e}")
            return await self._fail(tracked, e)
        except asyncio.TimeoutError:
            error = AuthorizationError(
                f"Confirmation timed out after {self.config.confirm_timeout}s"
            )
            logger.warning(f"Swap {tracked.swap_id}: {error}")
            return await self._fail(tracked, error)
        return tracked.status is SwapStatus.CONFIRMING

    async def _lock_custody(self, tracked: TrackedSwap) -> bool:
        """Persist the swap record, then enter LOCKED_PENDING_RELAY.

        The durable write is the guard of the lock transition and runs under
        the swap's lock, so a cancel either lands before it or is rejected.
        """
        swap_id = tracked.swap_id
        async with self.locks.hold(swap_id, operation="custody_lock"):
            if tracked.status is not SwapStatus.CONFIRMING:
                return False
            record = None
            try:
                record = self._build_record(tracked)
                stored_id = await retry_async(
                    lambda: self.ledger.create(tracked.intent.user_id, record),
                    self.config.ledger_retry,
                    retry_on=(LedgerUnavailable,),
                    description=f"Ledger create for swap {swap_id}",
                )
            except (ValidationError, EncryptionError, LedgerError) as e:
                logger.error(f"Swap {swap_id} failed closed before custody lock: {_describe(e)}")
                if record is not None:
                    await self.ledger.abandon(record.id)
                tracked.failure_reason = _describe(e)
                change = self._apply(tracked, SwapStatus.FAILED, _describe(e))
                locked = False
            else:
                if stored_id and stored_id != record.id:
                    logger.warning(f"Swap {swap_id}: ledger stored the record as {stored_id}")
                    record = replace(record, id=stored_id, path=record_path(record.user_id, stored_id))
                tracked.record = record
                change = self._apply(tracked, SwapStatus.LOCKED_PENDING_RELAY)
                locked = True
        await self._publish(tracked, change)
        return locked

    def _build_record(self, tracked: TrackedSwap) -> SwapRecord:
        intent = tracked.intent
        quote = tracked.quote
        if quote.is_expired(self.quote_engine.clock()):
            logger.info(f"Quote for swap {tracked.swap_id} expired during confirmation; re-quoting")
            quote = self.quote_engine.quote(intent.source_token, intent.dest_token, intent.amount)
            tracked.quote = quote

        route = route_descriptor(intent.source_chain, intent.dest_chain)
        bundle = self.encryption.encrypt({
            "swap_id": tracked.swap_id,
            "user_id": intent.user_id,
            "route": route,
            "source_chain": intent.source_chain,
            "source_token": intent.source_token,
            "dest_chain": intent.dest_chain,
            "dest_token": intent.dest_token,
            "amount": intent.amount,
            "expected_output": quote.amount_out,
            "fee": quote.fee,
            "rate": quote.rate,
            "quoted_at": quote.quoted_at,
        })
        return SwapRecord(
            id=tracked.swap_id,
            user_id=intent.user_id,
            route=route,
            source_token=intent.source_token,
            dest_token=intent.dest_token,
            amount=str(intent.amount),
            expected_output=str(quote.amount_out),
            status=SwapStatus.LOCKED_PENDING_RELAY,
            bundle=bundle,
        )

    async def _relay(self, tracked: TrackedSwap) -> None:
        if not await self._transition(tracked, SwapStatus.RELAYING):
            return

        record = tracked.record
        request = RelayRequest(
            idempotency_key=record.id,
            route=record.route,
            source_token=record.source_token,
            dest_token=record.dest_token,
            amount=tracked.intent.amount,
            expected_output=tracked.quote.amount_out,
        )
        try:
            receipt = await asyncio.wait_for(
                self._relay_with_retries(request), timeout=self.config.relay_deadline
            )
        except RelayFailure as e:
            if e.definitive:
                logger.warning(f"Swap {tracked.swap_id} relay refused, nothing moved: {e}")
                await self._fail(tracked, e)
            else:
                await self._flag(tracked, e)
            return
        except asyncio.TimeoutError:
            await self._flag(
                tracked, RelayTimeout(f"Relay deadline of {self.config.relay_deadline}s exceeded")
            )
            return

        if not receipt.settled:
            await self._flag(tracked, RelayFailure("Relay returned an unsettled receipt"))
            return
        logger.info(f"Swap {tracked.swap_id} settled ({receipt.tx_reference})")
        await self._transition(tracked, SwapStatus.SETTLED_SUCCESS, receipt.tx_reference or "")

    async def _relay_with_retries(self, request: RelayRequest) -> RelayReceipt:
        async def attempt() -> RelayReceipt:
            try:
                return await asyncio.wait_for(
                    self.relay.relay(request), timeout=self.config.relay_attempt_timeout
                )
            except asyncio.TimeoutError:
                raise RelayTimeout(
                    f"Relay attempt timed out after {self.config.relay_attempt_timeout}s"
                )

        return await retry_async(
            attempt,
            self.config.relay_retry,
            retry_on=(RelayFailure,),
            description=f"Relay for swap {request.idempotency_key}",
            should_retry=lambda e: not e.definitive,
        )

    async def _fail(self, tracked: TrackedSwap, error: BaseException) -> bool:
        tracked.failure_reason = _describe(error)
        await self._transition(tracked, SwapStatus.FAILED, _describe(error))
        return False

    async def _flag(self, tracked: TrackedSwap, error: BaseException) -> None:
        logger.error(f"Swap {tracked.swap_id} flagged for review: {_describe(error)}")
        tracked.failure_reason = _describe(error)
        await self._transition(tracked, SwapStatus.FLAGGED, _describe(error))

    # ======================
    # Transitions
    # ======================

    async def _transition(self, tracked: TrackedSwap, target: SwapStatus, reason: str = "") -> bool:
        """Apply an automatic transition and mirror it onto the stored record."""
        async with self.locks.hold(tracked.swap_id, operation=f"-> {target.value}"):
            allowed, denial = TransitionGuard.can_transition(tracked.status, target)
            if not allowed:
                logger.warning(
                    f"Swap {tracked.swap_id}: refused {tracked.status.value} -> {target.value} ({denial})"
                )
                return False
            change = self._apply(tracked, target, reason)
            if tracked.record is not None:
                await self._persist_status(tracked, target)
        await self._publish(tracked, change)
        return True

    def _apply(self, tracked: TrackedSwap, target: SwapStatus, reason: str = "") -> StatusChange:
        # Caller holds the swap's lock
        change = StatusChange(
            swap_id=tracked.swap_id,
            previous=tracked.status,
            current=target,
            reason=reason,
        )
        tracked.status = target
        tracked.entered_at = self._now()
        tracked.history.append(change)
        logger.info(
            f"Swap {tracked.swap_id}: {change.previous.value} -> {change.current.value}"
            + (f" ({reason})" if reason else "")
        )
        return change

    async def _persist_status(self, tracked: TrackedSwap, status: SwapStatus) -> None:
        swap_id = tracked.swap_id
        locator = tracked.record.path
        try:
            found = await retry_async(
                lambda: self.ledger.update_status(locator, status),
                self.config.ledger_retry,
                retry_on=(LedgerUnavailable,),
                description=f"Status update for swap {swap_id}",
            )
        except LedgerError as e:
            logger.error(f"Swap {swap_id}: record status {status.value} not persisted: {_describe(e)}")
            return
        if not found:
            logger.error(f"Swap {swap_id}: record missing from ledger on status {status.value}")

    async def _publish(self, tracked: TrackedSwap, change: StatusChange) -> None:
        for callback in list(tracked.observers) + list(self._global_observers):
            try:
                result = callback(change)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Status observer failed for swap {tracked.swap_id}")
        if change.current.is_terminal:
            tracked.done.set()

    async def _ledger_call(self, operation, description: str):
        return await retry_async(
            operation,
            self.config.ledger_retry,
            retry_on=(LedgerUnavailable,),
            description=description,
        )

    async def _override_stored(
        self, swap_id: str, status: SwapStatus, actor_id: str, reason: str
    ) -> AuditEntry:
        record = await self._ledger_call(lambda: self.ledger.get(swap_id), f"Ledger get {swap_id}")
        if record is None:
            raise SwapNotFound(f"Swap {swap_id} not found")
        allowed, denial = TransitionGuard.can_override(record.status, status)
        if not allowed:
            raise AdminOverrideConflict(f"Swap {swap_id}: {denial}")
        entry = AuditEntry(
            record_id=record.id,
            actor_id=actor_id,
            from_status=record.status,
            to_status=status,
            reason=reason,
        )
        await self._ledger_call(
            lambda: self.ledger.append_audit(entry), f"Audit append for swap {swap_id}"
        )
        if not await self._ledger_call(
            lambda: self.ledger.update_status(record.path, status), f"Status update for swap {swap_id}"
        ):
            raise SwapNotFound(f"Swap {swap_id} not found")
        logger.info(f"Stored swap {swap_id} set {record.status.value} -> {status.value} by admin {actor_id}")
        return entry

    # ======================
    # Helpers
    # ======================

    def _tracked(self, swap_id: str) -> TrackedSwap:
        tracked = self._swaps.get(swap_id)
        if tracked is None:
            raise SwapNotFound(f"Swap {swap_id} not found")
        return tracked

    def _stop_driver(self, tracked: TrackedSwap) -> None:
        task = tracked.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def __len__(self) -> int:
        return len(self._swaps)
