"""
Dual-channel payment status tracker.

Tracks one payment reference until it reaches a terminal status by merging
two independent sources: a push subscription on the status store and a
fallback polling task. Both sources report through a single synchronous
merge rule (``apply_snapshot``); the asyncio event loop runs each callback
to completion, so the merge rule needs no locking and is safe under any
interleaving of push events, poll ticks and ``stop_tracking`` calls.

A session ends exactly once: on a terminal status, on the pending
timeout, on ``stop_tracking``/restart, or when the owner closes the tracker
(``aclose`` / ``async with``).
"""
from __future__ import annotations

import asyncio
import time
from collections import OrderedDict, deque
from contextlib import suppress
from enum import Enum
from typing import Callable, Deque, List, Optional

from application.ports.payment_status import PaymentStatusStore, Unsubscribe
from core.logging_config import bind_payment_context, get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    BusinessException,
    PaymentNotFoundException,
    PaymentTransportException,
    PendingTimeoutException,
)
from domain.payment.entity import PaymentSnapshot, PaymentStatus
from domain.payment.events import (
    PaymentEvent,
    PaymentStatusAnomaly,
    PaymentStatusChanged,
    PaymentTrackingTimedOut,
)
from domain.payment.notification import NotificationPolicy, UserMessage


logger = get_logger(__name__)


class TrackerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PENDING = "pending"
    TERMINAL = "terminal"


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TrackingSession:
    """Ephemeral state for one tracked reference; never persisted."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        self.started_at: Optional[float] = None
        self.deadline: Optional[float] = None
        self.last_snapshot: Optional[PaymentSnapshot] = None
        self.unsubscribe: Optional[Unsubscribe] = None
        self.poll_task: Optional[asyncio.Task] = None
        self.disposed = False

    @property
    def last_status(self) -> Optional[PaymentStatus]:
        return self.last_snapshot.status if self.last_snapshot else None

    def dispose(self) -> bool:
        """Release both channels. Returns False if already disposed."""
        if self.disposed:
            return False
        self.disposed = True

        unsubscribe, self.unsubscribe = self.unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception as exc:
                logger.warning("payment_unsubscribe_failed", reference=self.reference, error=str(exc))

        task, self.poll_task = self.poll_task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        self.started_at = None
        self.deadline = None
        return True


class PaymentStatusTracker:
    # One tracker follows a handful of payments over its life; both histories are bounded.
    max_events = 256
    max_final_references = 1024

    def __init__(
        self,
        store: PaymentStatusStore,
        *,
        settings: Optional[PaymentSettings] = None,
        policy: Optional[NotificationPolicy] = None,
        notify: Optional[Callable[[UserMessage], None]] = None,
        on_status_change: Optional[Callable[[PaymentSnapshot], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = settings or payment_settings
        self._store = store
        self._poll_interval = cfg.poll_interval
        self._pending_timeout = cfg.pending_timeout
        self._policy = policy or NotificationPolicy()
        self._notify = notify
        self._on_status_change = on_status_change
        self._clock = clock

        self._session: Optional[TrackingSession] = None
        self._final_statuses: "OrderedDict[str, PaymentStatus]" = OrderedDict()

        self.state = TrackerState.IDLE
        self.payment_status: Optional[PaymentSnapshot] = None
        self.loading = False
        self.error: Optional[str] = None
        self.failure: Optional[BusinessException] = None
        self.events: Deque[PaymentEvent] = deque(maxlen=self.max_events)

    # Read access
    @property
    def reference(self) -> Optional[str]:
        return self._session.reference if self._session else None

    @property
    def is_tracking(self) -> bool:
        return self._session is not None and not self._session.disposed

    @property
    def session(self) -> Optional[TrackingSession]:
        return self._session

    @property
    def anomalies(self) -> List[PaymentStatusAnomaly]:
        return [e for e in self.events if isinstance(e, PaymentStatusAnomaly)]

    # Public API
    async def start_tracking(self, reference: str) -> None:
        current = self._session
        if current is not None and not current.disposed and current.reference == reference:
            logger.debug("payment_tracking_already_active", reference=reference)
            return

        self.stop_tracking()

        session = TrackingSession(reference)
        self._session = session
        self.state = TrackerState.FETCHING
        self.loading = True
        self.error = None
        self.failure = None

        with bind_payment_context(reference):
            logger.info("payment_tracking_started")
            try:
                snapshot = await self._store.get(reference)
            except Exception as exc:
                if self._is_live(session):
                    self._fail(session, PaymentTransportException(reference=reference, cause=str(exc)))
                return

            if not self._is_live(session):
                logger.info("payment_fetch_discarded", reason="session_replaced")
                return
            self.loading = False

            if snapshot is None:
                self._fail(session, PaymentNotFoundException(reference))
                return

            self._apply(session, snapshot, source="fetch")
            if session.disposed:
                return
            if session.last_status is None:
                # Reference already reached a terminal status; nothing left to track.
                self._teardown(session, TrackerState.TERMINAL, reason="already_final")
                return

            self._open_channels(session)
            await self._subscribe(session)

    def stop_tracking(self) -> None:
        session = self._session
        if session is None:
            return
        self._teardown(session, TrackerState.IDLE, reason="stopped")

    async def refresh(self) -> None:
        session = self._session
        if session is None or session.disposed:
            return
        self.loading = True
        try:
            snapshot = await self._store.get(session.reference)
        except Exception as exc:
            logger.warning("payment_refresh_failed", reference=session.reference, error=str(exc))
            if self._is_live(session):
                self.failure = PaymentTransportException(
                    "Failed to refresh payment status", reference=session.reference, cause=str(exc)
                )
                self.error = self.failure.message
            return
        finally:
            if self._is_live(session):
                self.loading = False
        if snapshot is not None:
            self._apply(session, snapshot, source="refresh")

    def apply_snapshot(self, snapshot: PaymentSnapshot, *, source: str = "external") -> bool:
        """Merge rule entry point. Returns True when the snapshot changed state."""
        return self._apply(self._session, snapshot, source=source)

    async def aclose(self) -> None:
        session = self._session
        task = session.poll_task if session else None
        self.stop_tracking()
        if task is not None and task is not _current_task():
            with suppress(asyncio.CancelledError):
                await task

    async def __aenter__(self) -> "PaymentStatusTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # Channels
    def _open_channels(self, session: TrackingSession) -> None:
        session.started_at = self._clock()
        session.deadline = session.started_at + self._pending_timeout
        self.state = TrackerState.PENDING
        session.poll_task = asyncio.create_task(
            self._poll_loop(session), name=f"payment-poll:{session.reference}"
        )
        logger.info(
            "payment_channels_opened",
            poll_interval=self._poll_interval,
            pending_timeout=self._pending_timeout,
        )

    async def _subscribe(self, session: TrackingSession) -> None:
        def on_push(snapshot: PaymentSnapshot) -> None:
            self._apply(session, snapshot, source="push")

        try:
            unsubscribe = await self._store.subscribe(session.reference, on_push)
        except Exception as exc:
            # Polling alone still resolves the payment.
            logger.warning("payment_subscribe_failed", error=str(exc))
            return

        if session.disposed:
            unsubscribe()
            return
        session.unsubscribe = unsubscribe

    async def _poll_loop(self, session: TrackingSession) -> None:
        deadline = session.deadline
        while not session.disposed:
            remaining = deadline - self._clock()
            if remaining <= 0:
                self._expire(session)
                return
            await asyncio.sleep(min(self._poll_interval, remaining))
            if session.disposed:
                return
            if self._clock() >= deadline:
                self._expire(session)
                return
            try:
                await asyncio.wait_for(self._poll_once(session), timeout=max(deadline - self._clock(), 0))
            except asyncio.TimeoutError:
                # A stalled lookup must not hold the session past its deadline.
                logger.warning("payment_poll_stalled", reference=session.reference)
                self._expire(session)
                return

    async def _poll_once(self, session: TrackingSession) -> None:
        try:
            snapshot = await self._store.get(session.reference)
        except Exception as exc:
            logger.warning("payment_poll_failed", error=str(exc))
            return
        if snapshot is None:
            logger.debug("payment_poll_not_found")
            return
        self._apply(session, snapshot, source="poll")

    # Merge rule
    def _apply(self, session: Optional[TrackingSession], snapshot: PaymentSnapshot, *, source: str) -> bool:
        final = self._final_statuses.get(snapshot.reference)
        if final is not None and snapshot.status != final:
            if snapshot.is_terminal:
                self._record_anomaly(snapshot, final, source)
            else:
                logger.debug("payment_snapshot_stale", reference=snapshot.reference, source=source)
            return False

        if session is None or not self._is_live(session):
            logger.debug("payment_snapshot_ignored", reference=snapshot.reference, source=source, reason="no_session")
            return False
        if snapshot.reference != session.reference:
            logger.warning(
                "payment_snapshot_reference_mismatch",
                reference=session.reference,
                reported=snapshot.reference,
                source=source,
            )
            return False

        previous = session.last_status
        if snapshot.status == previous:
            return False

        session.last_snapshot = snapshot
        self.payment_status = snapshot
        self.events.append(
            PaymentStatusChanged(reference=snapshot.reference, previous=previous, current=snapshot.status, source=source)
        )
        logger.info(
            "payment_status_changed",
            reference=snapshot.reference,
            previous=previous.value if previous else None,
            current=snapshot.status.value,
            source=source,
        )

        if self._on_status_change is not None:
            self._invoke(self._on_status_change, snapshot)

        message = self._policy.on_transition(previous, snapshot.status, snapshot.amount, snapshot.currency)
        if message is not None:
            self._deliver(message)

        if snapshot.is_terminal:
            self._remember_final(snapshot.reference, snapshot.status)
            self._teardown(session, TrackerState.TERMINAL, reason=snapshot.status.value)
        return True

    # Exits
    def _expire(self, session: TrackingSession) -> None:
        if not self._is_live(session):
            return
        exc = PendingTimeoutException(session.reference, self._pending_timeout)
        self.failure = exc
        self.error = exc.message
        self.events.append(PaymentTrackingTimedOut(reference=session.reference, timeout_seconds=self._pending_timeout))
        logger.warning("payment_tracking_timed_out", reference=session.reference, timeout=self._pending_timeout)

        snapshot = session.last_snapshot
        if snapshot is not None:
            self._deliver(self._policy.on_timeout(snapshot.amount, snapshot.currency))
        self._teardown(session, TrackerState.IDLE, reason="timeout")

    def _fail(self, session: TrackingSession, exc: BusinessException) -> None:
        self.failure = exc
        self.error = exc.message
        logger.warning("payment_tracking_failed", error_type=exc.error_type, error=exc.message)
        self._teardown(session, TrackerState.IDLE, reason=exc.error_type)

    def _teardown(self, session: TrackingSession, state: TrackerState, *, reason: str) -> None:
        if session.dispose():
            logger.info("payment_tracking_stopped", reference=session.reference, reason=reason)
        if self._session is session:
            self._session = None
            self.state = state
            self.loading = False

    # Helpers
    def _remember_final(self, reference: str, status: PaymentStatus) -> None:
        self._final_statuses[reference] = status
        self._final_statuses.move_to_end(reference)
        while len(self._final_statuses) > self.max_final_references:
            self._final_statuses.popitem(last=False)

    def _is_live(self, session: TrackingSession) -> bool:
        return session is self._session and not session.disposed

    def _record_anomaly(self, snapshot: PaymentSnapshot, final: PaymentStatus, source: str) -> None:
        self.events.append(
            PaymentStatusAnomaly(reference=snapshot.reference, observed=final, reported=snapshot.status, source=source)
        )
        logger.warning(
            "payment_status_anomaly",
            reference=snapshot.reference,
            observed=final.value,
            reported=snapshot.status.value,
            source=source,
        )

    def _deliver(self, message: UserMessage) -> None:
        logger.info("payment_user_notified", title=message.title)
        if self._notify is not None:
            self._invoke(self._notify, message)

    @staticmethod
    def _invoke(callback: Callable, arg) -> None:
        try:
            callback(arg)
        except Exception:
            logger.exception("payment_callback_failed")
