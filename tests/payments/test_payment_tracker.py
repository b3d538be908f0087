import asyncio

import pytest

from application.services.payment_tracker import PaymentStatusTracker, TrackerState
from core.settings import PaymentSettings
from domain.common.exceptions import (
    PaymentNotFoundException,
    PaymentTransportException,
    PendingTimeoutException,
)
from domain.payment.entity import PaymentStatus
from domain.payment.events import PaymentTrackingTimedOut
from infrastructure.realtime.inmemory import InMemoryPaymentStatusStore


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for_state(tracker, state, timeout: float = 2.0) -> None:
    async def _wait():
        while tracker.state != state:
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_wait(), timeout)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingStore(InMemoryPaymentStatusStore):
    def __init__(self) -> None:
        super().__init__()
        self.gets = 0

    async def get(self, reference):
        self.gets += 1
        return await super().get(reference)


class BrokenStore(InMemoryPaymentStatusStore):
    async def get(self, reference):
        raise ConnectionError("database unreachable")


class FlakyStore(InMemoryPaymentStatusStore):
    """First lookup succeeds; the next `failures` lookups raise."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.calls = 0
        self.failures = failures

    async def get(self, reference):
        self.calls += 1
        if 1 < self.calls <= 1 + self.failures:
            raise PaymentTransportException(reference=reference, cause="blip")
        return await super().get(reference)


class GatedStore(InMemoryPaymentStatusStore):
    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def get(self, reference):
        await self.gate.wait()
        return await super().get(reference)


class NoPushStore(InMemoryPaymentStatusStore):
    async def subscribe(self, reference, on_update):
        raise PaymentTransportException("Failed to subscribe to payment updates", reference=reference)


def make_tracker(store, settings, recorder, **kwargs):
    return PaymentStatusTracker(
        store,
        settings=settings,
        notify=recorder.notify,
        on_status_change=recorder.on_status_change,
        **kwargs,
    )


# Initial fetch

@pytest.mark.asyncio
async def test_terminal_on_first_fetch_opens_no_channels(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("completed"))
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)

    assert tracker.state is TrackerState.TERMINAL
    assert tracker.is_tracking is False
    assert store.subscriber_count(reference) == 0
    assert recorder.changes == [PaymentStatus.COMPLETED]
    assert recorder.messages == []
    assert tracker.loading is False


@pytest.mark.asyncio
async def test_unknown_reference_surfaces_not_found(store, settings, recorder, reference):
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)

    assert tracker.state is TrackerState.IDLE
    assert tracker.error == "Payment not found"
    assert isinstance(tracker.failure, PaymentNotFoundException)
    assert store.subscriber_count(reference) == 0
    assert recorder.messages == []


@pytest.mark.asyncio
async def test_fetch_failure_is_terminal_for_the_call(settings, recorder, reference):
    store = BrokenStore()
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)

    assert tracker.state is TrackerState.IDLE
    assert tracker.error == "Failed to fetch payment status"
    assert isinstance(tracker.failure, PaymentTransportException)
    assert tracker.loading is False
    assert store.subscriber_count(reference) == 0


# Pending tracking

@pytest.mark.asyncio
async def test_pending_then_completed_via_push(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)
    session = tracker.session
    assert tracker.state is TrackerState.PENDING
    assert store.subscriber_count(reference) == 1
    assert session.poll_task is not None

    # A poll tick that sees the same pending row changes nothing.
    await tracker._poll_once(session)
    assert recorder.changes == [PaymentStatus.PENDING]

    store.publish(make_snapshot("completed"))
    await settle()

    assert recorder.changes == [PaymentStatus.PENDING, PaymentStatus.COMPLETED]
    assert recorder.titles == ["Payment Successful"]
    assert tracker.state is TrackerState.TERMINAL
    assert session.disposed is True
    assert session.poll_task is None
    assert store.subscriber_count(reference) == 0
    assert tracker.payment_status.status is PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_scenario_with_live_channels(store, recorder, make_snapshot, reference):
    settings = PaymentSettings(poll_interval_ms=10, pending_timeout_ms=500)
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)
    await asyncio.sleep(0.05)  # several pending polls
    store.publish(make_snapshot("completed"))
    await asyncio.sleep(0.6)  # well past the pending deadline

    assert recorder.changes == [PaymentStatus.PENDING, PaymentStatus.COMPLETED]
    assert recorder.titles == ["Payment Successful"]
    assert tracker.error is None
    assert not any(isinstance(e, PaymentTrackingTimedOut) for e in tracker.events)


@pytest.mark.asyncio
async def test_same_terminal_status_from_both_channels_notifies_once(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking(reference)
    session = tracker.session

    store.put(make_snapshot("failed"))
    await tracker._poll_once(session)
    store.publish(make_snapshot("failed"))
    assert tracker.apply_snapshot(make_snapshot("failed"), source="push") is False
    await tracker._poll_once(session)

    assert recorder.titles == ["Payment Failed"]
    assert recorder.changes == [PaymentStatus.PENDING, PaymentStatus.FAILED]


@pytest.mark.asyncio
async def test_unchanged_status_is_a_no_op(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking(reference)
    session = tracker.session
    task = session.poll_task

    assert tracker.apply_snapshot(make_snapshot("pending")) is False
    assert tracker.apply_snapshot(make_snapshot("pending")) is False

    assert recorder.messages == []
    assert tracker.session is session
    assert session.poll_task is task
    assert store.subscriber_count(reference) == 1
    await tracker.aclose()


@pytest.mark.asyncio
async def test_snapshot_for_other_reference_is_ignored(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking(reference)

    assert tracker.apply_snapshot(make_snapshot("completed", reference="WC_OTHER")) is False
    assert tracker.state is TrackerState.PENDING
    await tracker.aclose()


# Sessions

@pytest.mark.asyncio
async def test_starting_new_reference_releases_previous_session(store, settings, recorder, make_snapshot):
    store.put(make_snapshot("pending", reference="WC_A"))
    store.put(make_snapshot("pending", reference="WC_B"))
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking("WC_A")
    first = tracker.session
    first_task = first.poll_task
    await tracker.start_tracking("WC_B")
    await settle()

    assert first.disposed is True
    assert first_task.cancelled()
    assert store.subscriber_count("WC_A") == 0
    assert store.subscriber_count("WC_B") == 1
    assert tracker.reference == "WC_B"

    # Late events for the released reference have no effect.
    store.publish(make_snapshot("completed", reference="WC_A"))
    assert tracker.state is TrackerState.PENDING
    assert recorder.messages == []
    await tracker.aclose()


@pytest.mark.asyncio
async def test_same_reference_twice_is_idempotent(settings, recorder, make_snapshot, reference):
    store = CountingStore()
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)
    session = tracker.session
    await tracker.start_tracking(reference)

    assert tracker.session is session
    assert store.gets == 1
    assert store.subscriber_count(reference) == 1
    await tracker.aclose()


@pytest.mark.asyncio
async def test_stop_during_initial_fetch_discards_result(settings, recorder, make_snapshot, reference):
    store = GatedStore()
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)

    pending_start = asyncio.create_task(tracker.start_tracking(reference))
    await settle()
    assert tracker.state is TrackerState.FETCHING
    tracker.stop_tracking()
    store.gate.set()
    await pending_start

    assert tracker.state is TrackerState.IDLE
    assert recorder.changes == []
    assert store.subscriber_count(reference) == 0


@pytest.mark.asyncio
async def test_stop_tracking_is_idempotent(store, settings, recorder, make_snapshot, reference):
    tracker = make_tracker(store, settings, recorder)
    tracker.stop_tracking()

    store.put(make_snapshot("pending"))
    await tracker.start_tracking(reference)
    task = tracker.session.poll_task
    tracker.stop_tracking()
    tracker.stop_tracking()
    await settle()

    assert tracker.state is TrackerState.IDLE
    assert tracker.is_tracking is False
    assert task.cancelled()
    assert store.subscriber_count(reference) == 0


@pytest.mark.asyncio
async def test_async_context_manager_releases_channels(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("pending"))
    async with make_tracker(store, settings, recorder) as tracker:
        await tracker.start_tracking(reference)
        task = tracker.session.poll_task

    assert task.done()
    assert store.subscriber_count(reference) == 0
    assert tracker.is_tracking is False


# Polling

@pytest.mark.asyncio
async def test_poll_errors_do_not_stop_tracking(fast_settings, recorder, make_snapshot, reference):
    store = FlakyStore(failures=3)
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, fast_settings, recorder)

    await tracker.start_tracking(reference)
    store.put(make_snapshot("completed"))
    await wait_for_state(tracker, TrackerState.TERMINAL)

    assert store.calls >= 5
    assert recorder.titles == ["Payment Successful"]
    assert tracker.error is None


@pytest.mark.asyncio
async def test_polling_covers_a_missing_push_channel(fast_settings, recorder, make_snapshot, reference):
    store = NoPushStore()
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, fast_settings, recorder)

    await tracker.start_tracking(reference)
    assert tracker.state is TrackerState.PENDING
    store.put(make_snapshot("cancelled"))
    await wait_for_state(tracker, TrackerState.TERMINAL)

    assert recorder.titles == ["Payment Cancelled"]


# Timeout

@pytest.mark.asyncio
async def test_pending_timeout_fires_once_and_releases_channels(store, recorder, make_snapshot, reference):
    clock = FakeClock()
    settings = PaymentSettings(poll_interval_ms=10, pending_timeout_ms=1000)
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder, clock=clock)

    await tracker.start_tracking(reference)
    await asyncio.sleep(0.05)
    assert tracker.state is TrackerState.PENDING

    clock.advance(1.5)
    await wait_for_state(tracker, TrackerState.IDLE)

    assert tracker.error == "Payment still pending"
    assert isinstance(tracker.failure, PendingTimeoutException)
    assert recorder.titles == ["Payment Still Pending"]
    assert store.subscriber_count(reference) == 0

    # A stale callback arriving after the timeout has no effect.
    store.publish(make_snapshot("completed"))
    await asyncio.sleep(0.05)
    assert recorder.titles == ["Payment Still Pending"]
    assert recorder.changes == [PaymentStatus.PENDING]
    assert len([e for e in tracker.events if isinstance(e, PaymentTrackingTimedOut)]) == 1


@pytest.mark.asyncio
async def test_timeout_is_measured_from_session_start(store, recorder, make_snapshot, reference):
    settings = PaymentSettings(poll_interval_ms=20, pending_timeout_ms=60)
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)
    await wait_for_state(tracker, TrackerState.IDLE, timeout=1.0)

    assert isinstance(tracker.failure, PendingTimeoutException)


# Refresh

@pytest.mark.asyncio
async def test_refresh_without_session_is_a_no_op(settings, recorder):
    store = CountingStore()
    tracker = make_tracker(store, settings, recorder)
    await tracker.refresh()
    assert store.gets == 0


@pytest.mark.asyncio
async def test_refresh_applies_merge_rule(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking(reference)

    await tracker.refresh()
    assert tracker.state is TrackerState.PENDING

    store.put(make_snapshot("completed"))
    await tracker.refresh()

    assert tracker.state is TrackerState.TERMINAL
    assert recorder.titles == ["Payment Successful"]
    assert tracker.loading is False


@pytest.mark.asyncio
async def test_refresh_failure_keeps_channels(settings, recorder, make_snapshot, reference):
    store = FlakyStore(failures=1)
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking(reference)

    await tracker.refresh()

    assert tracker.error == "Failed to refresh payment status"
    assert tracker.state is TrackerState.PENDING
    assert store.subscriber_count(reference) == 1
    await tracker.aclose()


# Finality

@pytest.mark.asyncio
async def test_conflicting_terminal_status_is_an_anomaly(store, settings, recorder, make_snapshot, reference):
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking(reference)
    store.publish(make_snapshot("completed"))
    assert tracker.state is TrackerState.TERMINAL

    assert tracker.apply_snapshot(make_snapshot("failed")) is False

    store.put(make_snapshot("failed"))
    await tracker.start_tracking(reference)

    assert tracker.state is TrackerState.TERMINAL
    assert tracker.payment_status.status is PaymentStatus.COMPLETED
    assert recorder.titles == ["Payment Successful"]
    assert [(a.observed, a.reported) for a in tracker.anomalies] == [
        (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
        (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
    ]
    assert store.subscriber_count(reference) == 0


@pytest.mark.asyncio
async def test_callback_errors_do_not_break_tracking(store, settings, make_snapshot, reference):
    def explode(_):
        raise RuntimeError("ui went away")

    store.put(make_snapshot("pending"))
    tracker = PaymentStatusTracker(store, settings=settings, notify=explode, on_status_change=explode)
    await tracker.start_tracking(reference)
    store.publish(make_snapshot("completed"))

    assert tracker.state is TrackerState.TERMINAL
    assert store.subscriber_count(reference) == 0


class HeldStore(InMemoryPaymentStatusStore):
    """Reads the row immediately but holds the answer for gated references."""

    def __init__(self) -> None:
        super().__init__()
        self.gates = {}

    async def get(self, reference):
        row = self._rows.get(reference)
        gate = self.gates.get(reference)
        if gate is not None:
            await gate.wait()
        return row


class StalledStore(InMemoryPaymentStatusStore):
    """First lookup answers; every later one never returns."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0
        self.never = asyncio.Event()

    async def get(self, reference):
        self.calls += 1
        if self.calls > 1:
            await self.never.wait()
        return await super().get(reference)


@pytest.mark.asyncio
async def test_stalled_poll_lookup_still_expires_at_deadline(recorder, make_snapshot, reference):
    store = StalledStore()
    store.put(make_snapshot("pending"))
    settings = PaymentSettings(poll_interval_ms=10, pending_timeout_ms=100)
    tracker = make_tracker(store, settings, recorder)

    await tracker.start_tracking(reference)
    await wait_for_state(tracker, TrackerState.IDLE, timeout=1.0)

    assert store.calls >= 2
    assert isinstance(tracker.failure, PendingTimeoutException)
    assert recorder.titles == ["Payment Still Pending"]
    assert store.subscriber_count(reference) == 0


@pytest.mark.asyncio
async def test_refresh_of_replaced_session_keeps_new_loading_flag(settings, recorder, make_snapshot):
    store = HeldStore()
    store.put(make_snapshot("pending", reference="WC_A"))
    store.put(make_snapshot("pending", reference="WC_B"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking("WC_A")

    store.gates["WC_A"] = asyncio.Event()
    store.gates["WC_B"] = asyncio.Event()
    refreshing = asyncio.create_task(tracker.refresh())
    await settle()
    starting = asyncio.create_task(tracker.start_tracking("WC_B"))
    await settle()

    store.gates["WC_A"].set()
    await refreshing
    assert tracker.state is TrackerState.FETCHING
    assert tracker.loading is True

    store.gates["WC_B"].set()
    await starting
    assert tracker.loading is False
    assert tracker.state is TrackerState.PENDING
    assert tracker.reference == "WC_B"
    await tracker.aclose()


@pytest.mark.asyncio
async def test_late_pending_after_terminal_is_dropped_silently(settings, recorder, make_snapshot, reference):
    store = HeldStore()
    store.put(make_snapshot("pending"))
    tracker = make_tracker(store, settings, recorder)
    await tracker.start_tracking(reference)

    store.gates[reference] = asyncio.Event()
    refreshing = asyncio.create_task(tracker.refresh())
    await settle()
    store.publish(make_snapshot("completed"))
    store.gates[reference].set()
    await refreshing

    assert tracker.apply_snapshot(make_snapshot("pending")) is False
    assert tracker.state is TrackerState.TERMINAL
    assert tracker.payment_status.status is PaymentStatus.COMPLETED
    assert recorder.titles == ["Payment Successful"]
    assert tracker.anomalies == []


@pytest.mark.asyncio
async def test_event_and_final_status_history_is_bounded(store, settings, recorder, make_snapshot):
    class SmallTracker(PaymentStatusTracker):
        max_events = 3
        max_final_references = 2

    tracker = SmallTracker(store, settings=settings)
    for ref in ("WC_1", "WC_2", "WC_3"):
        store.put(make_snapshot("completed", reference=ref))
        await tracker.start_tracking(ref)

    assert len(tracker.events) == 3
    assert [e.reference for e in tracker.events] == ["WC_1", "WC_2", "WC_3"]
    assert list(tracker._final_statuses) == ["WC_2", "WC_3"]
