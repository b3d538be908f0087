"""In-memory implementation of PaymentStatusStore.

Single-process only. Useful for local dev and tests.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from application.ports.payment_status import PaymentStatusStore, StatusHandler, Unsubscribe
from core.logging_config import get_logger
from domain.payment.entity import PaymentSnapshot


logger = get_logger(__name__)


class InMemoryPaymentStatusStore(PaymentStatusStore):
    def __init__(self) -> None:
        self._rows: Dict[str, PaymentSnapshot] = {}
        self._handlers: Dict[str, List[StatusHandler]] = {}

    async def get(self, reference: str) -> Optional[PaymentSnapshot]:  # type: ignore[override]
        return self._rows.get(reference)

    async def subscribe(self, reference: str, on_update: StatusHandler) -> Unsubscribe:  # type: ignore[override]
        handlers = self._handlers.setdefault(reference, [])
        handlers.append(on_update)

        def unsubscribe() -> None:
            current = self._handlers.get(reference)
            if current and on_update in current:
                current.remove(on_update)
                if not current:
                    self._handlers.pop(reference, None)

        return unsubscribe

    def put(self, snapshot: PaymentSnapshot) -> None:
        """Store a row without notifying subscribers."""
        self._rows[snapshot.reference] = snapshot

    def publish(self, snapshot: PaymentSnapshot) -> int:
        """Store a row and deliver it to the reference's subscribers."""
        self._rows[snapshot.reference] = snapshot
        handlers = list(self._handlers.get(snapshot.reference, ()))
        for h in handlers:
            try:
                h(snapshot)
            except Exception as exc:
                logger.warning("payment_status_handler_failed", reference=snapshot.reference, error=str(exc))
        return len(handlers)

    def subscriber_count(self, reference: str) -> int:
        return len(self._handlers.get(reference, ()))
