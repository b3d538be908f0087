"""Snapshot board for several payments at once (one lookup each, no channels)."""
from __future__ import annotations

from typing import Dict, List, Optional

from application.ports.payment_status import PaymentStatusStore
from core.logging_config import get_logger
from domain.payment.entity import PaymentSnapshot


logger = get_logger(__name__)


class MultiPaymentStatusBoard:
    def __init__(self, store: PaymentStatusStore) -> None:
        self._store = store
        self._payments: Dict[str, PaymentSnapshot] = {}
        self.loading = False

    @property
    def payments(self) -> List[PaymentSnapshot]:
        return list(self._payments.values())

    async def add_payment(self, reference: str) -> Optional[PaymentSnapshot]:
        self.loading = True
        try:
            snapshot = await self._store.get(reference)
        except Exception as exc:
            logger.warning("payment_board_fetch_failed", reference=reference, error=str(exc))
            return None
        finally:
            self.loading = False
        if snapshot is not None:
            self._payments[reference] = snapshot
        return snapshot

    def remove_payment(self, reference: str) -> None:
        self._payments.pop(reference, None)

    def get_payment(self, reference: str) -> Optional[PaymentSnapshot]:
        return self._payments.get(reference)
