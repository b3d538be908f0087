"""
Payment status store port (contracts-first).

The tracker depends only on this protocol; infrastructure provides the
in-memory and Redis pub/sub implementations.
"""
from __future__ import annotations

from typing import Callable, Optional, Protocol, runtime_checkable

from domain.payment.entity import PaymentSnapshot


# Push callback. Invoked synchronously on the event loop; must not block.
StatusHandler = Callable[[PaymentSnapshot], None]

# Releases a subscription. Idempotent.
Unsubscribe = Callable[[], None]


@runtime_checkable
class PaymentStatusStore(Protocol):
    """Point lookups plus a push subscription filtered by reference.

    ``get`` returns None when the reference is unknown and raises
    PaymentTransportException on transport failures. Transport errors of the
    push feed are handled by the store and never delivered to handlers.
    """

    async def get(self, reference: str) -> Optional[PaymentSnapshot]: ...

    async def subscribe(self, reference: str, on_update: StatusHandler) -> Unsubscribe: ...


__all__ = ["PaymentStatusStore", "StatusHandler", "Unsubscribe"]
