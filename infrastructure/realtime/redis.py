"""Redis based PaymentStatusStore implementation.

Rows are JSON strings under `{namespace}:payment:{reference}`; every write
is also published on `{namespace}:payment:{reference}:updates` so push
subscribers are filtered per reference by channel name.
"""
from __future__ import annotations

import asyncio
from decimal import InvalidOperation
from typing import Optional, Set

from pydantic import ValidationError
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from application.dtos.payments import PaymentStatusPayload
from application.ports.payment_status import PaymentStatusStore, StatusHandler, Unsubscribe
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, PaymentTransportException
from domain.payment.entity import PaymentSnapshot


logger = get_logger(__name__)

_DECODE_ERRORS = (ValidationError, DomainValidationException, InvalidOperation, ValueError)


class RedisPaymentStatusStore(PaymentStatusStore):
    def __init__(self, client: aioredis.Redis, *, namespace: Optional[str] = None) -> None:
        self._client = client
        self._namespace = namespace or settings.redis.namespace
        self._tasks: Set[asyncio.Task] = set()

    def _row_key(self, reference: str) -> str:
        return f"{self._namespace}:payment:{reference}"

    def _channel(self, reference: str) -> str:
        return f"{self._namespace}:payment:{reference}:updates"

    @staticmethod
    def _decode(raw) -> PaymentSnapshot:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return PaymentStatusPayload.model_validate_json(raw).to_snapshot()

    async def get(self, reference: str) -> Optional[PaymentSnapshot]:  # type: ignore[override]
        try:
            raw = await self._client.get(self._row_key(reference))
        except RedisError as exc:
            raise PaymentTransportException(reference=reference, cause=str(exc)) from exc
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except _DECODE_ERRORS as exc:
            logger.error("payment_status_row_invalid", reference=reference, error=str(exc))
            raise PaymentTransportException("Malformed payment status row", reference=reference, cause=str(exc)) from exc

    async def subscribe(self, reference: str, on_update: StatusHandler) -> Unsubscribe:  # type: ignore[override]
        channel = self._channel(reference)
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            await pubsub.aclose()
            raise PaymentTransportException("Failed to subscribe to payment updates", reference=reference, cause=str(exc)) from exc

        task = asyncio.create_task(self._listen(pubsub, channel, reference, on_update), name=f"payment-feed:{reference}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("payment_status_subscribed", channel=channel)

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()

        return unsubscribe

    async def _listen(self, pubsub, channel: str, reference: str, on_update: StatusHandler) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    snapshot = self._decode(message.get("data"))
                except _DECODE_ERRORS as exc:
                    logger.warning("payment_status_message_invalid", channel=channel, error=str(exc))
                    continue
                if snapshot.reference != reference:
                    continue
                try:
                    on_update(snapshot)
                except Exception as exc:
                    logger.warning("payment_status_handler_failed", reference=reference, error=str(exc))
        except RedisError as exc:
            # Feed transport failures are not status transitions; polling keeps running.
            logger.error("payment_status_feed_failed", channel=channel, error=str(exc))
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except RedisError as exc:
                logger.debug("payment_status_unsubscribe_failed", channel=channel, error=str(exc))

    async def publish(self, snapshot: PaymentSnapshot) -> int:
        """Persist a snapshot and notify subscribers. Returns the receiver count."""
        body = PaymentStatusPayload.from_snapshot(snapshot).model_dump_json()
        try:
            await self._client.set(self._row_key(snapshot.reference), body)
            return await self._client.publish(self._channel(snapshot.reference), body)
        except RedisError as exc:
            raise PaymentTransportException(
                "Failed to publish payment status", reference=snapshot.reference, cause=str(exc)
            ) from exc

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._tasks.clear()


def create_redis_store(url: Optional[str] = None, *, namespace: Optional[str] = None) -> RedisPaymentStatusStore:
    """Build a store from settings.redis (or an explicit URL)."""
    target = url or settings.redis.url
    if not target:
        raise RuntimeError("REDIS__URL is not configured")
    client = aioredis.from_url(
        target,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis.max_connections,
    )
    return RedisPaymentStatusStore(client, namespace=namespace)
