"""
Payment gateway webhook handler with event deduplication.

Events arrive already authenticated by the gateway integration. This
handler makes sure each gateway event id reaches the monetization core at
most once, then routes it:

- customer.subscription.created  -> SubscriptionManager.subscribe
- customer.subscription.updated  -> SubscriptionManager.apply_gateway_update
- customer.subscription.deleted  -> SubscriptionManager.end
- invoice.payment_succeeded/paid -> SubscriptionManager.renew
- invoice.payment_failed         -> SubscriptionManager.mark_past_due
- payment_intent.succeeded       -> TipManager.tip or UnlockManager.unlock
- payment_intent.payment_failed  -> logged only
"""
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.errors import AlreadySubscribed
from creator_platform.core.subscriptions import SubscriptionManager
from creator_platform.core.tips import TipManager
from creator_platform.core.unlocks import UnlockManager
from creator_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any], AsyncSession], Awaitable[Dict[str, Any]]]


class WebhookError(Exception):
    """Raised when webhook processing fails."""

    pass


def _metadata_uuid(obj: Dict[str, Any], key: str) -> uuid.UUID:
    value = (obj.get("metadata") or {}).get(key)
    if not value:
        raise WebhookError(f"Event object is missing metadata.{key}")
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise WebhookError(f"metadata.{key} is not a valid id: {value!r}") from e


class WebhookHandler:
    """
    Deduplicates gateway events and routes them to the monetization core.

    Deduplication claims ``webhook:processed:{event_id}`` with SET NX EX
    before any handler runs. A failed handler releases its claim so the
    gateway's retry is processed. If Redis is unreachable the event is
    rejected, never processed without deduplication.
    """

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        subscriptions: Optional[SubscriptionManager] = None,
        tips: Optional[TipManager] = None,
        unlocks: Optional[UnlockManager] = None,
    ):
        """
        Initialize webhook handler.

        Args:
            redis_client: Optional Redis client for event deduplication
            subscriptions: Optional subscription manager
            tips: Optional tip manager
            unlocks: Optional unlock manager
        """
        self.settings = get_settings()
        self.redis_client = redis_client
        self.subscriptions = subscriptions or SubscriptionManager()
        self.tips = tips or TipManager()
        self.unlocks = unlocks or UnlockManager()
        self.event_handlers: Dict[str, EventHandler] = {}

        self.register_handler(
            "customer.subscription.created", self.handle_subscription_created
        )
        self.register_handler(
            "customer.subscription.updated", self.handle_subscription_updated
        )
        self.register_handler(
            "customer.subscription.deleted", self.handle_subscription_deleted
        )
        self.register_handler("invoice.payment_succeeded", self.handle_invoice_paid)
        self.register_handler("invoice.paid", self.handle_invoice_paid)
        self.register_handler("invoice.payment_failed", self.handle_invoice_payment_failed)
        self.register_handler("payment_intent.succeeded", self.handle_payment_intent_succeeded)
        self.register_handler(
            "payment_intent.payment_failed", self.handle_payment_intent_payment_failed
        )

    def _ensure_redis(self) -> aioredis.Redis:
        """Ensure Redis client is initialized."""
        if self.redis_client is None:
            self.redis_client = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self.redis_client

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Gateway event type (e.g., 'invoice.paid')
            handler: Async callable taking (event object, db session)
        """
        self.event_handlers[event_type] = handler
        logger.debug("webhook_handler_registered", event_type=event_type)

    @staticmethod
    def _dedup_key(event_id: str) -> str:
        return f"webhook:processed:{event_id}"

    async def claim_event(self, event_id: str) -> bool:
        """
        Atomically mark an event as being processed.

        Returns:
            bool: False if the event was already claimed

        Raises:
            WebhookError: If Redis is unavailable
        """
        try:
            redis = self._ensure_redis()
            claimed = await redis.set(
                self._dedup_key(event_id),
                "1",
                nx=True,
                ex=self.settings.webhook_dedup_ttl_seconds,
            )
        except RedisError as e:
            logger.error("webhook_dedup_unavailable", event_id=event_id, error=str(e))
            raise WebhookError(f"Deduplication store unavailable: {e}") from e
        return bool(claimed)

    async def release_event(self, event_id: str) -> None:
        """Forget a claim so the event can be delivered again."""
        redis = self._ensure_redis()
        await redis.delete(self._dedup_key(event_id))
        logger.info("webhook_claim_released", event_id=event_id)

    async def process_event(self, event: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
        """
        Process a webhook event.

        Args:
            event: Gateway event with ``id``, ``type`` and ``data.object``
            db: Database session for the core operations

        Returns:
            Dict[str, Any]: Processing result

        Raises:
            WebhookError: If the event is malformed, cannot be deduplicated,
                or its handler fails
        """
        started = time.perf_counter()
        event_id = event.get("id")
        event_type = event.get("type")
        event_data = (event.get("data") or {}).get("object")
        if not event_id or not event_type or not isinstance(event_data, dict):
            raise WebhookError("Malformed event: id, type and data.object are required")

        logger.info("processing_webhook_event", event_id=event_id, event_type=event_type)

        if not await self.claim_event(event_id):
            logger.info(
                "webhook_event_already_processed",
                event_id=event_id,
                event_type=event_type,
            )
            metrics.record_webhook_event(event_type, "duplicate", time.perf_counter() - started)
            return {
                "status": "duplicate",
                "event_id": event_id,
                "message": "Event already processed",
            }

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.warning("webhook_no_handler", event_id=event_id, event_type=event_type)
            metrics.record_webhook_event(event_type, "no_handler", time.perf_counter() - started)
            return {
                "status": "no_handler",
                "event_id": event_id,
                "event_type": event_type,
                "message": f"No handler registered for event type: {event_type}",
            }

        try:
            result = await handler(event_data, db)
        except Exception as e:
            logger.error(
                "webhook_event_processing_failed",
                event_id=event_id,
                event_type=event_type,
                error=str(e),
            )
            metrics.record_webhook_event(event_type, "failed", time.perf_counter() - started)
            try:
                await self.release_event(event_id)
            except RedisError as release_error:
                # The claim expires on its own; the gateway retry is dropped until then
                logger.error(
                    "webhook_claim_release_failed",
                    event_id=event_id,
                    error=str(release_error),
                )
            raise WebhookError(f"Failed to process event {event_id}: {str(e)}") from e

        metrics.record_webhook_event(event_type, "success", time.perf_counter() - started)
        logger.info(
            "webhook_event_processed_successfully",
            event_id=event_id,
            event_type=event_type,
        )
        return {
            "status": "success",
            "event_id": event_id,
            "event_type": event_type,
            "result": result,
        }

    async def handle_subscription_created(
        self, subscription: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """
        Handle customer.subscription.created.

        Metadata carries ``subscriber_id`` and ``profile_id``; ``plan.amount``
        is the charged amount in cents.
        """
        gateway_id = subscription.get("id")
        existing = await self.subscriptions.get_by_gateway_id(db, gateway_id) if gateway_id else None
        if existing is not None:
            return {"subscription_id": str(existing.id), "status": "exists"}

        subscriber_id = _metadata_uuid(subscription, "subscriber_id")
        profile_id = _metadata_uuid(subscription, "profile_id")
        amount = (subscription.get("plan") or {}).get("amount")

        try:
            row = await self.subscriptions.subscribe(
                db,
                subscriber_id,
                profile_id,
                amount,
                gateway_subscription_id=gateway_id,
                gateway_customer_id=subscription.get("customer"),
                is_trial=subscription.get("status") == "trialing",
            )
        except AlreadySubscribed:
            logger.info(
                "gateway_subscription_already_active",
                gateway_subscription_id=gateway_id,
                subscriber_id=str(subscriber_id),
                profile_id=str(profile_id),
            )
            return {"status": "already_subscribed"}

        return {"subscription_id": str(row.id), "status": row.status}

    async def _find_subscription(self, db: AsyncSession, gateway_id: Optional[str]) -> Any:
        if not gateway_id:
            raise WebhookError("Event does not reference a subscription")
        row = await self.subscriptions.get_by_gateway_id(db, gateway_id)
        if row is None:
            logger.warning("gateway_subscription_unknown", gateway_subscription_id=gateway_id)
        return row

    async def handle_subscription_updated(
        self, subscription: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Handle customer.subscription.updated."""
        row = await self._find_subscription(db, subscription.get("id"))
        if row is None:
            return {"status": "unknown_subscription"}

        row = await self.subscriptions.apply_gateway_update(
            db,
            row.id,
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end", False)),
        )
        if subscription.get("status") in ("past_due", "unpaid") and row.status == "active":
            row = await self.subscriptions.mark_past_due(db, row.id)
        return {"subscription_id": str(row.id), "status": row.status}

    async def handle_subscription_deleted(
        self, subscription: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Handle customer.subscription.deleted."""
        row = await self._find_subscription(db, subscription.get("id"))
        if row is None:
            return {"status": "unknown_subscription"}
        row = await self.subscriptions.end(db, row.id, status="canceled")
        return {"subscription_id": str(row.id), "status": row.status}

    async def handle_invoice_paid(
        self, invoice: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """
        Handle invoice.payment_succeeded / invoice.paid.

        The first invoice of a subscription is already charged by
        subscription.created, so it is skipped.
        """
        if invoice.get("billing_reason") == "subscription_create":
            return {"status": "skipped", "reason": "initial invoice"}

        row = await self._find_subscription(db, invoice.get("subscription"))
        if row is None:
            return {"status": "unknown_subscription"}
        row = await self.subscriptions.renew(db, row.id, invoice.get("amount_paid") or None)
        return {
            "subscription_id": str(row.id),
            "status": row.status,
            "current_period_end": row.current_period_end.isoformat(),
        }

    async def handle_invoice_payment_failed(
        self, invoice: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Handle invoice.payment_failed."""
        row = await self._find_subscription(db, invoice.get("subscription"))
        if row is None:
            return {"status": "unknown_subscription"}
        row = await self.subscriptions.mark_past_due(db, row.id)
        return {"subscription_id": str(row.id), "status": row.status}

    async def handle_payment_intent_succeeded(
        self, payment_intent: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """
        Handle payment_intent.succeeded for one-shot charges.

        ``metadata.kind`` selects the flow: ``tip`` (sender_id, profile_id,
        optional message) or ``ppv_unlock`` (user_id, media_id).
        """
        kind = (payment_intent.get("metadata") or {}).get("kind")

        if kind == "tip":
            amount = payment_intent.get("amount")
            if not isinstance(amount, int):
                raise WebhookError("Tip payment intent has no integer amount")
            tip = await self.tips.tip(
                db,
                _metadata_uuid(payment_intent, "sender_id"),
                _metadata_uuid(payment_intent, "profile_id"),
                amount,
                (payment_intent.get("metadata") or {}).get("message"),
                gateway_payment_id=payment_intent.get("id"),
            )
            return {"kind": "tip", "tip_id": str(tip.id)}

        if kind == "ppv_unlock":
            outcome = await self.unlocks.unlock(
                db,
                _metadata_uuid(payment_intent, "user_id"),
                _metadata_uuid(payment_intent, "media_id"),
            )
            return {
                "kind": "ppv_unlock",
                "unlock_id": str(outcome.unlock.id) if outcome.unlock else None,
                "already_unlocked": outcome.already_unlocked,
            }

        logger.info(
            "payment_intent_ignored",
            payment_intent_id=payment_intent.get("id"),
            kind=kind,
        )
        return {"status": "skipped", "reason": f"unhandled kind {kind!r}"}

    async def handle_payment_intent_payment_failed(
        self, payment_intent: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Handle payment_intent.payment_failed; nothing was charged, so only log it."""
        error_message = (payment_intent.get("last_payment_error") or {}).get(
            "message", "Unknown error"
        )
        logger.warning(
            "payment_intent_failed",
            payment_intent_id=payment_intent.get("id"),
            error=error_message,
        )
        return {"payment_intent_id": payment_intent.get("id"), "error": error_message}

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
