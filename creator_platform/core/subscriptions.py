"""
Subscription lifecycle manager.

Each (subscriber, creator profile) pair has at most one Subscription row;
status changes track its history. A charge (first subscribe or renewal)
is one atomic unit covering:
1. The subscription row
2. The profile's subscriber count
3. The ledger transaction
4. The creator's lifetime and pending earnings
"""
import calendar
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.balances import BalanceStore
from creator_platform.core.errors import (
    AlreadySubscribed,
    InvalidInput,
    InvalidState,
    NotFound,
)
from creator_platform.core.fees import split_fee
from creator_platform.core.ledger import TransactionLedger, record_metrics
from creator_platform.database.connection import atomic
from creator_platform.database.models import CreatorProfile, Subscription, utcnow
from creator_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Rows in these states hold a subscriber slot on the profile
COUNTED_STATUSES = ("active", "past_due")
ENDED_STATUSES = ("canceled", "expired")


def add_months(moment: datetime, months: int) -> datetime:
    """
    Calendar-month addition, clamped to the last day of the target month.

    Jan 31 + 1 month is Feb 28 (or 29), not Mar 3.
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes for timezone-aware columns
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


class SubscriptionManager:
    """
    Creates, renews, cancels and ends subscriptions.

    Every public mutation runs inside ``atomic(db)``: it commits on success
    and rolls back everything (including the initial reads) on failure.
    """

    def __init__(
        self,
        fee_percent: Optional[Decimal] = None,
        ledger: Optional[TransactionLedger] = None,
        balances: Optional[BalanceStore] = None,
    ):
        """
        Initialize subscription manager.

        Args:
            fee_percent: Platform cut (defaults to settings.platform_fee_percent)
            ledger: Optional transaction ledger
            balances: Optional balance store
        """
        self.settings = get_settings()
        self.fee_percent = (
            fee_percent if fee_percent is not None else self.settings.platform_fee_percent
        )
        self.ledger = ledger or TransactionLedger()
        self.balances = balances or BalanceStore()

    async def _find(
        self, db: AsyncSession, subscriber_id: uuid.UUID, profile_id: uuid.UUID
    ) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription).where(
                Subscription.subscriber_id == subscriber_id,
                Subscription.profile_id == profile_id,
            )
        )
        return result.scalar_one_or_none()

    async def _load(
        self, db: AsyncSession, subscription_id: uuid.UUID, for_update: bool = False
    ) -> Subscription:
        stmt = select(Subscription).where(Subscription.id == subscription_id)
        if for_update:
            stmt = stmt.with_for_update()
        subscription = (await db.execute(stmt)).scalar_one_or_none()
        if subscription is None:
            raise NotFound("Subscription", subscription_id)
        return subscription

    async def subscribe(
        self,
        db: AsyncSession,
        subscriber_id: uuid.UUID,
        profile_id: uuid.UUID,
        amount_cents: Optional[int] = None,
        *,
        gateway_subscription_id: Optional[str] = None,
        gateway_customer_id: Optional[str] = None,
        is_trial: bool = False,
    ) -> Subscription:
        """
        Start (or restart) a subscription and charge the first period.

        Args:
            db: Database session
            subscriber_id: Subscribing account
            profile_id: Creator profile
            amount_cents: Charge for the period (defaults to the profile price)
            gateway_subscription_id: Payment gateway subscription id
            gateway_customer_id: Payment gateway customer id
            is_trial: Whether the period is a trial

        Returns:
            Subscription: The active subscription row

        Raises:
            NotFound: If the profile does not exist or is not approved
            AlreadySubscribed: If the pair already has an active subscription
            InvalidAmount: If the amount is not positive
            IntegrityError: On any other constraint violation, e.g. a gateway
                subscription id already linked to another row
        """
        started = time.perf_counter()
        event = "created"

        try:
            async with atomic(db):
                profile = (
                    await db.execute(
                        select(CreatorProfile).where(
                            CreatorProfile.id == profile_id,
                            CreatorProfile.status == "approved",
                        )
                    )
                ).scalar_one_or_none()
                if profile is None:
                    raise NotFound("Creator profile", profile_id)

                amount = (
                    amount_cents if amount_cents is not None else profile.subscription_price_cents
                )
                split = split_fee(amount, self.fee_percent)

                existing = await self._find(db, subscriber_id, profile_id)
                if existing is not None and existing.status == "active":
                    raise AlreadySubscribed(subscriber_id, profile_id)
                previous_status = existing.status if existing is not None else None

                now = utcnow()
                period_end = add_months(now, 1)

                if existing is None:
                    subscription = Subscription(
                        subscriber_id=subscriber_id,
                        profile_id=profile_id,
                        status="active",
                        amount_cents=amount,
                        currency=self.ledger.currency,
                        current_period_start=now,
                        current_period_end=period_end,
                        is_trial=is_trial,
                        gateway_subscription_id=gateway_subscription_id,
                        gateway_customer_id=gateway_customer_id,
                    )
                    db.add(subscription)
                    await db.flush()
                else:
                    event = "reactivated"
                    values = dict(
                        status="active",
                        amount_cents=amount,
                        current_period_start=now,
                        current_period_end=period_end,
                        cancel_at_period_end=False,
                        canceled_at=None,
                        ended_at=None,
                        is_trial=is_trial,
                    )
                    if gateway_subscription_id is not None:
                        values["gateway_subscription_id"] = gateway_subscription_id
                    if gateway_customer_id is not None:
                        values["gateway_customer_id"] = gateway_customer_id

                    result = await db.execute(
                        update(Subscription)
                        .where(
                            Subscription.id == existing.id,
                            Subscription.status != "active",
                        )
                        .values(**values)
                    )
                    if result.rowcount == 0:
                        # Another request reactivated it after our read
                        raise AlreadySubscribed(subscriber_id, profile_id)
                    subscription = existing
                    await db.refresh(subscription)

                # Past-due rows never released their slot
                if previous_status is None or previous_status in ENDED_STATUSES:
                    await self.balances.adjust_subscribers(db, profile_id, 1)

                entry = await self.ledger.record(
                    db,
                    user_id=subscriber_id,
                    profile_id=profile_id,
                    split=split,
                    type="subscription",
                    reference_type="subscription",
                    reference_id=subscription.id,
                    description=f"Subscription to {profile.stage_name}",
                )
                await self.balances.credit_earnings(db, profile_id, split.creator_amount_cents)

        except IntegrityError as e:
            async with atomic(db):
                winner = await self._find(db, subscriber_id, profile_id)
            if winner is None or winner.status != "active":
                # Not the pair constraint, e.g. a gateway id owned by another row
                logger.error(
                    "subscription_insert_failed",
                    subscriber_id=str(subscriber_id),
                    profile_id=str(profile_id),
                    error=str(e),
                )
                raise
            logger.info(
                "subscription_insert_conflict",
                subscriber_id=str(subscriber_id),
                profile_id=str(profile_id),
            )
            raise AlreadySubscribed(subscriber_id, profile_id) from e

        record_metrics(entry)
        metrics.record_subscription_event(event)
        metrics.record_operation_duration("subscribe", time.perf_counter() - started)
        logger.info(
            "subscription_created" if event == "created" else "subscription_reactivated",
            subscription_id=str(subscription.id),
            subscriber_id=str(subscriber_id),
            profile_id=str(profile_id),
            amount_cents=split.gross_cents,
            creator_amount_cents=split.creator_amount_cents,
            period_end=subscription.current_period_end.isoformat()
            if subscription.current_period_end
            else None,
        )
        return subscription

    async def cancel(
        self, db: AsyncSession, subscription_id: uuid.UUID, requester_id: uuid.UUID
    ) -> Subscription:
        """
        Schedule a subscription to end at its period end.

        Access and counts are untouched until the period lapses.

        Raises:
            NotFound: If the subscription does not belong to the requester
            InvalidState: If the subscription has already ended
        """
        async with atomic(db):
            subscription = (
                await db.execute(
                    select(Subscription).where(
                        Subscription.id == subscription_id,
                        Subscription.subscriber_id == requester_id,
                    )
                )
            ).scalar_one_or_none()
            if subscription is None:
                raise NotFound("Subscription", subscription_id)
            if subscription.status in ENDED_STATUSES:
                raise InvalidState(f"Subscription is already {subscription.status}")

            if not subscription.cancel_at_period_end:
                subscription.cancel_at_period_end = True
                subscription.canceled_at = utcnow()
                await db.flush()

        metrics.record_subscription_event("canceled")
        logger.info(
            "subscription_cancel_scheduled",
            subscription_id=str(subscription_id),
            requester_id=str(requester_id),
        )
        return subscription

    async def is_active(
        self, db: AsyncSession, subscriber_id: uuid.UUID, profile_id: uuid.UUID
    ) -> bool:
        """True iff the pair has a row with status ``active``."""
        found = await db.scalar(
            select(Subscription.id).where(
                Subscription.subscriber_id == subscriber_id,
                Subscription.profile_id == profile_id,
                Subscription.status == "active",
            )
        )
        return found is not None

    async def renew(
        self,
        db: AsyncSession,
        subscription_id: uuid.UUID,
        amount_cents: Optional[int] = None,
    ) -> Subscription:
        """
        Charge the next billing period.

        The new period starts at the later of now and the current period
        end, so an early renewal does not shorten the paid time.

        Raises:
            NotFound: If the subscription does not exist
            InvalidState: If the subscription is not active or past due
        """
        started = time.perf_counter()

        async with atomic(db):
            subscription = await self._load(db, subscription_id, for_update=True)
            if subscription.status not in COUNTED_STATUSES:
                raise InvalidState(f"Cannot renew a {subscription.status} subscription")

            amount = amount_cents if amount_cents is not None else subscription.amount_cents
            split = split_fee(amount, self.fee_percent)

            now = utcnow()
            current_end = _as_utc(subscription.current_period_end)
            period_start = current_end if current_end and current_end > now else now

            subscription.status = "active"
            subscription.amount_cents = amount
            subscription.current_period_start = period_start
            subscription.current_period_end = add_months(period_start, 1)
            subscription.is_trial = False
            await db.flush()

            entry = await self.ledger.record(
                db,
                user_id=subscription.subscriber_id,
                profile_id=subscription.profile_id,
                split=split,
                type="subscription",
                reference_type="subscription",
                reference_id=subscription.id,
                description="Subscription renewal",
            )
            await self.balances.credit_earnings(
                db, subscription.profile_id, split.creator_amount_cents
            )

        record_metrics(entry)
        metrics.record_subscription_event("renewed")
        metrics.record_operation_duration("renew", time.perf_counter() - started)
        logger.info(
            "subscription_renewed",
            subscription_id=str(subscription_id),
            amount_cents=amount,
            period_end=subscription.current_period_end.isoformat(),
        )
        return subscription

    async def mark_past_due(self, db: AsyncSession, subscription_id: uuid.UUID) -> Subscription:
        """
        Flag a failed renewal payment.

        Raises:
            NotFound: If the subscription does not exist
            InvalidState: If the subscription has already ended
        """
        async with atomic(db):
            subscription = await self._load(db, subscription_id, for_update=True)
            if subscription.status in ENDED_STATUSES:
                raise InvalidState(f"Cannot mark a {subscription.status} subscription past due")
            if subscription.status == "active":
                subscription.status = "past_due"
                await db.flush()

        metrics.record_subscription_event("past_due")
        logger.warning("subscription_past_due", subscription_id=str(subscription_id))
        return subscription

    async def end(
        self,
        db: AsyncSession,
        subscription_id: uuid.UUID,
        status: str = "canceled",
    ) -> Subscription:
        """
        End a subscription now and release its subscriber slot.

        Ending an already-ended subscription is a no-op.

        Args:
            db: Database session
            subscription_id: Subscription to end
            status: Terminal status, ``canceled`` or ``expired``
        """
        if status not in ENDED_STATUSES:
            raise InvalidInput("status", f"must be one of {ENDED_STATUSES}")

        async with atomic(db):
            subscription = await self._load(db, subscription_id)
            now = utcnow()
            result = await db.execute(
                update(Subscription)
                .where(
                    Subscription.id == subscription_id,
                    Subscription.status.in_(COUNTED_STATUSES),
                )
                .values(status=status, ended_at=now)
            )
            ended = result.rowcount == 1
            if ended:
                await self.balances.adjust_subscribers(db, subscription.profile_id, -1)
            await db.refresh(subscription)

        if ended:
            metrics.record_subscription_event("ended")
            logger.info(
                "subscription_ended",
                subscription_id=str(subscription_id),
                status=status,
            )
        return subscription

    async def expire_lapsed(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Expire every canceled-at-period-end subscription whose period is over.

        Returns:
            int: Number of subscriptions expired
        """
        now = now or utcnow()
        expired = 0

        async with atomic(db):
            rows = (
                await db.execute(
                    select(Subscription.id, Subscription.profile_id).where(
                        Subscription.status == "active",
                        Subscription.cancel_at_period_end.is_(True),
                        Subscription.current_period_end <= now,
                    )
                )
            ).all()

            for row in rows:
                result = await db.execute(
                    update(Subscription)
                    .where(Subscription.id == row.id, Subscription.status == "active")
                    .values(status="expired", ended_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await self.balances.adjust_subscribers(db, row.profile_id, -1)
                    expired += 1

        if expired:
            for _ in range(expired):
                metrics.record_subscription_event("expired")
            logger.info("subscriptions_expired", count=expired)
        return expired

    async def apply_gateway_update(
        self,
        db: AsyncSession,
        subscription_id: uuid.UUID,
        *,
        cancel_at_period_end: bool,
    ) -> Subscription:
        """Mirror the gateway's cancel-at-period-end flag onto the row."""
        async with atomic(db):
            subscription = await self._load(db, subscription_id)
            if subscription.cancel_at_period_end != cancel_at_period_end:
                subscription.cancel_at_period_end = cancel_at_period_end
                subscription.canceled_at = utcnow() if cancel_at_period_end else None
                await db.flush()

        logger.info(
            "subscription_gateway_update_applied",
            subscription_id=str(subscription_id),
            cancel_at_period_end=cancel_at_period_end,
        )
        return subscription

    async def get(self, db: AsyncSession, subscription_id: uuid.UUID) -> Subscription:
        """Load a subscription by id."""
        return await self._load(db, subscription_id)

    async def get_by_gateway_id(
        self, db: AsyncSession, gateway_subscription_id: str
    ) -> Optional[Subscription]:
        """Find the subscription linked to a gateway subscription id."""
        result = await db.execute(
            select(Subscription).where(
                Subscription.gateway_subscription_id == gateway_subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def list_for_subscriber(
        self,
        db: AsyncSession,
        subscriber_id: uuid.UUID,
        status: Optional[str] = "active",
    ) -> List[Subscription]:
        """Subscriptions held by an account, newest first."""
        stmt = select(Subscription).where(Subscription.subscriber_id == subscriber_id)
        if status is not None:
            stmt = stmt.where(Subscription.status == status)
        stmt = stmt.order_by(Subscription.created_at.desc())
        return list((await db.execute(stmt)).scalars().all())
