"""
Pay-per-view unlock manager.

An unlock charges at most once per (user, media) pair. The lookup before
charging only saves work; the unique constraint on media_unlocks is what
guarantees it. A concurrent insert that loses the race rolls back the
whole unit and is answered as "already unlocked".
"""
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.balances import BalanceStore
from creator_platform.core.errors import NotFound, NotPurchasable
from creator_platform.core.fees import split_fee
from creator_platform.core.ledger import TransactionLedger, record_metrics
from creator_platform.database.connection import atomic
from creator_platform.database.models import Media, MediaUnlock, Transaction
from creator_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class UnlockResult:
    """Outcome of an unlock request."""

    success: bool
    already_unlocked: bool
    unlock: Optional[MediaUnlock]
    transaction: Optional[Transaction] = None


class UnlockManager:
    """Grants one-time access to priced media."""

    def __init__(
        self,
        fee_percent: Optional[Decimal] = None,
        ledger: Optional[TransactionLedger] = None,
        balances: Optional[BalanceStore] = None,
    ):
        settings = get_settings()
        self.fee_percent = (
            fee_percent if fee_percent is not None else settings.platform_fee_percent
        )
        self.ledger = ledger or TransactionLedger()
        self.balances = balances or BalanceStore()

    async def _find_unlock(
        self, db: AsyncSession, user_id: uuid.UUID, media_id: uuid.UUID
    ) -> Optional[MediaUnlock]:
        result = await db.execute(
            select(MediaUnlock).where(
                MediaUnlock.user_id == user_id,
                MediaUnlock.media_id == media_id,
            )
        )
        return result.scalar_one_or_none()

    async def unlock(
        self, db: AsyncSession, user_id: uuid.UUID, media_id: uuid.UUID
    ) -> UnlockResult:
        """
        Unlock a PPV media item for a user.

        Flow:
        1. Load media, reject if it is not priced PPV
        2. Return the existing unlock if there is one (no writes)
        3. Insert the unlock, append a ppv_unlock transaction, bump the
           media's unlock count and credit the creator, as one unit

        Args:
            db: Database session
            user_id: Buying account
            media_id: Media item

        Returns:
            UnlockResult: ``already_unlocked`` is True when nothing was charged

        Raises:
            NotFound: If the media does not exist
            NotPurchasable: If the media is not PPV or has no price
        """
        started = time.perf_counter()

        try:
            async with atomic(db):
                media = (
                    await db.execute(select(Media).where(Media.id == media_id))
                ).scalar_one_or_none()
                if media is None:
                    raise NotFound("Media", media_id)
                if not media.is_ppv or media.price_cents is None:
                    raise NotPurchasable(media_id)

                existing = await self._find_unlock(db, user_id, media_id)
                if existing is not None:
                    metrics.record_ppv_idempotent_hit("precheck")
                    logger.info(
                        "ppv_unlock_idempotent_hit",
                        user_id=str(user_id),
                        media_id=str(media_id),
                        source="precheck",
                    )
                    return UnlockResult(success=True, already_unlocked=True, unlock=existing)

                split = split_fee(media.price_cents, self.fee_percent)

                unlock = MediaUnlock(
                    user_id=user_id,
                    media_id=media_id,
                    amount_cents=split.gross_cents,
                )
                db.add(unlock)
                await db.flush()

                entry = await self.ledger.record(
                    db,
                    user_id=user_id,
                    profile_id=media.profile_id,
                    split=split,
                    type="ppv_unlock",
                    reference_type="media_unlock",
                    reference_id=unlock.id,
                    description=f"Unlock of {media.title or media.id}",
                )
                await self.balances.increment_unlock_count(db, media_id)
                await self.balances.credit_earnings(
                    db, media.profile_id, split.creator_amount_cents
                )

        except IntegrityError:
            async with atomic(db):
                existing = (
                    await db.execute(
                        select(MediaUnlock).where(
                            MediaUnlock.user_id == user_id,
                            MediaUnlock.media_id == media_id,
                        )
                    )
                ).scalar_one_or_none()
            if existing is None:
                # Not the pair constraint; nothing to report as idempotent
                raise
            metrics.record_ppv_idempotent_hit("constraint")
            logger.info(
                "ppv_unlock_idempotent_hit",
                user_id=str(user_id),
                media_id=str(media_id),
                source="constraint",
            )
            return UnlockResult(success=True, already_unlocked=True, unlock=existing)

        record_metrics(entry)
        metrics.record_operation_duration("unlock", time.perf_counter() - started)
        logger.info(
            "ppv_unlock_created",
            unlock_id=str(unlock.id),
            user_id=str(user_id),
            media_id=str(media_id),
            amount_cents=split.gross_cents,
            creator_amount_cents=split.creator_amount_cents,
        )
        return UnlockResult(
            success=True, already_unlocked=False, unlock=unlock, transaction=entry
        )

    async def is_unlocked(
        self, db: AsyncSession, user_id: uuid.UUID, media_id: uuid.UUID
    ) -> bool:
        """Existence check only."""
        return await self._find_unlock(db, user_id, media_id) is not None
