"""
Creator balance store.

Every counter on CreatorProfile and Media is changed with a single
``UPDATE ... SET col = col + :n`` so concurrent credits cannot lose
updates. Nothing here commits; callers wrap these in ``atomic()``
together with the ledger append they belong to.
"""
import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.core.errors import InvalidAmount, NotFound
from creator_platform.database.models import CreatorProfile, Media

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Balances:
    """Snapshot of a creator's cumulative totals."""

    profile_id: uuid.UUID
    earnings_total_cents: int
    earnings_pending_cents: int
    subscribers_count: int


class BalanceStore:
    """Atomic increments on creator and media counters."""

    async def credit_earnings(
        self, db: AsyncSession, profile_id: uuid.UUID, cents: int
    ) -> None:
        """
        Credit a creator's lifetime and pending earnings together.

        Args:
            db: Database session
            profile_id: Creator profile
            cents: Creator share to credit

        Raises:
            InvalidAmount: If cents is negative
            NotFound: If the profile does not exist
        """
        if cents < 0:
            raise InvalidAmount("earnings credit cannot be negative")

        result = await db.execute(
            update(CreatorProfile)
            .where(CreatorProfile.id == profile_id)
            .values(
                earnings_total_cents=CreatorProfile.earnings_total_cents + cents,
                earnings_pending_cents=CreatorProfile.earnings_pending_cents + cents,
            )
        )
        if result.rowcount == 0:
            raise NotFound("Creator profile", profile_id)

    async def adjust_subscribers(
        self, db: AsyncSession, profile_id: uuid.UUID, delta: int
    ) -> bool:
        """
        Add ``delta`` to a profile's subscriber count.

        Decrements only apply while the count stays non-negative.

        Returns:
            bool: False if a decrement was refused at zero
        """
        stmt = update(CreatorProfile).where(CreatorProfile.id == profile_id)
        if delta < 0:
            stmt = stmt.where(CreatorProfile.subscribers_count + delta >= 0)
        result = await db.execute(
            stmt.values(subscribers_count=CreatorProfile.subscribers_count + delta)
        )
        if result.rowcount == 0:
            exists = await db.scalar(
                select(CreatorProfile.id).where(CreatorProfile.id == profile_id)
            )
            if exists is None:
                raise NotFound("Creator profile", profile_id)
            logger.warning(
                "subscriber_count_underflow_refused",
                profile_id=str(profile_id),
                delta=delta,
            )
            return False
        return True

    async def increment_unlock_count(self, db: AsyncSession, media_id: uuid.UUID) -> None:
        """Bump a media item's unlock counter by one."""
        result = await db.execute(
            update(Media)
            .where(Media.id == media_id)
            .values(unlock_count=Media.unlock_count + 1)
        )
        if result.rowcount == 0:
            raise NotFound("Media", media_id)

    async def increment_views(self, db: AsyncSession, profile_id: uuid.UUID) -> None:
        """Bump a profile's view counter by one."""
        await db.execute(
            update(CreatorProfile)
            .where(CreatorProfile.id == profile_id)
            .values(views_count=CreatorProfile.views_count + 1)
        )

    async def get_balances(self, db: AsyncSession, profile_id: uuid.UUID) -> Balances:
        """
        Read a creator's current totals.

        Raises:
            NotFound: If the profile does not exist
        """
        row = (
            await db.execute(
                select(
                    CreatorProfile.earnings_total_cents,
                    CreatorProfile.earnings_pending_cents,
                    CreatorProfile.subscribers_count,
                ).where(CreatorProfile.id == profile_id)
            )
        ).one_or_none()
        if row is None:
            raise NotFound("Creator profile", profile_id)
        return Balances(
            profile_id=profile_id,
            earnings_total_cents=row.earnings_total_cents,
            earnings_pending_cents=row.earnings_pending_cents,
            subscribers_count=row.subscribers_count,
        )
