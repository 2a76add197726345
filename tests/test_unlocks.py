"""
Tests for pay-per-view unlocks.
"""
import uuid
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.core.balances import BalanceStore
from creator_platform.core.errors import NotFound, NotPurchasable
from creator_platform.core.unlocks import UnlockManager
from creator_platform.database.models import Media, MediaUnlock, Transaction


@pytest.fixture
def manager() -> UnlockManager:
    return UnlockManager()


async def totals(db: AsyncSession) -> tuple:
    unlocks = await db.scalar(select(func.count(MediaUnlock.id)))
    entries = await db.scalar(select(func.count(Transaction.id)))
    return int(unlocks or 0), int(entries or 0)


class TestUnlock:
    """Test suite for UnlockManager.unlock."""

    @pytest.mark.asyncio
    async def test_first_unlock_charges(
        self,
        db: AsyncSession,
        manager: UnlockManager,
        make_account: Any,
        make_profile: Any,
        make_media: Any,
    ) -> None:
        """The first unlock records the purchase, the charge and the counters."""
        buyer = await make_account()
        profile = await make_profile()
        media = await make_media(profile, price_cents=500)

        result = await manager.unlock(db, buyer.id, media.id)

        assert result.success is True
        assert result.already_unlocked is False
        assert result.unlock.amount_cents == 500
        assert result.transaction.type == "ppv_unlock"
        assert result.transaction.reference_id == result.unlock.id
        assert result.transaction.platform_fee_cents == 100
        assert result.transaction.creator_amount_cents == 400
        assert await totals(db) == (1, 1)

        unlock_count = await db.scalar(select(Media.unlock_count).where(Media.id == media.id))
        assert unlock_count == 1
        balances = await BalanceStore().get_balances(db, profile.id)
        assert balances.earnings_total_cents == 400
        assert await manager.is_unlocked(db, buyer.id, media.id)

    @pytest.mark.asyncio
    async def test_repeat_unlock_is_free(
        self,
        db: AsyncSession,
        manager: UnlockManager,
        make_account: Any,
        make_profile: Any,
        make_media: Any,
    ) -> None:
        """A second unlock returns the existing grant without charging."""
        buyer = await make_account()
        profile = await make_profile()
        media = await make_media(profile)

        first = await manager.unlock(db, buyer.id, media.id)
        second = await manager.unlock(db, buyer.id, media.id)

        assert second.success is True
        assert second.already_unlocked is True
        assert second.unlock.id == first.unlock.id
        assert second.transaction is None
        assert await totals(db) == (1, 1)

    @pytest.mark.asyncio
    async def test_constraint_conflict_reports_existing_unlock(
        self,
        db: AsyncSession,
        manager: UnlockManager,
        make_account: Any,
        make_profile: Any,
        make_media: Any,
        mocker: Any,
    ) -> None:
        """
        When the pre-check misses a concurrent unlock, the unique pair
        constraint catches it and the caller still gets already_unlocked.
        """
        buyer = await make_account()
        profile = await make_profile()
        media = await make_media(profile)
        buyer_id, media_id, profile_id = buyer.id, media.id, profile.id
        await manager.unlock(db, buyer_id, media_id)

        mocker.patch.object(manager, "_find_unlock", return_value=None)
        result = await manager.unlock(db, buyer_id, media_id)

        assert result.already_unlocked is True
        assert result.unlock is not None
        assert await totals(db) == (1, 1)
        balances = await BalanceStore().get_balances(db, profile_id)
        assert balances.earnings_total_cents == 400
        unlock_count = await db.scalar(select(Media.unlock_count).where(Media.id == media_id))
        assert unlock_count == 1

    @pytest.mark.asyncio
    async def test_non_ppv_media_not_purchasable(
        self,
        db: AsyncSession,
        manager: UnlockManager,
        make_account: Any,
        make_profile: Any,
        make_media: Any,
    ) -> None:
        buyer = await make_account()
        profile = await make_profile()
        media = await make_media(profile, is_ppv=False, price_cents=None)
        buyer_id, media_id = buyer.id, media.id

        with pytest.raises(NotPurchasable) as exc_info:
            await manager.unlock(db, buyer_id, media_id)

        assert exc_info.value.http_status == 422
        assert await totals(db) == (0, 0)

    @pytest.mark.asyncio
    async def test_unpriced_ppv_not_purchasable(
        self,
        db: AsyncSession,
        manager: UnlockManager,
        make_account: Any,
        make_profile: Any,
        make_media: Any,
    ) -> None:
        buyer = await make_account()
        profile = await make_profile()
        media = await make_media(profile, is_ppv=True, price_cents=None)
        buyer_id, media_id = buyer.id, media.id

        with pytest.raises(NotPurchasable):
            await manager.unlock(db, buyer_id, media_id)

    @pytest.mark.asyncio
    async def test_missing_media_not_found(
        self, db: AsyncSession, manager: UnlockManager, make_account: Any
    ) -> None:
        buyer = await make_account()
        buyer_id = buyer.id

        with pytest.raises(NotFound):
            await manager.unlock(db, buyer_id, uuid.uuid4())

        assert await totals(db) == (0, 0)

    @pytest.mark.asyncio
    async def test_failed_credit_rolls_back_unlock(
        self,
        db: AsyncSession,
        manager: UnlockManager,
        make_account: Any,
        make_profile: Any,
        make_media: Any,
        mocker: Any,
    ) -> None:
        """The unlock, its charge and the unlock count land together or not at all."""
        buyer = await make_account()
        profile = await make_profile()
        media = await make_media(profile, price_cents=500)
        buyer_id, media_id, profile_id = buyer.id, media.id, profile.id
        mocker.patch.object(
            manager.balances, "credit_earnings", side_effect=RuntimeError("db down")
        )

        with pytest.raises(RuntimeError):
            await manager.unlock(db, buyer_id, media_id)

        assert await totals(db) == (0, 0)
        assert await db.scalar(select(Media.unlock_count).where(Media.id == media_id)) == 0
        balances = await BalanceStore().get_balances(db, profile_id)
        assert balances.earnings_total_cents == 0
        assert not await manager.is_unlocked(db, buyer_id, media_id)
