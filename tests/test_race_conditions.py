"""
Race condition tests for concurrent monetization requests.

Each task uses its own session, as separate API requests would, against
the same database file.
"""
import asyncio
from typing import Any, List

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creator_platform.core.balances import BalanceStore
from creator_platform.core.errors import AlreadySubscribed
from creator_platform.core.subscriptions import SubscriptionManager
from creator_platform.core.tips import TipManager
from creator_platform.core.unlocks import UnlockManager
from creator_platform.database.models import Media, MediaUnlock, Subscription, Transaction

CONCURRENCY = 10


async def fresh_count(session_factory: async_sessionmaker[AsyncSession], stmt: Any) -> int:
    async with session_factory() as session:
        return int(await session.scalar(stmt) or 0)


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_unlocks_charge_once(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        make_account: Any,
        make_profile: Any,
        make_media: Any,
    ) -> None:
        """
        Concurrent unlocks of the same media by the same user.

        Exactly one unlock, one transaction and one unlock_count increment;
        every caller is told it succeeded.
        """
        buyer = await make_account()
        profile = await make_profile()
        media = await make_media(profile, price_cents=500)
        buyer_id, media_id, profile_id = buyer.id, media.id, profile.id
        await db.close()

        manager = UnlockManager()

        async def attempt() -> Any:
            async with session_factory() as session:
                return await manager.unlock(session, buyer_id, media_id)

        results = await asyncio.gather(*[attempt() for _ in range(CONCURRENCY)])

        assert all(r.success for r in results)
        assert sum(1 for r in results if not r.already_unlocked) == 1
        assert len({r.unlock.id for r in results}) == 1

        assert await fresh_count(session_factory, select(func.count(MediaUnlock.id))) == 1
        assert await fresh_count(session_factory, select(func.count(Transaction.id))) == 1
        assert (
            await fresh_count(
                session_factory, select(Media.unlock_count).where(Media.id == media_id)
            )
            == 1
        )
        async with session_factory() as session:
            balances = await BalanceStore().get_balances(session, profile_id)
        assert balances.earnings_total_cents == 400

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_subscribes_same_pair(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        make_account: Any,
        make_profile: Any,
    ) -> None:
        """Only one of many simultaneous subscribes is charged."""
        fan = await make_account()
        profile = await make_profile()
        fan_id, profile_id = fan.id, profile.id
        await db.close()

        manager = SubscriptionManager()

        async def attempt() -> Any:
            async with session_factory() as session:
                return await manager.subscribe(session, fan_id, profile_id)

        results = await asyncio.gather(
            *[attempt() for _ in range(CONCURRENCY)], return_exceptions=True
        )

        created = [r for r in results if isinstance(r, Subscription)]
        rejected = [r for r in results if isinstance(r, AlreadySubscribed)]
        assert len(created) == 1
        assert len(rejected) == CONCURRENCY - 1

        assert await fresh_count(session_factory, select(func.count(Subscription.id))) == 1
        assert await fresh_count(session_factory, select(func.count(Transaction.id))) == 1
        async with session_factory() as session:
            balances = await BalanceStore().get_balances(session, profile_id)
        assert balances.subscribers_count == 1
        assert balances.earnings_total_cents == 1599

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_subscribers_all_counted(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        make_account: Any,
        make_profile: Any,
    ) -> None:
        """Different fans subscribing at once never lose a count increment."""
        fan_ids = [(await make_account()).id for _ in range(CONCURRENCY)]
        profile = await make_profile(price_cents=1000)
        profile_id = profile.id
        await db.close()

        manager = SubscriptionManager()

        async def attempt(fan_id: Any) -> Subscription:
            async with session_factory() as session:
                return await manager.subscribe(session, fan_id, profile_id)

        await asyncio.gather(*[attempt(fan_id) for fan_id in fan_ids])

        async with session_factory() as session:
            balances = await BalanceStore().get_balances(session, profile_id)
        assert balances.subscribers_count == CONCURRENCY
        assert balances.earnings_total_cents == CONCURRENCY * 800
        assert balances.earnings_pending_cents == CONCURRENCY * 800

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_tips_no_lost_credit(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        make_account: Any,
        make_profile: Any,
    ) -> None:
        """Simultaneous tips all land, and earnings equal the ledger sum."""
        fan = await make_account()
        profile = await make_profile()
        fan_id, profile_id = fan.id, profile.id
        await db.close()

        manager = TipManager()
        amounts: List[int] = [100 + i for i in range(CONCURRENCY)]

        async def attempt(amount: int) -> Any:
            async with session_factory() as session:
                return await manager.tip(session, fan_id, profile_id, amount)

        await asyncio.gather(*[attempt(a) for a in amounts])

        ledger_sum = await fresh_count(
            session_factory,
            select(func.sum(Transaction.creator_amount_cents)).where(
                Transaction.profile_id == profile_id
            ),
        )
        async with session_factory() as session:
            balances = await BalanceStore().get_balances(session, profile_id)
        assert await fresh_count(session_factory, select(func.count(Transaction.id))) == CONCURRENCY
        assert balances.earnings_total_cents == ledger_sum

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_end_decrements_once(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        make_account: Any,
        make_profile: Any,
    ) -> None:
        """Ending the same subscription from many requests releases one slot."""
        fan = await make_account()
        profile = await make_profile()
        manager = SubscriptionManager()
        subscription = await manager.subscribe(db, fan.id, profile.id)
        subscription_id, profile_id = subscription.id, profile.id
        await db.close()

        async def attempt() -> Subscription:
            async with session_factory() as session:
                return await manager.end(session, subscription_id)

        await asyncio.gather(*[attempt() for _ in range(CONCURRENCY)])

        async with session_factory() as session:
            balances = await BalanceStore().get_balances(session, profile_id)
        assert balances.subscribers_count == 0
