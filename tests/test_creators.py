"""
Tests for creator profiles, listings and media metadata.
"""
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.core.cache import TTLCache
from creator_platform.core.creators import CreatorFilters, CreatorService, slugify
from creator_platform.core.errors import (
    InvalidAmount,
    InvalidInput,
    NotFound,
    Unauthorized,
)
from creator_platform.core.media import MediaService
from creator_platform.core.subscriptions import SubscriptionManager
from creator_platform.core.tips import TipManager


@pytest.fixture
def service(cache: TTLCache) -> CreatorService:
    return CreatorService(cache=cache)


class TestProfiles:
    """Test suite for profile onboarding."""

    @pytest.mark.unit
    def test_slugify(self) -> None:
        assert slugify("  Luna Star!! ") == "luna-star"
        assert slugify("***") == "creator"

    @pytest.mark.asyncio
    async def test_new_profile_starts_pending(
        self, db: AsyncSession, service: CreatorService, make_account: Any
    ) -> None:
        owner = await make_account(role="creator")

        profile = await service.upsert_profile(
            db, owner.id, stage_name="Luna Star", bio="hello", eye_color="green"
        )

        assert profile.status == "pending"
        assert profile.slug == "luna-star"
        assert profile.subscription_price_cents == 999
        assert profile.eye_color == "green"

    @pytest.mark.asyncio
    async def test_update_keeps_slug(
        self, db: AsyncSession, service: CreatorService, make_account: Any
    ) -> None:
        owner = await make_account(role="creator")
        await service.upsert_profile(db, owner.id, stage_name="Luna Star")

        updated = await service.upsert_profile(
            db, owner.id, stage_name="Luna Nova", subscription_price_cents=1499
        )

        assert updated.slug == "luna-star"
        assert updated.stage_name == "Luna Nova"
        assert updated.subscription_price_cents == 1499

    @pytest.mark.asyncio
    async def test_slug_collisions_get_suffix(
        self, db: AsyncSession, service: CreatorService, make_account: Any
    ) -> None:
        first = await make_account(role="creator")
        second = await make_account(role="creator")

        a = await service.upsert_profile(db, first.id, stage_name="Luna")
        b = await service.upsert_profile(db, second.id, stage_name="Luna")

        assert a.slug == "luna"
        assert b.slug == "luna-1"

    @pytest.mark.asyncio
    async def test_subscriber_cannot_own_profile(
        self, db: AsyncSession, service: CreatorService, make_account: Any
    ) -> None:
        fan = await make_account(role="subscriber")
        fan_id = fan.id

        with pytest.raises(Unauthorized):
            await service.upsert_profile(db, fan_id, stage_name="Nope")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", [100, 10000])
    async def test_price_out_of_range(
        self, db: AsyncSession, service: CreatorService, make_account: Any, price: int
    ) -> None:
        owner = await make_account(role="creator")

        with pytest.raises(InvalidAmount):
            await service.upsert_profile(
                db, owner.id, stage_name="Luna", subscription_price_cents=price
            )

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(
        self, db: AsyncSession, service: CreatorService, make_account: Any
    ) -> None:
        owner = await make_account(role="creator")

        with pytest.raises(InvalidInput):
            await service.upsert_profile(db, owner.id, stage_name="Luna", status="approved")


class TestListing:
    """Test suite for public discovery."""

    @pytest.mark.asyncio
    async def test_only_approved_listed(
        self, db: AsyncSession, service: CreatorService, make_profile: Any
    ) -> None:
        approved = await make_profile()
        await make_profile(status="pending")
        await make_profile(status="rejected")

        page = await service.list_creators(db)

        assert page["total"] == 1
        assert page["data"][0]["id"] == str(approved.id)
        assert page["has_more"] is False

    @pytest.mark.asyncio
    async def test_filters_and_sort(
        self, db: AsyncSession, service: CreatorService, make_profile: Any
    ) -> None:
        await make_profile(stage_name="Cheap", price_cents=499, eye_color="blue")
        await make_profile(stage_name="Pricey", price_cents=4999, eye_color="blue")
        await make_profile(stage_name="Brown eyes", price_cents=999, eye_color="brown")

        blue = await service.list_creators(
            db, CreatorFilters(eye_color="blue", sort="price_high")
        )
        assert [c["stage_name"] for c in blue["data"]] == ["Pricey", "Cheap"]

        ranged = await service.list_creators(
            db, CreatorFilters(min_price_cents=900, max_price_cents=5000, sort="price_low")
        )
        assert [c["stage_name"] for c in ranged["data"]] == ["Brown eyes", "Pricey"]

        searched = await service.list_creators(db, CreatorFilters(search="pric"))
        assert [c["stage_name"] for c in searched["data"]] == ["Pricey"]

    @pytest.mark.asyncio
    async def test_pagination(
        self, db: AsyncSession, service: CreatorService, make_profile: Any
    ) -> None:
        for _ in range(5):
            await make_profile()

        page = await service.list_creators(db, page=2, page_size=2)

        assert len(page["data"]) == 2
        assert page["total"] == 5
        assert page["total_pages"] == 3
        assert page["has_more"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"filters": CreatorFilters(sort="random")},
            {"page": 0},
            {"page_size": 101},
        ],
    )
    async def test_bad_listing_arguments(
        self, db: AsyncSession, service: CreatorService, kwargs: dict
    ) -> None:
        with pytest.raises(InvalidInput):
            await service.list_creators(db, **kwargs)

    @pytest.mark.asyncio
    async def test_unfiltered_listing_is_cached_until_invalidated(
        self,
        db: AsyncSession,
        service: CreatorService,
        cache: TTLCache,
        make_profile: Any,
    ) -> None:
        """A new approval is invisible until the cache is dropped."""
        await make_profile()
        assert (await service.list_creators(db))["total"] == 1

        await make_profile()
        assert (await service.list_creators(db))["total"] == 1
        assert cache.stats()["hits"] == 1

        service.invalidate_listings()
        assert (await service.list_creators(db))["total"] == 2

    @pytest.mark.asyncio
    async def test_featured(
        self, db: AsyncSession, service: CreatorService, make_profile: Any
    ) -> None:
        second = await make_profile(is_featured=True, featured_order=2)
        first = await make_profile(is_featured=True, featured_order=1)
        await make_profile()

        featured = await service.featured(db)

        assert [c["id"] for c in featured] == [str(first.id), str(second.id)]

    @pytest.mark.asyncio
    async def test_get_by_slug_counts_view(
        self, db: AsyncSession, service: CreatorService, make_profile: Any
    ) -> None:
        profile = await make_profile()

        await service.get_by_slug(db, profile.slug)
        seen = await service.get_by_slug(db, profile.slug)

        assert seen.views_count == 2

    @pytest.mark.asyncio
    async def test_get_by_slug_hides_pending(
        self, db: AsyncSession, service: CreatorService, make_profile: Any
    ) -> None:
        profile = await make_profile(status="pending")
        slug = profile.slug

        with pytest.raises(NotFound):
            await service.get_by_slug(db, slug)

    @pytest.mark.asyncio
    async def test_stats(
        self,
        db: AsyncSession,
        service: CreatorService,
        make_account: Any,
        make_profile: Any,
        make_media: Any,
    ) -> None:
        profile = await make_profile(price_cents=1000)
        fan = await make_account()
        await make_media(profile, views_count=10, likes_count=3)
        await make_media(profile, is_ppv=False, price_cents=None, views_count=5)
        await SubscriptionManager().subscribe(db, fan.id, profile.id)
        await TipManager().tip(db, fan.id, profile.id, 500)

        stats = await service.stats(db, profile.id)

        assert stats == {
            "subscriber_count": 1,
            "media_count": 2,
            "total_views": 15,
            "total_likes": 3,
            "recent_earnings_cents": 800 + 400,
        }


class TestMedia:
    """Test suite for MediaService."""

    @pytest.mark.asyncio
    async def test_create_media_starts_pending(
        self, db: AsyncSession, make_profile: Any
    ) -> None:
        profile = await make_profile()

        media = await MediaService().create_media(
            db,
            profile.account_id,
            type="video",
            url="https://cdn.example.com/v.mp4",
            is_ppv=True,
            price_cents=1500,
        )

        assert media.moderation_status == "pending"
        assert media.profile_id == profile.id
        assert media.unlock_count == 0

    @pytest.mark.asyncio
    async def test_ppv_requires_price(self, db: AsyncSession, make_profile: Any) -> None:
        profile = await make_profile()

        with pytest.raises(InvalidAmount):
            await MediaService().create_media(
                db, profile.account_id, type="photo", url="https://x.example/p.jpg", is_ppv=True
            )

    @pytest.mark.asyncio
    async def test_update_by_non_owner_not_found(
        self, db: AsyncSession, make_profile: Any, make_media: Any
    ) -> None:
        owner = await make_profile()
        other = await make_profile()
        media = await make_media(owner)
        other_account, media_id = other.account_id, media.id

        with pytest.raises(NotFound):
            await MediaService().update_media(db, other_account, media_id, title="mine now")

    @pytest.mark.asyncio
    async def test_update_cannot_unprice_ppv(
        self, db: AsyncSession, make_profile: Any, make_media: Any
    ) -> None:
        profile = await make_profile()
        media = await make_media(profile)
        account_id, media_id = profile.account_id, media.id

        with pytest.raises(InvalidAmount):
            await MediaService().update_media(db, account_id, media_id, price_cents=None)

    @pytest.mark.asyncio
    async def test_listing_shows_approved_pinned_first(
        self, db: AsyncSession, make_profile: Any, make_media: Any
    ) -> None:
        profile = await make_profile()
        plain = await make_media(profile, is_ppv=False, price_cents=None)
        pinned = await make_media(profile, is_ppv=False, price_cents=None, is_pinned=True)
        await make_media(profile, moderation_status="pending")
        await make_media(profile, is_archived=True)

        items = await MediaService().list_for_profile(db, profile.id)

        assert [m.id for m in items] == [pinned.id, plain.id]
