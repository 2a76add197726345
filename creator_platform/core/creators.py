"""
Creator profiles: onboarding, public listing and dashboard stats.

Listing and featured reads go through the TTL cache; cached values are
plain dicts so nothing tied to a session outlives it.
"""
import math
import re
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.balances import BalanceStore
from creator_platform.core.cache import TTLCache
from creator_platform.core.errors import InvalidAmount, InvalidInput, NotFound, Unauthorized
from creator_platform.core.ledger import TransactionLedger
from creator_platform.database.connection import atomic
from creator_platform.database.models import (
    Account,
    CreatorProfile,
    Media,
    Subscription,
    utcnow,
)
from creator_platform.database.retry import with_db_retry

logger = structlog.get_logger(__name__)

LISTING_CACHE_PREFIX = "creators:"

SORT_ORDERS = {
    "newest": (CreatorProfile.created_at.desc(),),
    "popular": (CreatorProfile.subscribers_count.desc(), CreatorProfile.created_at.desc()),
    "price_low": (CreatorProfile.subscription_price_cents.asc(), CreatorProfile.created_at.desc()),
    "price_high": (
        CreatorProfile.subscription_price_cents.desc(),
        CreatorProfile.created_at.desc(),
    ),
    "name": (CreatorProfile.stage_name.asc(),),
}

PROFILE_FIELDS = ("bio", "location", "eye_color", "hair_color", "ethnicity", "avatar_url")


@dataclass
class CreatorFilters:
    """Optional filters for the public creator listing."""

    search: Optional[str] = None
    eye_color: Optional[str] = None
    hair_color: Optional[str] = None
    ethnicity: Optional[str] = None
    min_price_cents: Optional[int] = None
    max_price_cents: Optional[int] = None
    featured: bool = False
    sort: str = "newest"

    def is_empty(self) -> bool:
        """True when the listing is the default, cacheable one."""
        return (
            not self.search
            and not self.eye_color
            and not self.hair_color
            and not self.ethnicity
            and self.min_price_cents is None
            and self.max_price_cents is None
            and not self.featured
            and self.sort == "newest"
        )


def slugify(value: str) -> str:
    """Lower-case, hyphen-separated slug of a stage name."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "creator"


def profile_to_dict(profile: CreatorProfile) -> Dict[str, Any]:
    """Public view of a profile."""
    return {
        "id": str(profile.id),
        "account_id": str(profile.account_id),
        "stage_name": profile.stage_name,
        "slug": profile.slug,
        "bio": profile.bio,
        "location": profile.location,
        "eye_color": profile.eye_color,
        "hair_color": profile.hair_color,
        "ethnicity": profile.ethnicity,
        "avatar_url": profile.avatar_url,
        "status": profile.status,
        "subscription_price_cents": profile.subscription_price_cents,
        "subscribers_count": profile.subscribers_count,
        "views_count": profile.views_count,
        "is_featured": profile.is_featured,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


class CreatorService:
    """Creator profile management and discovery."""

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        ledger: Optional[TransactionLedger] = None,
        balances: Optional[BalanceStore] = None,
    ):
        self.settings = get_settings()
        self.cache = cache
        self.ledger = ledger or TransactionLedger()
        self.balances = balances or BalanceStore()

    def _validate_price(self, cents: int) -> None:
        low = self.settings.min_subscription_price_cents
        high = self.settings.max_subscription_price_cents
        if cents < low or cents > high:
            raise InvalidAmount(f"subscription price must be between {low} and {high} cents")

    async def _unique_slug(self, db: AsyncSession, stage_name: str) -> str:
        base = slugify(stage_name)
        slug = base
        counter = 1
        while await db.scalar(select(CreatorProfile.id).where(CreatorProfile.slug == slug)):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    def invalidate_listings(self) -> None:
        """Drop cached listing and featured pages."""
        if self.cache is not None:
            self.cache.invalidate(LISTING_CACHE_PREFIX)

    async def upsert_profile(
        self,
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        stage_name: str,
        subscription_price_cents: Optional[int] = None,
        **fields: Optional[str],
    ) -> CreatorProfile:
        """
        Create or update the creator profile owned by an account.

        New profiles get a unique slug and start ``pending``. Updating
        keeps the slug and the moderation status.

        Args:
            db: Database session
            account_id: Owning creator account
            stage_name: Public name
            subscription_price_cents: Monthly price (validated against the configured range)
            **fields: Any of bio, location, eye_color, hair_color, ethnicity, avatar_url

        Raises:
            NotFound: If the account does not exist
            Unauthorized: If the account is not a creator
            InvalidAmount: If the price is out of range
        """
        unknown = set(fields) - set(PROFILE_FIELDS)
        if unknown:
            raise InvalidInput(sorted(unknown)[0], "unknown profile field")
        stage_name = stage_name.strip()
        if not stage_name:
            raise InvalidInput("stage_name", "must not be empty")
        if subscription_price_cents is not None:
            self._validate_price(subscription_price_cents)

        async with atomic(db):
            account = (
                await db.execute(select(Account).where(Account.id == account_id))
            ).scalar_one_or_none()
            if account is None:
                raise NotFound("Account", account_id)
            if account.role != "creator":
                raise Unauthorized("Only creator accounts can own a profile")

            profile = (
                await db.execute(
                    select(CreatorProfile).where(CreatorProfile.account_id == account_id)
                )
            ).scalar_one_or_none()

            created = profile is None
            if created:
                profile = CreatorProfile(
                    account_id=account_id,
                    stage_name=stage_name,
                    slug=await self._unique_slug(db, stage_name),
                    status="pending",
                    subscription_price_cents=subscription_price_cents
                    or self.settings.default_subscription_price_cents,
                    **fields,
                )
                db.add(profile)
            else:
                profile.stage_name = stage_name
                if subscription_price_cents is not None:
                    profile.subscription_price_cents = subscription_price_cents
                for name, value in fields.items():
                    setattr(profile, name, value)
            await db.flush()

        self.invalidate_listings()
        logger.info(
            "creator_profile_created" if created else "creator_profile_updated",
            profile_id=str(profile.id),
            account_id=str(account_id),
            slug=profile.slug,
        )
        return profile

    async def get_for_account(self, db: AsyncSession, account_id: uuid.UUID) -> CreatorProfile:
        """The profile owned by an account, in any status."""
        profile = (
            await db.execute(select(CreatorProfile).where(CreatorProfile.account_id == account_id))
        ).scalar_one_or_none()
        if profile is None:
            raise NotFound("Creator profile", account_id)
        return profile

    async def _query_listing(
        self, db: AsyncSession, filters: CreatorFilters, page: int, page_size: int
    ) -> Dict[str, Any]:
        conditions = [CreatorProfile.status == "approved"]
        if filters.search:
            conditions.append(
                or_(
                    CreatorProfile.stage_name.icontains(filters.search, autoescape=True),
                    CreatorProfile.location.icontains(filters.search, autoescape=True),
                )
            )
        if filters.eye_color:
            conditions.append(CreatorProfile.eye_color == filters.eye_color)
        if filters.hair_color:
            conditions.append(CreatorProfile.hair_color == filters.hair_color)
        if filters.ethnicity:
            conditions.append(CreatorProfile.ethnicity == filters.ethnicity)
        if filters.min_price_cents is not None:
            conditions.append(CreatorProfile.subscription_price_cents >= filters.min_price_cents)
        if filters.max_price_cents is not None:
            conditions.append(CreatorProfile.subscription_price_cents <= filters.max_price_cents)
        if filters.featured:
            conditions.append(CreatorProfile.is_featured.is_(True))

        total = await db.scalar(select(func.count(CreatorProfile.id)).where(*conditions)) or 0
        rows = (
            await db.execute(
                select(CreatorProfile)
                .where(*conditions)
                .order_by(*SORT_ORDERS[filters.sort])
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
        ).scalars().all()

        return {
            "data": [profile_to_dict(p) for p in rows],
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(total / page_size) if total else 0,
            "has_more": page * page_size < total,
        }

    async def list_creators(
        self,
        db: AsyncSession,
        filters: Optional[CreatorFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Approved creators matching the filters, one page at a time.

        Unfiltered pages are served from the cache.

        Raises:
            InvalidInput: On an unknown sort or a bad page
        """
        filters = filters or CreatorFilters()
        page_size = page_size or self.settings.default_page_size
        if filters.sort not in SORT_ORDERS:
            raise InvalidInput("sort", f"must be one of {sorted(SORT_ORDERS)}")
        if page < 1:
            raise InvalidInput("page", "must be at least 1")
        if page_size < 1 or page_size > self.settings.max_page_size:
            raise InvalidInput("page_size", f"must be between 1 and {self.settings.max_page_size}")

        async def fetch() -> Dict[str, Any]:
            return await with_db_retry(
                self._query_listing, db, filters, page, page_size, rollback_session=db
            )

        if self.cache is None or not filters.is_empty():
            return await fetch()

        key = TTLCache.make_key("creators", "list", "page", page, "size", page_size)
        return await self.cache.get_or_fetch(key, fetch, self.settings.cache_default_ttl_seconds)

    async def featured(self, db: AsyncSession, limit: int = 6) -> List[Dict[str, Any]]:
        """Featured approved creators, by featured order then popularity."""

        async def fetch() -> List[Dict[str, Any]]:
            rows = (
                await db.execute(
                    select(CreatorProfile)
                    .where(
                        CreatorProfile.status == "approved",
                        CreatorProfile.is_featured.is_(True),
                    )
                    .order_by(
                        CreatorProfile.featured_order.is_(None),
                        CreatorProfile.featured_order.asc(),
                        CreatorProfile.subscribers_count.desc(),
                    )
                    .limit(limit)
                )
            ).scalars().all()
            return [profile_to_dict(p) for p in rows]

        if self.cache is None:
            return await fetch()
        key = TTLCache.make_key("creators", "featured", limit)
        return await self.cache.get_or_fetch(key, fetch, self.settings.cache_featured_ttl_seconds)

    async def get_by_slug(self, db: AsyncSession, slug: str) -> CreatorProfile:
        """
        Public profile lookup; counts a view.

        Raises:
            NotFound: If no approved profile has this slug
        """
        async with atomic(db):
            profile = (
                await db.execute(
                    select(CreatorProfile).where(
                        CreatorProfile.slug == slug,
                        CreatorProfile.status == "approved",
                    )
                )
            ).scalar_one_or_none()
            if profile is None:
                raise NotFound("Creator profile", slug)
            await self.balances.increment_views(db, profile.id)
            await db.refresh(profile)
        return profile

    async def _query_stats(self, db: AsyncSession, profile_id: uuid.UUID) -> Dict[str, int]:
        exists = await db.scalar(select(CreatorProfile.id).where(CreatorProfile.id == profile_id))
        if exists is None:
            raise NotFound("Creator profile", profile_id)

        active_subscribers = await db.scalar(
            select(func.count(Subscription.id)).where(
                Subscription.profile_id == profile_id,
                Subscription.status == "active",
            )
        )
        media_totals = (
            await db.execute(
                select(
                    func.count(Media.id),
                    func.coalesce(func.sum(Media.views_count), 0),
                    func.coalesce(func.sum(Media.likes_count), 0),
                ).where(Media.profile_id == profile_id, Media.is_archived.is_(False))
            )
        ).one()
        recent = await self.ledger.earnings_since(
            db, profile_id, utcnow() - timedelta(days=30)
        )
        return {
            "subscriber_count": int(active_subscribers or 0),
            "media_count": int(media_totals[0]),
            "total_views": int(media_totals[1]),
            "total_likes": int(media_totals[2]),
            "recent_earnings_cents": recent,
        }

    async def stats(self, db: AsyncSession, profile_id: uuid.UUID) -> Dict[str, int]:
        """Dashboard numbers for a creator (read-only, retried on transient errors)."""
        return await with_db_retry(self._query_stats, db, profile_id, rollback_session=db)
