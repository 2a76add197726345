"""Media metadata owned by creator profiles."""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.core.errors import InvalidAmount, InvalidInput, NotFound
from creator_platform.database.connection import atomic
from creator_platform.database.models import MEDIA_TYPES, CreatorProfile, Media

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = (
    "title",
    "description",
    "thumbnail_url",
    "is_premium",
    "is_ppv",
    "price_cents",
    "is_pinned",
    "is_archived",
)


def media_to_dict(media: Media) -> Dict[str, Any]:
    """API view of a media item."""
    return {
        "id": str(media.id),
        "profile_id": str(media.profile_id),
        "type": media.type,
        "url": media.url,
        "thumbnail_url": media.thumbnail_url,
        "title": media.title,
        "description": media.description,
        "is_premium": media.is_premium,
        "is_ppv": media.is_ppv,
        "price_cents": media.price_cents,
        "is_pinned": media.is_pinned,
        "moderation_status": media.moderation_status,
        "unlock_count": media.unlock_count,
        "views_count": media.views_count,
        "likes_count": media.likes_count,
    }


def _check_pricing(is_ppv: bool, price_cents: Optional[int]) -> None:
    if price_cents is not None and price_cents <= 0:
        raise InvalidAmount("price must be positive")
    if is_ppv and price_cents is None:
        raise InvalidAmount("pay-per-view media needs a price")


class MediaService:
    """Creates and lists media items."""

    async def _owned_profile(self, db: AsyncSession, account_id: uuid.UUID) -> CreatorProfile:
        profile = (
            await db.execute(select(CreatorProfile).where(CreatorProfile.account_id == account_id))
        ).scalar_one_or_none()
        if profile is None:
            raise NotFound("Creator profile", account_id)
        return profile

    async def create_media(
        self,
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        type: str,
        url: str,
        thumbnail_url: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        is_premium: bool = False,
        is_ppv: bool = False,
        price_cents: Optional[int] = None,
    ) -> Media:
        """
        Register a media item for the caller's profile.

        New items wait in the moderation queue.

        Raises:
            NotFound: If the caller has no creator profile
            InvalidAmount: If a PPV item has no positive price
            InvalidInput: On an unknown media type
        """
        if type not in MEDIA_TYPES:
            raise InvalidInput("type", f"must be one of {MEDIA_TYPES}")
        _check_pricing(is_ppv, price_cents)

        async with atomic(db):
            profile = await self._owned_profile(db, account_id)
            media = Media(
                profile_id=profile.id,
                type=type,
                url=url,
                thumbnail_url=thumbnail_url,
                title=title,
                description=description,
                is_premium=is_premium,
                is_ppv=is_ppv,
                price_cents=price_cents,
                moderation_status="pending",
            )
            db.add(media)
            await db.flush()

        logger.info(
            "media_created",
            media_id=str(media.id),
            profile_id=str(media.profile_id),
            is_ppv=is_ppv,
            price_cents=price_cents,
        )
        return media

    async def update_media(
        self,
        db: AsyncSession,
        account_id: uuid.UUID,
        media_id: uuid.UUID,
        **changes: Any,
    ) -> Media:
        """
        Edit a media item owned by the caller.

        Raises:
            NotFound: If the item does not exist or belongs to someone else
            InvalidAmount: If the change would leave a PPV item without a price
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidInput(sorted(unknown)[0], "field cannot be edited")

        async with atomic(db):
            profile = await self._owned_profile(db, account_id)
            media = (
                await db.execute(
                    select(Media).where(Media.id == media_id, Media.profile_id == profile.id)
                )
            ).scalar_one_or_none()
            if media is None:
                raise NotFound("Media", media_id)

            _check_pricing(
                changes.get("is_ppv", media.is_ppv),
                changes.get("price_cents", media.price_cents),
            )
            for name, value in changes.items():
                setattr(media, name, value)
            await db.flush()

        logger.info("media_updated", media_id=str(media_id), fields=sorted(changes))
        return media

    async def get(self, db: AsyncSession, media_id: uuid.UUID) -> Media:
        """Load a media item by id."""
        media = (
            await db.execute(select(Media).where(Media.id == media_id))
        ).scalar_one_or_none()
        if media is None:
            raise NotFound("Media", media_id)
        return media

    async def list_for_profile(
        self,
        db: AsyncSession,
        profile_id: uuid.UUID,
        *,
        type: Optional[str] = None,
        is_premium: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Media]:
        """Approved, non-archived media of a profile; pinned first, then newest."""
        stmt = select(Media).where(
            Media.profile_id == profile_id,
            Media.moderation_status == "approved",
            Media.is_archived.is_(False),
        )
        if type is not None:
            stmt = stmt.where(Media.type == type)
        if is_premium is not None:
            stmt = stmt.where(Media.is_premium.is_(is_premium))
        stmt = (
            stmt.order_by(Media.is_pinned.desc(), Media.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list((await db.execute(stmt)).scalars().all())
