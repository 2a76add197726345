"""
Moderation and admin tooling.

Every operation requires an admin actor. Every mutation writes its audit
log row in the same transaction as the change itself.
"""
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.core.cache import TTLCache
from creator_platform.core.creators import LISTING_CACHE_PREFIX
from creator_platform.core.errors import InvalidInput, InvalidState, NotFound, Unauthorized
from creator_platform.database.connection import atomic
from creator_platform.database.models import (
    Account,
    AuditLog,
    CreatorProfile,
    Media,
    utcnow,
)

logger = structlog.get_logger(__name__)

MEDIA_DECISIONS = ("approved", "rejected", "flagged")


def require_admin(actor: Account) -> None:
    """
    Raise unless the actor is an active admin.

    Raises:
        Unauthorized: If the actor is not an admin or is banned
    """
    if actor.role != "admin" or actor.is_banned:
        logger.warning("admin_action_refused", actor_id=str(actor.id), role=actor.role)
        raise Unauthorized("Admin access required")


class ModerationService:
    """Creator approval, bans, media moderation and admin reporting."""

    def __init__(self, cache: Optional[TTLCache] = None):
        self.cache = cache

    def _invalidate_listings(self) -> None:
        if self.cache is not None:
            self.cache.invalidate(LISTING_CACHE_PREFIX)

    @staticmethod
    def _audit(
        db: AsyncSession,
        actor: Account,
        action: str,
        resource_type: str,
        resource_id: uuid.UUID,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        db.add(
            AuditLog(
                actor_id=actor.id,
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id),
                details=details,
            )
        )

    async def _load_profile(self, db: AsyncSession, profile_id: uuid.UUID) -> CreatorProfile:
        profile = (
            await db.execute(select(CreatorProfile).where(CreatorProfile.id == profile_id))
        ).scalar_one_or_none()
        if profile is None:
            raise NotFound("Creator profile", profile_id)
        return profile

    async def _load_account(self, db: AsyncSession, account_id: uuid.UUID) -> Account:
        account = (
            await db.execute(select(Account).where(Account.id == account_id))
        ).scalar_one_or_none()
        if account is None:
            raise NotFound("Account", account_id)
        return account

    async def approve_creator(
        self, db: AsyncSession, actor: Account, profile_id: uuid.UUID
    ) -> CreatorProfile:
        """
        Publish a pending or previously rejected creator profile.

        Raises:
            Unauthorized: If the actor is not an admin
            NotFound: If the profile does not exist
            InvalidState: If the profile is already approved
        """
        require_admin(actor)
        async with atomic(db):
            profile = await self._load_profile(db, profile_id)
            if profile.status == "approved":
                raise InvalidState("Profile is already approved")

            profile.status = "approved"
            profile.approved_at = utcnow()
            profile.approved_by = actor.id
            profile.rejection_reason = None
            self._audit(db, actor, "creator_approved", "profile", profile_id)
            await db.flush()

        self._invalidate_listings()
        logger.info("creator_approved", profile_id=str(profile_id), admin_id=str(actor.id))
        return profile

    async def reject_creator(
        self,
        db: AsyncSession,
        actor: Account,
        profile_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> CreatorProfile:
        """Reject (or unpublish) a creator profile."""
        require_admin(actor)
        reason = reason or "Rejected by admin"
        async with atomic(db):
            profile = await self._load_profile(db, profile_id)
            if profile.status == "rejected":
                raise InvalidState("Profile is already rejected")

            profile.status = "rejected"
            profile.rejected_at = utcnow()
            profile.rejected_by = actor.id
            profile.rejection_reason = reason
            self._audit(db, actor, "creator_rejected", "profile", profile_id, {"reason": reason})
            await db.flush()

        self._invalidate_listings()
        logger.info("creator_rejected", profile_id=str(profile_id), admin_id=str(actor.id))
        return profile

    async def ban_account(
        self,
        db: AsyncSession,
        actor: Account,
        account_id: uuid.UUID,
        reason: str,
    ) -> Account:
        """
        Ban an account. Rows are kept; only the flag changes.

        Raises:
            InvalidState: When banning oneself, another admin, or a banned account
        """
        require_admin(actor)
        if not reason or not reason.strip():
            raise InvalidInput("reason", "a ban needs a reason")
        if account_id == actor.id:
            raise InvalidState("Admins cannot ban themselves")

        async with atomic(db):
            account = await self._load_account(db, account_id)
            if account.role == "admin":
                raise InvalidState("Admin accounts cannot be banned")
            if account.is_banned:
                raise InvalidState("Account is already banned")

            account.is_banned = True
            account.ban_reason = reason
            account.banned_at = utcnow()
            self._audit(db, actor, "account_banned", "account", account_id, {"reason": reason})
            await db.flush()

        logger.warning("account_banned", account_id=str(account_id), admin_id=str(actor.id))
        return account

    async def unban_account(
        self, db: AsyncSession, actor: Account, account_id: uuid.UUID
    ) -> Account:
        """Lift a ban."""
        require_admin(actor)
        async with atomic(db):
            account = await self._load_account(db, account_id)
            if not account.is_banned:
                raise InvalidState("Account is not banned")

            account.is_banned = False
            account.ban_reason = None
            account.banned_at = None
            self._audit(db, actor, "account_unbanned", "account", account_id)
            await db.flush()

        logger.info("account_unbanned", account_id=str(account_id), admin_id=str(actor.id))
        return account

    async def moderate_media(
        self,
        db: AsyncSession,
        actor: Account,
        media_id: uuid.UUID,
        status: str,
        notes: Optional[str] = None,
    ) -> Media:
        """Record a moderation decision on a media item."""
        require_admin(actor)
        if status not in MEDIA_DECISIONS:
            raise InvalidInput("status", f"must be one of {MEDIA_DECISIONS}")

        async with atomic(db):
            media = (
                await db.execute(select(Media).where(Media.id == media_id))
            ).scalar_one_or_none()
            if media is None:
                raise NotFound("Media", media_id)

            media.moderation_status = status
            media.moderation_notes = notes
            media.moderated_by = actor.id
            media.moderated_at = utcnow()
            self._audit(db, actor, f"media_{status}", "media", media_id, {"notes": notes})
            await db.flush()

        logger.info(
            "media_moderated", media_id=str(media_id), status=status, admin_id=str(actor.id)
        )
        return media

    async def pending_creators(self, db: AsyncSession, actor: Account) -> List[CreatorProfile]:
        """Profiles awaiting review, oldest first."""
        require_admin(actor)
        result = await db.execute(
            select(CreatorProfile)
            .where(CreatorProfile.status == "pending")
            .order_by(CreatorProfile.created_at.asc())
        )
        return list(result.scalars().all())

    async def pending_media(
        self, db: AsyncSession, actor: Account, limit: int = 20, offset: int = 0
    ) -> Dict[str, Any]:
        """Media awaiting review, oldest first, with the queue size."""
        require_admin(actor)
        rows = (
            await db.execute(
                select(Media)
                .where(Media.moderation_status == "pending")
                .order_by(Media.created_at.asc())
                .limit(limit)
                .offset(offset)
            )
        ).scalars().all()
        total = await db.scalar(
            select(func.count(Media.id)).where(Media.moderation_status == "pending")
        )
        return {"data": list(rows), "total": int(total or 0)}

    async def flagged_media(
        self, db: AsyncSession, actor: Account, limit: int = 20, offset: int = 0
    ) -> List[Media]:
        """Flagged media, most recently moderated first."""
        require_admin(actor)
        result = await db.execute(
            select(Media)
            .where(Media.moderation_status == "flagged")
            .order_by(Media.moderated_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def admin_stats(self, db: AsyncSession, actor: Account) -> Dict[str, int]:
        """Headline counts for the admin dashboard."""
        require_admin(actor)

        async def count(model: Any, *conditions: Any) -> int:
            return int(await db.scalar(select(func.count(model.id)).where(*conditions)) or 0)

        return {
            "total_accounts": await count(Account),
            "total_creators": await count(CreatorProfile, CreatorProfile.status == "approved"),
            "pending_creators": await count(CreatorProfile, CreatorProfile.status == "pending"),
            "pending_media": await count(Media, Media.moderation_status == "pending"),
            "flagged_media": await count(Media, Media.moderation_status == "flagged"),
        }

    async def list_accounts(
        self, db: AsyncSession, actor: Account, page: int = 1, page_size: int = 20
    ) -> Dict[str, Any]:
        """All accounts, newest first."""
        require_admin(actor)
        if page < 1:
            raise InvalidInput("page", "must be at least 1")
        rows = (
            await db.execute(
                select(Account)
                .order_by(Account.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
        ).scalars().all()
        total = await db.scalar(select(func.count(Account.id)))
        return {"data": list(rows), "total": int(total or 0), "page": page, "page_size": page_size}

    async def recent_audit_logs(
        self, db: AsyncSession, actor: Account, limit: int = 10
    ) -> List[AuditLog]:
        """Latest admin actions."""
        require_admin(actor)
        result = await db.execute(
            select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
