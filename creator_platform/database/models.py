"""SQLAlchemy database models for the creator platform."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

ACCOUNT_ROLES = ("subscriber", "creator", "admin")
PROFILE_STATUSES = ("pending", "approved", "rejected")
SUBSCRIPTION_STATUSES = ("active", "canceled", "past_due", "expired")
TRANSACTION_TYPES = ("subscription", "tip", "ppv_unlock", "payout", "refund")
TRANSACTION_STATUSES = ("pending", "completed", "failed")
MEDIA_TYPES = ("photo", "video", "gif")
MODERATION_STATUSES = ("pending", "approved", "rejected", "flagged")

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current time used for column defaults."""
    return datetime.now(timezone.utc)


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Account(Base):
    """
    Platform accounts.

    Never hard-deleted; moderation flips the ban flag instead.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="subscriber")
    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ban_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    banned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (CheckConstraint(_in_list("role", ACCOUNT_ROLES), name="valid_role"),)

    def __repr__(self) -> str:
        """String representation of Account."""
        return f"<Account(id={self.id}, email={self.email}, role={self.role})>"


class CreatorProfile(Base):
    """
    Creator profile, one-to-one with a creator account.

    Earnings and counters are only ever changed through atomic SQL
    increments (see core.balances).
    """

    __tablename__ = "creator_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), unique=True, nullable=False
    )
    stage_name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False, index=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    eye_color: Mapped[str | None] = mapped_column(String(30), nullable=True)
    hair_color: Mapped[str | None] = mapped_column(String(30), nullable=True)
    ethnicity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    subscription_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    earnings_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    earnings_pending_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    subscribers_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    views_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    featured_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("subscription_price_cents > 0", name="positive_price"),
        CheckConstraint("earnings_pending_cents <= earnings_total_cents", name="pending_le_total"),
        CheckConstraint("subscribers_count >= 0", name="non_negative_subscribers"),
        CheckConstraint(_in_list("status", PROFILE_STATUSES), name="valid_profile_status"),
    )

    def __repr__(self) -> str:
        """String representation of CreatorProfile."""
        return f"<CreatorProfile(id={self.id}, slug={self.slug}, status={self.status})>"


class Subscription(Base):
    """
    Subscriber-to-creator relationship.

    At most one row per (subscriber, profile); re-subscribing updates it.
    """

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscriber_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("creator_profiles.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_trial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gateway_subscription_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    gateway_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("subscriber_id", "profile_id", name="uq_subscription_pair"),
        CheckConstraint("amount_cents > 0", name="positive_subscription_amount"),
        CheckConstraint(
            _in_list("status", SUBSCRIPTION_STATUSES), name="valid_subscription_status"
        ),
        Index("idx_subscriptions_profile_status", "profile_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Subscription."""
        return (
            f"<Subscription(id={self.id}, subscriber_id={self.subscriber_id}, "
            f"profile_id={self.profile_id}, status={self.status})>"
        )


class Transaction(Base):
    """
    Ledger entries.

    Append-only: written once with the computed fee split, never updated.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("creator_profiles.id"), nullable=True, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    creator_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="positive_transaction_amount"),
        CheckConstraint(
            "amount_cents = platform_fee_cents + creator_amount_cents", name="balanced_split"
        ),
        CheckConstraint(_in_list("type", TRANSACTION_TYPES), name="valid_transaction_type"),
        CheckConstraint(
            _in_list("status", TRANSACTION_STATUSES), name="valid_transaction_status"
        ),
        Index("idx_transactions_profile_created", "profile_id", "created_at"),
        Index("idx_transactions_reference", "reference_type", "reference_id"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, type={self.type}, "
            f"amount={self.amount_cents}, creator_amount={self.creator_amount_cents})>"
        )


class Tip(Base):
    """One-shot gift from a sender to a creator."""

    __tablename__ = "tips"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("creator_profiles.id"), nullable=False, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    gateway_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (CheckConstraint("amount_cents > 0", name="positive_tip_amount"),)

    def __repr__(self) -> str:
        """String representation of Tip."""
        return f"<Tip(id={self.id}, profile_id={self.profile_id}, amount={self.amount_cents})>"


class Media(Base):
    """Media metadata; the files themselves live elsewhere."""

    __tablename__ = "media"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("creator_profiles.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_ppv: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    moderation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )
    moderation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    moderated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    moderated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    views_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    likes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unlock_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("price_cents IS NULL OR price_cents > 0", name="positive_media_price"),
        CheckConstraint(_in_list("type", MEDIA_TYPES), name="valid_media_type"),
        CheckConstraint(
            _in_list("moderation_status", MODERATION_STATUSES), name="valid_moderation_status"
        ),
    )

    def __repr__(self) -> str:
        """String representation of Media."""
        return f"<Media(id={self.id}, profile_id={self.profile_id}, is_ppv={self.is_ppv})>"


class MediaUnlock(Base):
    """
    Pay-per-view unlock of one media item by one user.

    The (user_id, media_id) unique constraint is the double-billing guard.
    """

    __tablename__ = "media_unlocks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    media_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("media.id"), nullable=False, index=True
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (UniqueConstraint("user_id", "media_id", name="uq_media_unlock_pair"),)

    def __repr__(self) -> str:
        """String representation of MediaUnlock."""
        return f"<MediaUnlock(id={self.id}, user_id={self.user_id}, media_id={self.media_id})>"


class AuditLog(Base):
    """Admin action trail. Immutable once written."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        """String representation of AuditLog."""
        return f"<AuditLog(id={self.id}, action={self.action}, resource={self.resource_id})>"
