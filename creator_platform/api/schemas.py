"""
Pydantic schemas for API request/response models.

Every successful response carries ``success: true``; failures are rendered
from ``PlatformError.to_dict()`` as ``{"success": false, "error": {...}}``.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ORMResponse(BaseModel):
    """Base for responses built from ORM rows."""

    model_config = ConfigDict(from_attributes=True)

    success: bool = Field(default=True, description="Always true for successful calls")


# Accounts


class RegisterRequest(BaseModel):
    """Request schema for account registration."""

    email: str = Field(..., max_length=255, description="Login e-mail")
    password: str = Field(..., min_length=8, max_length=72, description="Password (8+ chars)")
    name: Optional[str] = Field(default=None, max_length=255, description="Display name")
    role: Literal["subscriber", "creator"] = Field(default="subscriber")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "email": "fan@example.com",
                    "password": "correct horse battery",
                    "name": "Fan",
                    "role": "subscriber",
                }
            ]
        }
    }


class LoginRequest(BaseModel):
    """Request schema for password login."""

    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=72)


class AccountResponse(ORMResponse):
    """Response schema for an account."""

    id: UUID
    email: str
    name: Optional[str] = None
    role: str
    is_banned: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None


# Creator profiles


class ProfileUpsertRequest(BaseModel):
    """Request schema for creating or editing the caller's creator profile."""

    stage_name: str = Field(..., min_length=1, max_length=100)
    subscription_price_cents: Optional[int] = Field(
        default=None, gt=0, description="Monthly price in cents"
    )
    bio: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=100)
    eye_color: Optional[str] = Field(default=None, max_length=30)
    hair_color: Optional[str] = Field(default=None, max_length=30)
    ethnicity: Optional[str] = Field(default=None, max_length=50)
    avatar_url: Optional[str] = Field(default=None, max_length=500)


class ProfileResponse(ORMResponse):
    """Response schema for a creator profile."""

    id: UUID
    account_id: UUID
    stage_name: str
    slug: str
    bio: Optional[str] = None
    location: Optional[str] = None
    eye_color: Optional[str] = None
    hair_color: Optional[str] = None
    ethnicity: Optional[str] = None
    avatar_url: Optional[str] = None
    status: str
    subscription_price_cents: int
    subscribers_count: int
    views_count: int
    is_featured: bool


class CreatorListResponse(BaseModel):
    """Paged creator listing."""

    success: bool = True
    data: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool


class CreatorStatsResponse(BaseModel):
    """Creator dashboard numbers."""

    success: bool = True
    subscriber_count: int
    media_count: int
    total_views: int
    total_likes: int
    recent_earnings_cents: int


class BalancesResponse(BaseModel):
    """Creator earnings and subscriber totals."""

    success: bool = True
    profile_id: UUID
    earnings_total_cents: int
    earnings_pending_cents: int
    subscribers_count: int


# Ledger


class TransactionResponse(ORMResponse):
    """Response schema for a ledger entry."""

    id: UUID
    user_id: UUID
    profile_id: Optional[UUID] = None
    amount_cents: int
    platform_fee_cents: int
    creator_amount_cents: int
    currency: str
    type: str
    status: str
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    """A page of ledger entries."""

    success: bool = True
    data: List[TransactionResponse]


# Subscriptions


class SubscribeRequest(BaseModel):
    """Request schema for subscribing to a creator."""

    profile_id: UUID = Field(..., description="Creator profile to subscribe to")
    amount_cents: Optional[int] = Field(
        default=None, gt=0, description="Charge override (defaults to the profile price)"
    )


class SubscriptionResponse(ORMResponse):
    """Response schema for a subscription."""

    id: UUID
    subscriber_id: UUID
    profile_id: UUID
    status: str
    amount_cents: int
    currency: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class SubscriptionListResponse(BaseModel):
    """Subscriptions held by the caller."""

    success: bool = True
    data: List[SubscriptionResponse]


class SubscriptionStatusResponse(BaseModel):
    """Whether the caller has an active subscription to a creator."""

    success: bool = True
    profile_id: UUID
    is_active: bool


# Tips


class TipRequest(BaseModel):
    """Request schema for tipping a creator."""

    profile_id: UUID
    amount_cents: int = Field(..., gt=0, description="Tip amount in cents")
    message: Optional[str] = Field(default=None, max_length=500)
    is_private: bool = False


class TipResponse(ORMResponse):
    """Response schema for a tip."""

    id: UUID
    sender_id: UUID
    profile_id: UUID
    amount_cents: int
    currency: str
    message: Optional[str] = None
    is_private: bool
    created_at: datetime


# Media


class MediaCreateRequest(BaseModel):
    """Request schema for registering media metadata."""

    type: Literal["photo", "video", "gif"]
    url: str = Field(..., max_length=500)
    thumbnail_url: Optional[str] = Field(default=None, max_length=500)
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    is_premium: bool = False
    is_ppv: bool = False
    price_cents: Optional[int] = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an absolute http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return v


class MediaUpdateRequest(BaseModel):
    """Request schema for editing media; only provided fields change."""

    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    thumbnail_url: Optional[str] = Field(default=None, max_length=500)
    is_premium: Optional[bool] = None
    is_ppv: Optional[bool] = None
    price_cents: Optional[int] = Field(default=None, gt=0)
    is_pinned: Optional[bool] = None
    is_archived: Optional[bool] = None


class MediaResponse(ORMResponse):
    """Response schema for a media item."""

    id: UUID
    profile_id: UUID
    type: str
    url: str
    thumbnail_url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    is_premium: bool
    is_ppv: bool
    price_cents: Optional[int] = None
    is_pinned: bool
    moderation_status: str
    unlock_count: int


class MediaListResponse(BaseModel):
    """A page of media items."""

    success: bool = True
    data: List[MediaResponse]
    total: Optional[int] = None


class UnlockResponse(BaseModel):
    """Outcome of a PPV unlock."""

    success: bool = True
    already_unlocked: bool
    unlock_id: Optional[UUID] = None
    media_id: UUID
    transaction_id: Optional[UUID] = None


# Admin


class RejectRequest(BaseModel):
    """Request schema for rejecting a creator."""

    reason: Optional[str] = Field(default=None, max_length=500)


class BanRequest(BaseModel):
    """Request schema for banning an account."""

    reason: str = Field(..., min_length=1, max_length=500)


class ModerateMediaRequest(BaseModel):
    """Request schema for a media moderation decision."""

    status: Literal["approved", "rejected", "flagged"]
    notes: Optional[str] = None


class AccountListResponse(BaseModel):
    """A page of accounts."""

    success: bool = True
    data: List[AccountResponse]
    total: int
    page: int
    page_size: int


class AuditLogResponse(ORMResponse):
    """Response schema for an audit log entry."""

    id: UUID
    actor_id: UUID
    action: str
    resource_type: str
    resource_id: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    """Recent admin actions."""

    success: bool = True
    data: List[AuditLogResponse]


class AdminStatsResponse(BaseModel):
    """Admin dashboard counts."""

    success: bool = True
    total_accounts: int
    total_creators: int
    pending_creators: int
    pending_media: int
    flagged_media: int


class ExpireResponse(BaseModel):
    """Result of expiring lapsed subscriptions."""

    success: bool = True
    expired: int


# Webhooks and monitoring


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="success, duplicate or no_handler")
    event_id: str = Field(..., description="Gateway event ID")
    event_type: Optional[str] = Field(default=None, description="Event type")
    message: Optional[str] = Field(default=None, description="Processing message")
    result: Optional[Dict[str, Any]] = Field(default=None, description="Handler result")


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
