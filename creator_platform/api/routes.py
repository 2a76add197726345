"""
API routes for the creator platform.

Core errors propagate as PlatformError and are rendered by the handler
installed in ``api.main``.
"""
import json
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.core.accounts import AccountService
from creator_platform.core.balances import BalanceStore
from creator_platform.core.creators import CreatorFilters, CreatorService
from creator_platform.core.errors import AuthenticationRequired
from creator_platform.core.ledger import TransactionLedger
from creator_platform.core.media import MediaService
from creator_platform.core.moderation import ModerationService, require_admin
from creator_platform.core.subscriptions import SubscriptionManager
from creator_platform.core.tips import TipManager
from creator_platform.core.unlocks import UnlockManager
from creator_platform.database.connection import get_db
from creator_platform.database.models import Account
from creator_platform.integrations.webhook_handler import WebhookError, WebhookHandler
from creator_platform.monitoring.health import HealthCheck

from .dependencies import (
    get_creator_service,
    get_current_account,
    get_health_check,
    get_moderation_service,
    get_webhook_handler,
)
from .schemas import (
    AccountListResponse,
    AccountResponse,
    AdminStatsResponse,
    AuditLogListResponse,
    BalancesResponse,
    BanRequest,
    CreatorListResponse,
    CreatorStatsResponse,
    ExpireResponse,
    HealthCheckResponse,
    LoginRequest,
    MediaCreateRequest,
    MediaListResponse,
    MediaResponse,
    MediaUpdateRequest,
    ModerateMediaRequest,
    ProfileResponse,
    ProfileUpsertRequest,
    RegisterRequest,
    RejectRequest,
    SubscribeRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
    TipRequest,
    TipResponse,
    TransactionListResponse,
    UnlockResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
account_router = APIRouter(prefix="/accounts", tags=["accounts"])
creator_router = APIRouter(prefix="/creators", tags=["creators"])
subscription_router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
tip_router = APIRouter(prefix="/tips", tags=["tips"])
media_router = APIRouter(prefix="/media", tags=["media"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
monitoring_router = APIRouter(tags=["monitoring"])

# Stateless services
account_service = AccountService()
balance_store = BalanceStore()
ledger = TransactionLedger()
media_service = MediaService()
subscription_manager = SubscriptionManager()
tip_manager = TipManager()
unlock_manager = UnlockManager()


# Accounts


@account_router.post(
    "/register",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an account",
)
async def register(request: RegisterRequest, db: AsyncSession = Depends(get_db)) -> Any:
    """Create a subscriber or creator account."""
    account = await account_service.register(
        db, request.email, request.password, name=request.name, role=request.role
    )
    return AccountResponse.model_validate(account)


@account_router.post("/login", response_model=AccountResponse, summary="Check credentials")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)) -> Any:
    """Verify an e-mail and password; session issuance happens upstream."""
    account = await account_service.authenticate(db, request.email, request.password)
    if account is None:
        raise AuthenticationRequired("Invalid email or password")
    return AccountResponse.model_validate(account)


@account_router.get("/me", response_model=AccountResponse, summary="Current account")
async def me(account: Account = Depends(get_current_account)) -> Any:
    """Return the calling account."""
    return AccountResponse.model_validate(account)


@account_router.get(
    "/me/transactions",
    response_model=TransactionListResponse,
    summary="Caller's payments",
)
async def my_transactions(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Ledger entries paid by the caller."""
    rows = await ledger.list_for_user(db, account.id, limit=limit, offset=offset)
    return {"success": True, "data": rows}


# Creators


@creator_router.get("", response_model=CreatorListResponse, summary="List creators")
async def list_creators(
    search: Optional[str] = None,
    eye_color: Optional[str] = None,
    hair_color: Optional[str] = None,
    ethnicity: Optional[str] = None,
    min_price_cents: Optional[int] = Query(default=None, ge=0),
    max_price_cents: Optional[int] = Query(default=None, ge=0),
    featured: bool = False,
    sort: str = "newest",
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Dict[str, Any]:
    """Approved creators, filtered, sorted and paged."""
    filters = CreatorFilters(
        search=search,
        eye_color=eye_color,
        hair_color=hair_color,
        ethnicity=ethnicity,
        min_price_cents=min_price_cents,
        max_price_cents=max_price_cents,
        featured=featured,
        sort=sort,
    )
    result = await creators.list_creators(db, filters, page=page, page_size=page_size)
    return {"success": True, **result}


@creator_router.get("/featured", summary="Featured creators")
async def featured_creators(
    limit: int = Query(default=6, ge=1, le=24),
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Dict[str, Any]:
    """Featured approved creators."""
    return {"success": True, "data": await creators.featured(db, limit=limit)}


@creator_router.put("/me", response_model=ProfileResponse, summary="Create or edit my profile")
async def upsert_my_profile(
    request: ProfileUpsertRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Any:
    """Create or update the caller's creator profile."""
    fields = request.model_dump(
        exclude={"stage_name", "subscription_price_cents"}, exclude_unset=True
    )
    profile = await creators.upsert_profile(
        db,
        account.id,
        stage_name=request.stage_name,
        subscription_price_cents=request.subscription_price_cents,
        **fields,
    )
    return ProfileResponse.model_validate(profile)


@creator_router.get("/me", response_model=ProfileResponse, summary="My profile")
async def my_profile(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Any:
    """The caller's profile in any moderation status."""
    return ProfileResponse.model_validate(await creators.get_for_account(db, account.id))


@creator_router.get("/me/stats", response_model=CreatorStatsResponse, summary="My stats")
async def my_stats(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Dict[str, Any]:
    """Dashboard numbers for the caller's profile."""
    profile = await creators.get_for_account(db, account.id)
    return {"success": True, **await creators.stats(db, profile.id)}


@creator_router.get("/me/balances", response_model=BalancesResponse, summary="My earnings")
async def my_balances(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Dict[str, Any]:
    """Lifetime and pending earnings of the caller's profile."""
    profile = await creators.get_for_account(db, account.id)
    balances = await balance_store.get_balances(db, profile.id)
    return {
        "success": True,
        "profile_id": balances.profile_id,
        "earnings_total_cents": balances.earnings_total_cents,
        "earnings_pending_cents": balances.earnings_pending_cents,
        "subscribers_count": balances.subscribers_count,
    }


@creator_router.get(
    "/me/transactions", response_model=TransactionListResponse, summary="My earnings ledger"
)
async def my_earnings_ledger(
    type: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Dict[str, Any]:
    """Ledger entries credited to the caller's profile."""
    profile = await creators.get_for_account(db, account.id)
    rows = await ledger.list_for_profile(db, profile.id, limit=limit, offset=offset, type=type)
    return {"success": True, "data": rows}


@creator_router.get("/{slug}", response_model=ProfileResponse, summary="Creator by slug")
async def get_creator(
    slug: str,
    db: AsyncSession = Depends(get_db),
    creators: CreatorService = Depends(get_creator_service),
) -> Any:
    """Public profile; counts a view."""
    return ProfileResponse.model_validate(await creators.get_by_slug(db, slug))


# Subscriptions


@subscription_router.post(
    "",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Subscribe to a creator",
)
async def subscribe(
    request: SubscribeRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Start or restart a subscription and charge the first period."""
    logger.info(
        "api_subscribe_request",
        subscriber_id=str(account.id),
        profile_id=str(request.profile_id),
    )
    subscription = await subscription_manager.subscribe(
        db, account.id, request.profile_id, request.amount_cents
    )
    return SubscriptionResponse.model_validate(subscription)


@subscription_router.get("", response_model=SubscriptionListResponse, summary="My subscriptions")
async def my_subscriptions(
    status_filter: Optional[str] = Query(default="active", alias="status"),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Subscriptions held by the caller (``status=all`` for every state)."""
    wanted = None if status_filter == "all" else status_filter
    rows = await subscription_manager.list_for_subscriber(db, account.id, status=wanted)
    return {"success": True, "data": rows}


@subscription_router.get(
    "/status/{profile_id}",
    response_model=SubscriptionStatusResponse,
    summary="Am I subscribed?",
)
async def subscription_status(
    profile_id: UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Whether the caller has an active subscription to the profile."""
    active = await subscription_manager.is_active(db, account.id, profile_id)
    return {"success": True, "profile_id": profile_id, "is_active": active}


@subscription_router.post(
    "/{subscription_id}/cancel",
    response_model=SubscriptionResponse,
    summary="Cancel at period end",
)
async def cancel_subscription(
    subscription_id: UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Schedule the caller's subscription to end at the period end."""
    subscription = await subscription_manager.cancel(db, subscription_id, account.id)
    return SubscriptionResponse.model_validate(subscription)


# Tips


@tip_router.post(
    "",
    response_model=TipResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Tip a creator",
)
async def send_tip(
    request: TipRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Send a tip; every call is a separate charge."""
    tip = await tip_manager.tip(
        db,
        account.id,
        request.profile_id,
        request.amount_cents,
        request.message,
        is_private=request.is_private,
    )
    return TipResponse.model_validate(tip)


# Media


@media_router.post(
    "",
    response_model=MediaResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register media",
)
async def create_media(
    request: MediaCreateRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Register media metadata for the caller's profile."""
    media = await media_service.create_media(db, account.id, **request.model_dump())
    return MediaResponse.model_validate(media)


@media_router.get(
    "/profile/{profile_id}", response_model=MediaListResponse, summary="A creator's media"
)
async def list_profile_media(
    profile_id: UUID,
    type: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Approved media of a profile, pinned first."""
    rows = await media_service.list_for_profile(
        db, profile_id, type=type, limit=limit, offset=offset
    )
    return {"success": True, "data": rows}


@media_router.get("/{media_id}", response_model=MediaResponse, summary="Media item")
async def get_media(media_id: UUID, db: AsyncSession = Depends(get_db)) -> Any:
    """Load a media item."""
    return MediaResponse.model_validate(await media_service.get(db, media_id))


@media_router.patch("/{media_id}", response_model=MediaResponse, summary="Edit media")
async def update_media(
    media_id: UUID,
    request: MediaUpdateRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Edit the caller's media item."""
    media = await media_service.update_media(
        db, account.id, media_id, **request.model_dump(exclude_unset=True)
    )
    return MediaResponse.model_validate(media)


@media_router.post(
    "/{media_id}/unlock", response_model=UnlockResponse, summary="Unlock PPV media"
)
async def unlock_media(
    media_id: UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Buy one-time access; repeated calls are not charged again."""
    outcome = await unlock_manager.unlock(db, account.id, media_id)
    return {
        "success": outcome.success,
        "already_unlocked": outcome.already_unlocked,
        "unlock_id": outcome.unlock.id if outcome.unlock else None,
        "media_id": media_id,
        "transaction_id": outcome.transaction.id if outcome.transaction else None,
    }


# Admin


@admin_router.get("/stats", response_model=AdminStatsResponse, summary="Dashboard counts")
async def admin_stats(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Dict[str, Any]:
    """Headline counts."""
    return {"success": True, **await moderation.admin_stats(db, account)}


@admin_router.get("/creators/pending", summary="Profiles awaiting review")
async def pending_creators(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Dict[str, Any]:
    """Pending creator profiles, oldest first."""
    rows = await moderation.pending_creators(db, account)
    return {"success": True, "data": [ProfileResponse.model_validate(p) for p in rows]}


@admin_router.post(
    "/creators/{profile_id}/approve", response_model=ProfileResponse, summary="Approve creator"
)
async def approve_creator(
    profile_id: UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Any:
    """Publish a creator profile."""
    return ProfileResponse.model_validate(
        await moderation.approve_creator(db, account, profile_id)
    )


@admin_router.post(
    "/creators/{profile_id}/reject", response_model=ProfileResponse, summary="Reject creator"
)
async def reject_creator(
    profile_id: UUID,
    request: RejectRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Any:
    """Reject a creator profile."""
    return ProfileResponse.model_validate(
        await moderation.reject_creator(db, account, profile_id, request.reason)
    )


@admin_router.get("/accounts", response_model=AccountListResponse, summary="All accounts")
async def list_accounts(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Dict[str, Any]:
    """Accounts, newest first."""
    return {"success": True, **await moderation.list_accounts(db, account, page, page_size)}


@admin_router.post(
    "/accounts/{account_id}/ban", response_model=AccountResponse, summary="Ban account"
)
async def ban_account(
    account_id: UUID,
    request: BanRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Any:
    """Ban an account."""
    return AccountResponse.model_validate(
        await moderation.ban_account(db, account, account_id, request.reason)
    )


@admin_router.post(
    "/accounts/{account_id}/unban", response_model=AccountResponse, summary="Unban account"
)
async def unban_account(
    account_id: UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Any:
    """Lift a ban."""
    return AccountResponse.model_validate(
        await moderation.unban_account(db, account, account_id)
    )


@admin_router.get("/media/pending", response_model=MediaListResponse, summary="Media queue")
async def pending_media(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Dict[str, Any]:
    """Media awaiting review."""
    return {"success": True, **await moderation.pending_media(db, account, limit, offset)}


@admin_router.get("/media/flagged", response_model=MediaListResponse, summary="Flagged media")
async def flagged_media(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Dict[str, Any]:
    """Flagged media."""
    rows = await moderation.flagged_media(db, account, limit, offset)
    return {"success": True, "data": rows}


@admin_router.post(
    "/media/{media_id}/moderate", response_model=MediaResponse, summary="Moderate media"
)
async def moderate_media(
    media_id: UUID,
    request: ModerateMediaRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Any:
    """Approve, reject or flag a media item."""
    return MediaResponse.model_validate(
        await moderation.moderate_media(db, account, media_id, request.status, request.notes)
    )


@admin_router.get("/audit-logs", response_model=AuditLogListResponse, summary="Audit trail")
async def audit_logs(
    limit: int = Query(default=10, ge=1, le=100),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    moderation: ModerationService = Depends(get_moderation_service),
) -> Dict[str, Any]:
    """Latest admin actions."""
    return {"success": True, "data": await moderation.recent_audit_logs(db, account, limit)}


@admin_router.post(
    "/subscriptions/expire", response_model=ExpireResponse, summary="Expire lapsed"
)
async def expire_subscriptions(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Expire subscriptions canceled at period end whose period is over."""
    require_admin(account)
    return {"success": True, "expired": await subscription_manager.expire_lapsed(db)}


# Webhooks


@webhook_router.post(
    "/payments",
    response_model=WebhookResponse,
    summary="Payment gateway webhook endpoint",
    description="Receive authenticated gateway events",
)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    """
    Handle payment gateway events.

    Deduplicates by event id before touching the ledger.
    """
    try:
        event = json.loads(await request.body())
    except json.JSONDecodeError as e:
        logger.warning("api_webhook_invalid_json", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Event must be an object")

    logger.info("api_webhook_received", event_id=event.get("id"), event_type=event.get("type"))
    try:
        return await handler.process_event(event, db)
    except WebhookError as e:
        logger.error("api_webhook_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# Monitoring


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
    description="Kubernetes liveness check endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness check endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
    description="Kubernetes readiness check endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness check endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
