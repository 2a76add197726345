"""
FastAPI dependencies: caller identity and lifespan-scoped services.

The identity layer in front of this API is trusted: it forwards the
authenticated account id in the configured identity header.
"""
import uuid

import structlog
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creator_platform.config import get_settings
from creator_platform.core.cache import TTLCache
from creator_platform.core.creators import CreatorService
from creator_platform.core.errors import AuthenticationRequired, Unauthorized
from creator_platform.core.moderation import ModerationService
from creator_platform.database.connection import get_db
from creator_platform.database.models import Account
from creator_platform.integrations.webhook_handler import WebhookHandler
from creator_platform.monitoring.health import HealthCheck
from creator_platform.monitoring.logging import bind_account

logger = structlog.get_logger(__name__)


def get_cache(request: Request) -> TTLCache:
    """The application's listing cache."""
    return request.app.state.cache


def get_webhook_handler(request: Request) -> WebhookHandler:
    """The application's webhook handler."""
    return request.app.state.webhook_handler


def get_health_check(request: Request) -> HealthCheck:
    """The application's health checker."""
    return request.app.state.health_check


def get_creator_service(cache: TTLCache = Depends(get_cache)) -> CreatorService:
    """Creator service bound to the shared cache."""
    return CreatorService(cache=cache)


def get_moderation_service(cache: TTLCache = Depends(get_cache)) -> ModerationService:
    """Moderation service bound to the shared cache."""
    return ModerationService(cache=cache)


async def get_current_account(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Account:
    """
    Resolve the calling account from the identity header.

    Raises:
        AuthenticationRequired: If the header is missing, malformed or unknown
        Unauthorized: If the account is banned
    """
    header = get_settings().identity_header
    raw = request.headers.get(header)
    if not raw:
        raise AuthenticationRequired(f"Missing {header} header")
    try:
        account_id = uuid.UUID(raw)
    except ValueError as e:
        raise AuthenticationRequired(f"Malformed {header} header") from e

    account = (
        await db.execute(select(Account).where(Account.id == account_id))
    ).scalar_one_or_none()
    if account is None:
        raise AuthenticationRequired("Unknown account")
    if account.is_banned:
        logger.warning("banned_account_request", account_id=str(account_id))
        raise Unauthorized("Account is banned")

    bind_account(account_id)
    return account
