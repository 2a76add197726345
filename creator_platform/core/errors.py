"""
Error taxonomy for the monetization core.

Every error carries:
- Error code (for client handling)
- User message (safe to show to users)
- Internal message (for debugging)
- HTTP status code (for API responses)

Core managers raise these and never retry or swallow them; the API layer
renders them as ``{"success": false, "error": {...}}``. An unlock that was
already granted is not an error: see ``UnlockResult.already_unlocked``.
"""
from typing import Any, Dict, Optional


class PlatformError(Exception):
    """Base exception for all platform errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        user_message: Optional[str] = None,
        http_status: int = 500,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.user_message = user_message or "An error occurred. Please try again."
        self.http_status = http_status
        self.metadata = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.user_message,
                "type": self.__class__.__name__,
            },
        }


class AuthenticationRequired(PlatformError):
    """No known account behind the request."""

    def __init__(self, message: str = "Authentication required", **kwargs: Any):
        super().__init__(
            message=message,
            error_code="authentication_required",
            user_message="Please sign in to continue.",
            http_status=401,
            **kwargs,
        )


class Unauthorized(PlatformError):
    """Caller lacks permission for the operation."""

    def __init__(self, message: str = "Not allowed", **kwargs: Any):
        super().__init__(
            message=message,
            error_code="unauthorized",
            user_message="You are not allowed to do that.",
            http_status=403,
            **kwargs,
        )


class NotFound(PlatformError):
    """
    Referenced entity is absent or not owned by the caller.

    Ownership failures use this too, so callers cannot discover ids
    they do not own.
    """

    def __init__(self, resource: str, resource_id: Any = None, **kwargs: Any):
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            error_code="not_found",
            user_message=f"{resource} not found.",
            http_status=404,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            **kwargs,
        )


class AlreadySubscribed(PlatformError):
    """An active subscription already exists for the pair."""

    def __init__(self, subscriber_id: Any, profile_id: Any, **kwargs: Any):
        super().__init__(
            message=f"Subscriber {subscriber_id} already subscribed to {profile_id}",
            error_code="already_subscribed",
            user_message="You are already subscribed to this creator.",
            http_status=409,
            subscriber_id=str(subscriber_id),
            profile_id=str(profile_id),
            **kwargs,
        )


class NotPurchasable(PlatformError):
    """Media is not configured for pay-per-view."""

    def __init__(self, media_id: Any, **kwargs: Any):
        super().__init__(
            message=f"Media {media_id} is not available for purchase",
            error_code="not_purchasable",
            user_message="This content cannot be purchased.",
            http_status=422,
            media_id=str(media_id),
            **kwargs,
        )


class InvalidAmount(PlatformError):
    """Non-positive or otherwise unusable monetary value."""

    def __init__(self, reason: str, **kwargs: Any):
        super().__init__(
            message=f"Invalid amount: {reason}",
            error_code="invalid_amount",
            user_message=f"Invalid amount: {reason}",
            http_status=400,
            **kwargs,
        )


class AccountExists(PlatformError):
    """E-mail already registered."""

    def __init__(self, email: str, **kwargs: Any):
        super().__init__(
            message=f"Account already exists: {email}",
            error_code="account_exists",
            user_message="An account with this email already exists.",
            http_status=409,
            **kwargs,
        )


class InvalidState(PlatformError):
    """Transition not allowed from the entity's current state."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            error_code="invalid_state",
            user_message=message,
            http_status=409,
            **kwargs,
        )


class InvalidInput(PlatformError):
    """Invalid user input outside of amounts"""

    def __init__(self, field: str, reason: str, **kwargs: Any):
        super().__init__(
            message=f"Invalid input for field '{field}': {reason}",
            error_code="invalid_input",
            user_message=f"Invalid {field}: {reason}",
            http_status=400,
            field=field,
            **kwargs,
        )
