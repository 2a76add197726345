"""External integrations for the creator platform."""
from .webhook_handler import WebhookError, WebhookHandler

__all__ = ["WebhookError", "WebhookHandler"]
