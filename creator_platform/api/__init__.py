"""FastAPI application and routes."""
from .main import app
from .schemas import (
    SubscribeRequest,
    SubscriptionResponse,
    TipRequest,
    TipResponse,
    UnlockResponse,
)

__all__ = [
    "app",
    "SubscribeRequest",
    "SubscriptionResponse",
    "TipRequest",
    "TipResponse",
    "UnlockResponse",
]
