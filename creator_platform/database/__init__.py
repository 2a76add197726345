"""Database package for the creator platform."""
from .connection import atomic, get_db, init_db
from .models import (
    Account,
    AuditLog,
    Base,
    CreatorProfile,
    Media,
    MediaUnlock,
    Subscription,
    Tip,
    Transaction,
)

__all__ = [
    "Base",
    "Account",
    "AuditLog",
    "CreatorProfile",
    "Media",
    "MediaUnlock",
    "Subscription",
    "Tip",
    "Transaction",
    "atomic",
    "get_db",
    "init_db",
]
