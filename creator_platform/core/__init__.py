"""Core monetization and platform logic."""
from .accounts import AccountService
from .balances import BalanceStore
from .cache import TTLCache
from .creators import CreatorFilters, CreatorService
from .errors import (
    AccountExists,
    AlreadySubscribed,
    AuthenticationRequired,
    InvalidAmount,
    InvalidInput,
    InvalidState,
    NotFound,
    NotPurchasable,
    PlatformError,
    Unauthorized,
)
from .fees import FeeSplit, split_fee, to_cents
from .ledger import TransactionLedger
from .media import MediaService
from .moderation import ModerationService
from .subscriptions import SubscriptionManager
from .tips import TipManager
from .unlocks import UnlockManager, UnlockResult

__all__ = [
    "AccountService",
    "BalanceStore",
    "CreatorFilters",
    "CreatorService",
    "FeeSplit",
    "MediaService",
    "ModerationService",
    "SubscriptionManager",
    "TTLCache",
    "TipManager",
    "TransactionLedger",
    "UnlockManager",
    "UnlockResult",
    "split_fee",
    "to_cents",
    "PlatformError",
    "AccountExists",
    "AlreadySubscribed",
    "AuthenticationRequired",
    "InvalidAmount",
    "InvalidInput",
    "InvalidState",
    "NotFound",
    "NotPurchasable",
    "Unauthorized",
]
