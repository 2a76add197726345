"""Creator monetization platform: ledger-backed subscriptions, tips and PPV unlocks."""

__version__ = "1.0.0"
