"""
Prometheus metrics for creator platform monitoring.

Tracks:
- Ledger transactions by type, gross amounts and platform fees
- Ledger operation duration
- PPV idempotent hits
- Subscription lifecycle events
- Listing cache hits and misses
- Database read retries
- Webhook events
"""
from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_transactions_total = Counter(
    "ledger_transactions_total",
    "Total ledger transactions recorded",
    ["type", "currency"],
)

ledger_gross_cents_total = Counter(
    "ledger_gross_cents_total",
    "Gross amount recorded in the ledger, in cents",
    ["type"],
)

platform_fee_cents_total = Counter(
    "platform_fee_cents_total",
    "Platform fees recorded in the ledger, in cents",
    ["type"],
)

ledger_amount_cents = Histogram(
    "ledger_amount_cents",
    "Gross ledger amounts in cents",
    buckets=(50, 100, 500, 1000, 2500, 5000, 10000, 50000, 100000),
)

ledger_operation_duration_seconds = Histogram(
    "ledger_operation_duration_seconds",
    "Duration of monetization operations in seconds",
    ["operation"],  # subscribe, renew, unlock, tip
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Idempotency metrics
ppv_idempotent_hits_total = Counter(
    "ppv_idempotent_hits_total",
    "PPV unlocks answered as already unlocked",
    ["source"],  # precheck, constraint
)

# Subscription metrics
subscription_events_total = Counter(
    "subscription_events_total",
    "Subscription lifecycle events",
    ["event"],  # created, reactivated, canceled, renewed, past_due, ended, expired
)

# Cache metrics
cache_requests_total = Counter(
    "cache_requests_total",
    "Listing cache lookups",
    ["result"],  # hit, miss
)

# Database metrics
database_read_retries_total = Counter(
    "database_read_retries_total",
    "Retried database reads after a transient error",
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # success, failed, duplicate, no_handler
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_transaction(
        type: str, currency: str, amount_cents: int, platform_fee_cents: int
    ) -> None:
        """Record a ledger transaction."""
        ledger_transactions_total.labels(type=type, currency=currency).inc()
        ledger_gross_cents_total.labels(type=type).inc(amount_cents)
        platform_fee_cents_total.labels(type=type).inc(platform_fee_cents)
        ledger_amount_cents.observe(amount_cents)

    @staticmethod
    def record_operation_duration(operation: str, duration_seconds: float) -> None:
        """Record monetization operation duration."""
        ledger_operation_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_ppv_idempotent_hit(source: str) -> None:
        """Record an unlock answered without charging."""
        ppv_idempotent_hits_total.labels(source=source).inc()

    @staticmethod
    def record_subscription_event(event: str) -> None:
        """Record a subscription lifecycle event."""
        subscription_events_total.labels(event=event).inc()

    @staticmethod
    def record_cache_lookup(hit: bool) -> None:
        """Record a cache hit or miss."""
        cache_requests_total.labels(result="hit" if hit else "miss").inc()

    @staticmethod
    def record_db_retry() -> None:
        """Record a retried database read."""
        database_read_retries_total.inc()

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(event_type=event_type).inc()
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )


# Export singleton instance
metrics = MetricsCollector()
