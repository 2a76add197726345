"""
Retry wrapper for flaky database reads.

Connection-level failures (dropped pool connections, a restarting
database, a locked SQLite file) are retried with exponential backoff and
jitter. Anything else propagates on the first attempt. Ledger writes must
not go through here: a retried charge could be applied twice.
"""
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from creator_platform.config import get_settings
from creator_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def is_transient_db_error(exc: BaseException) -> bool:
    """
    Classify a database exception for retry.

    Args:
        exc: Raised exception

    Returns:
        bool: True if retrying may succeed
    """
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated)
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    metrics.record_db_retry()
    logger.warning(
        "db_read_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


async def with_db_retry(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: Optional[int] = None,
    initial_delay: Optional[float] = None,
    rollback_session: Optional[AsyncSession] = None,
    **kwargs: Any,
) -> T:
    """
    Await ``fn(*args, **kwargs)``, retrying transient database errors.

    Args:
        fn: Async callable performing a read
        max_attempts: Override for settings.db_retry_max_attempts
        initial_delay: Override for settings.db_retry_initial_delay
        rollback_session: Session to roll back after a failed attempt, so the
            next attempt does not run inside an aborted transaction

    Returns:
        Whatever ``fn`` returns

    Raises:
        The last exception once attempts are exhausted, or any
        non-transient exception immediately.
    """
    settings = get_settings()
    attempts = max_attempts or settings.db_retry_max_attempts
    delay = settings.db_retry_initial_delay if initial_delay is None else initial_delay

    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_db_error),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(multiplier=delay, jitter=delay * 0.1),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            try:
                return await fn(*args, **kwargs)
            except Exception:
                if rollback_session is not None:
                    await rollback_session.rollback()
                raise

    raise RuntimeError("unreachable")  # pragma: no cover
