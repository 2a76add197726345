"""
Structured logging for the creator platform.

structlog renders every event as one JSON line on stdout. Request and
caller context is bound through contextvars by the API layer, so events
logged deep in the monetization core still carry ``request_id`` and
``account_id``.
"""
import logging
import sys
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

import structlog
from pythonjsonlogger.json import JsonFormatter

from creator_platform.config import get_settings

# Never written to the log stream, wherever they appear in an event
REDACTED_KEYS = frozenset({"password", "password_hash", "authorization", "cookie"})
REDACTED = "[redacted]"

# Chatty third-party loggers and the level they are held at
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp events with the service name and environment."""
    settings = get_settings()
    event_dict.setdefault("app_name", settings.app_name)
    event_dict.setdefault("app_env", settings.app_env)
    return event_dict


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask credentials and auth headers, including inside nested dicts."""

    def scrub(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: REDACTED if str(k).lower() in REDACTED_KEYS else scrub(v)
                for k, v in value.items()
            }
        return value

    return scrub(event_dict)


def normalize_values(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Render ids, money and timestamps as strings.

    Decimals stay exact (fee percentages), UUIDs and datetimes become their
    canonical text form instead of a repr.
    """
    for key, value in event_dict.items():
        if isinstance(value, (uuid.UUID, Decimal)):
            event_dict[key] = str(value)
        elif isinstance(value, datetime):
            event_dict[key] = value.isoformat()
    return event_dict


def bind_request_context(request_id: str, method: str, path: str) -> None:
    """Start a fresh logging context for an incoming request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)


def bind_account(account_id: Any) -> None:
    """Attach the authenticated caller to every later event of the request."""
    structlog.contextvars.bind_contextvars(account_id=str(account_id))


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def build_processors(render_json: bool = True) -> List[Any]:
    """Processor chain for structlog; JSON rendering last unless disabled."""
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_app_context,
        redact_secrets,
        normalize_values,
    ]
    if render_json:
        processors.append(structlog.processors.JSONRenderer())
    return processors


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Override for settings.log_level
    """
    settings = get_settings()
    log_level = (level or settings.log_level).upper()

    structlog.configure(
        processors=build_processors(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stdlib records from libraries get the same JSON shape as structlog events
    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(json_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=log_level,
        app_env=settings.app_env,
        echo_sql=settings.database_echo,
    )
