"""
Tests for structured logging processors and request context binding.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator

import pytest
import structlog

from creator_platform.monitoring.logging import (
    REDACTED,
    bind_account,
    bind_request_context,
    build_processors,
    clear_request_context,
    normalize_values,
    redact_secrets,
    setup_logging,
)


@pytest.fixture(autouse=True)
def clean_context() -> Iterator[None]:
    clear_request_context()
    yield
    clear_request_context()


class TestRedactSecrets:
    """Test suite for redact_secrets."""

    @pytest.mark.unit
    def test_masks_top_level_credentials(self) -> None:
        event = redact_secrets(
            None, "info", {"event": "signup", "email": "a@example.com", "password": "hunter2"}
        )

        assert event["password"] == REDACTED
        assert event["email"] == "a@example.com"
        assert event["event"] == "signup"

    @pytest.mark.unit
    def test_masks_nested_headers(self) -> None:
        event = redact_secrets(
            None,
            "info",
            {"event": "request", "headers": {"Authorization": "Bearer abc", "Accept": "*/*"}},
        )

        assert event["headers"]["Authorization"] == REDACTED
        assert event["headers"]["Accept"] == "*/*"


class TestNormalizeValues:
    """Test suite for normalize_values."""

    @pytest.mark.unit
    def test_ids_money_and_timestamps_become_text(self) -> None:
        account_id = uuid.uuid4()
        at = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        event = normalize_values(
            None,
            "info",
            {"account_id": account_id, "fee": Decimal("20.00"), "at": at, "amount_cents": 1999},
        )

        assert event["account_id"] == str(account_id)
        assert event["fee"] == "20.00"
        assert event["at"] == "2024-01-02T03:04:05+00:00"
        assert event["amount_cents"] == 1999


class TestRequestContext:
    """Test suite for request and caller context helpers."""

    @pytest.mark.unit
    def test_request_and_account_are_bound(self) -> None:
        account_id = uuid.uuid4()

        bind_request_context("req-1", "POST", "/tips")
        bind_account(account_id)

        context = structlog.contextvars.get_contextvars()
        assert context["request_id"] == "req-1"
        assert context["method"] == "POST"
        assert context["path"] == "/tips"
        assert context["account_id"] == str(account_id)

    @pytest.mark.unit
    def test_new_request_drops_previous_caller(self) -> None:
        bind_request_context("req-1", "GET", "/feed")
        bind_account(uuid.uuid4())

        bind_request_context("req-2", "GET", "/health")

        context = structlog.contextvars.get_contextvars()
        assert context["request_id"] == "req-2"
        assert "account_id" not in context

    @pytest.mark.unit
    def test_clear_removes_everything(self) -> None:
        bind_request_context("req-1", "GET", "/feed")

        clear_request_context()

        assert structlog.contextvars.get_contextvars() == {}


class TestSetup:
    """Test suite for processor chain and logger setup."""

    @pytest.mark.unit
    def test_processor_chain_rendering(self) -> None:
        rendered = build_processors()
        plain = build_processors(render_json=False)

        assert isinstance(rendered[-1], structlog.processors.JSONRenderer)
        assert not any(isinstance(p, structlog.processors.JSONRenderer) for p in plain)
        assert redact_secrets in plain
        assert normalize_values in plain

    @pytest.mark.unit
    def test_level_override(self) -> None:
        root = logging.getLogger()
        previous = root.level
        try:
            setup_logging("debug")

            assert root.level == logging.DEBUG
            assert logging.getLogger("aiosqlite").level == logging.WARNING
        finally:
            root.setLevel(previous)
