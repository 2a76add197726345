"""
Tests for the database read retry wrapper.
"""
from typing import Any

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from creator_platform.database.retry import is_transient_db_error, with_db_retry


def locked() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestTransientClassification:
    """Test suite for is_transient_db_error."""

    @pytest.mark.unit
    def test_connection_errors_are_transient(self) -> None:
        assert is_transient_db_error(locked())
        assert is_transient_db_error(
            DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)
        )

    @pytest.mark.unit
    def test_other_errors_are_not(self) -> None:
        assert not is_transient_db_error(IntegrityError("INSERT", {}, Exception("dup")))
        assert not is_transient_db_error(DBAPIError("SELECT 1", {}, Exception("syntax")))
        assert not is_transient_db_error(ValueError("nope"))


class TestWithDbRetry:
    """Test suite for with_db_retry."""

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, mocker: Any) -> None:
        read = mocker.AsyncMock(side_effect=[locked(), locked(), "row"])

        result = await with_db_retry(read, "arg", max_attempts=3, initial_delay=0)

        assert result == "row"
        assert read.await_count == 3
        read.assert_awaited_with("arg")

    @pytest.mark.asyncio
    async def test_non_transient_raised_immediately(self, mocker: Any) -> None:
        read = mocker.AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))

        with pytest.raises(IntegrityError):
            await with_db_retry(read, max_attempts=5, initial_delay=0)

        assert read.await_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, mocker: Any) -> None:
        read = mocker.AsyncMock(side_effect=locked())

        with pytest.raises(OperationalError):
            await with_db_retry(read, max_attempts=2, initial_delay=0)

        assert read.await_count == 2

    @pytest.mark.asyncio
    async def test_rolls_back_between_attempts(self, mocker: Any) -> None:
        """The next attempt never runs inside an aborted transaction."""
        session = mocker.Mock()
        session.rollback = mocker.AsyncMock()
        read = mocker.AsyncMock(side_effect=[locked(), 42])

        result = await with_db_retry(
            read, max_attempts=3, initial_delay=0, rollback_session=session
        )

        assert result == 42
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_backoff_uses_multiplier(self, mocker: Any, recwarn: Any) -> None:
        read = mocker.AsyncMock(side_effect=[locked(), "row"])

        await with_db_retry(read, max_attempts=2, initial_delay=0)

        assert not [w for w in recwarn.list if "multiplier" in str(w.message)]
