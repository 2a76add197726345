"""
Tests for fee splitting.
"""
from decimal import Decimal

import pytest

from creator_platform.core.errors import InvalidAmount
from creator_platform.core.fees import split_fee, to_cents


class TestSplitFee:
    """Test suite for split_fee."""

    @pytest.mark.unit
    def test_subscription_price_split(self) -> None:
        """1999 cents at 20% rounds the fee half-up to 400."""
        split = split_fee(1999, Decimal("20"))

        assert split.gross_cents == 1999
        assert split.platform_fee_cents == 400
        assert split.creator_amount_cents == 1599

    @pytest.mark.unit
    def test_parts_always_sum_to_gross(self) -> None:
        """Fee plus creator share equals the gross for every amount and rate."""
        for percent in ("0", "12.5", "20", "33.33", "100"):
            for gross in range(1, 2500):
                split = split_fee(gross, percent)
                assert split.platform_fee_cents + split.creator_amount_cents == gross
                assert 0 <= split.platform_fee_cents <= gross

    @pytest.mark.unit
    def test_half_cent_rounds_up(self) -> None:
        """A fee of exactly x.5 cents rounds away from zero."""
        split = split_fee(5, 10)  # 0.5 cent fee

        assert split.platform_fee_cents == 1
        assert split.creator_amount_cents == 4

    @pytest.mark.unit
    def test_zero_and_full_fee(self) -> None:
        """0% leaves everything to the creator; 100% leaves nothing."""
        assert split_fee(999, 0).creator_amount_cents == 999
        assert split_fee(999, 100).creator_amount_cents == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("gross", [0, -1, -1999])
    def test_non_positive_gross_rejected(self, gross: int) -> None:
        """Zero and negative charges are invalid."""
        with pytest.raises(InvalidAmount):
            split_fee(gross, 20)

    @pytest.mark.unit
    @pytest.mark.parametrize("gross", [19.99, "1999", True, None])
    def test_non_integer_gross_rejected(self, gross: object) -> None:
        """Only whole cents are accepted."""
        with pytest.raises(InvalidAmount):
            split_fee(gross, 20)  # type: ignore[arg-type]

    @pytest.mark.unit
    @pytest.mark.parametrize("percent", [-1, "100.01", "abc", "NaN"])
    def test_bad_percent_rejected(self, percent: object) -> None:
        """The percent must be a number between 0 and 100."""
        with pytest.raises(InvalidAmount):
            split_fee(1000, percent)  # type: ignore[arg-type]

    @pytest.mark.unit
    def test_error_renders_as_client_error(self) -> None:
        """InvalidAmount maps to a 400 with the standard envelope."""
        with pytest.raises(InvalidAmount) as exc_info:
            split_fee(0, 20)

        body = exc_info.value.to_dict()
        assert exc_info.value.http_status == 400
        assert body["success"] is False
        assert body["error"]["type"] == "InvalidAmount"


class TestToCents:
    """Test suite for to_cents."""

    @pytest.mark.unit
    def test_converts_major_units(self) -> None:
        """Decimal strings convert exactly."""
        assert to_cents("19.99") == 1999
        assert to_cents(Decimal("4.99")) == 499
        assert to_cents(10) == 1000

    @pytest.mark.unit
    def test_rounds_half_up(self) -> None:
        """Sub-cent amounts round half-up."""
        assert to_cents("0.005") == 1
        assert to_cents("0.004") == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", ["ten", "Infinity"])
    def test_rejects_non_numbers(self, amount: str) -> None:
        """Non-finite values are refused."""
        with pytest.raises(InvalidAmount):
            to_cents(amount)
