# tests/test_x402_credits.py
"""
Unit tests for credit calculation.
"""
import pytest

from app.x402.credits import calculate_credits


class TestCalculateCredits:
    """Credits = floor(amount * rate / 10**decimals)."""

    @pytest.mark.parametrize("amount,expected", [
        ("500000", 5),
        ("1000000", 10),
        ("999999", 9),
        ("0", 0),
        ("99999", 0),
        ("2500000", 25),
    ])
    def test_floor_conversion(self, x402_settings, amount, expected):
        assert calculate_credits(amount) == expected

    def test_accepts_int_amount(self, x402_settings):
        assert calculate_credits(1_000_000) == 10

    def test_explicit_rate_and_decimals(self):
        assert calculate_credits("1500000", credits_per_unit=3, decimals=6) == 4
        assert calculate_credits("150", credits_per_unit=1, decimals=2) == 1

    def test_large_amounts_are_exact(self):
        """No float rounding on amounts beyond 2**53."""
        amount = 10 ** 30 + 999_999
        assert calculate_credits(str(amount), credits_per_unit=10, decimals=6) == (10 ** 30) * 10 // 10 ** 6 + 9

    def test_uses_configured_rate(self, x402_settings):
        x402_settings.X402_CREDITS_PER_USDC = 100
        assert calculate_credits("500000") == 50

    def test_non_integer_amount_rejected(self):
        with pytest.raises(ValueError):
            calculate_credits("0.5", credits_per_unit=10, decimals=6)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            calculate_credits("-1000000", credits_per_unit=10, decimals=6)
