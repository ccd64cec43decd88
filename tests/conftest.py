# tests/conftest.py
"""
Shared fixtures for x402 gateway tests.
"""
from unittest.mock import patch

import pytest

from app.core.config import settings

SELLER = "0x1234567890abcdef1234567890abcdef12345678"
USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
PAYER = "0xA"
TX_HASH = "0x" + "ab" * 32
BASE_URL = "https://gateway.example.com"


@pytest.fixture(autouse=True)
def audit_log_path(tmp_path):
    """Keep audit events out of the working directory."""
    path = tmp_path / "logs" / "x402_audit.jsonl"
    with patch.object(settings, "X402_AUDIT_LOG_PATH", str(path)):
        yield path


@pytest.fixture
def x402_settings():
    """Deterministic payment settings with the development bypass disabled."""
    with patch.multiple(
        settings,
        BASE_URL=BASE_URL,
        VERCEL_URL=None,
        DEVELOPMENT_MODE=False,
        X402_NETWORK="base-sepolia",
        X402_PAY_TO_ADDRESS=SELLER,
        X402_USDC_ADDRESS=USDC,
        X402_PREMIUM_PRICE="500000",
        X402_DEFAULT_CREDITS_AMOUNT="500000",
        X402_CREDITS_PER_USDC=10,
        X402_ASSET_DECIMALS=6,
        X402_ENFORCE_NETWORK=False,
        X402_ENFORCE_AMOUNT=False,
        LEDGER_URL=None,
    ):
        yield settings
