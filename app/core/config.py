# app/core/config.py
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Paywall Gateway"
    API_PREFIX: str = "/api"

    # Absolute base used for `resource` and `facilitator` fields
    BASE_URL: str = "http://localhost:3000"
    VERCEL_URL: Optional[str] = None

    # Enables the X-DEV-BYPASS-PAYMENT / ?bypass=true override
    DEVELOPMENT_MODE: bool = False

    # x402 payment settings
    X402_NETWORK: str = "base-sepolia"
    X402_PAY_TO_ADDRESS: str = ZERO_ADDRESS
    X402_USDC_ADDRESS: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    X402_PREMIUM_PRICE: str = "500000"  # 0.5 USDC
    X402_DEFAULT_CREDITS_AMOUNT: str = "500000"
    X402_CREDITS_PER_USDC: int = 10
    X402_ASSET_DECIMALS: int = 6

    # Hardened checks on top of recipient/asset matching (off = reference behaviour)
    X402_ENFORCE_NETWORK: bool = False
    X402_ENFORCE_AMOUNT: bool = False

    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    # External credit ledger; unset means allocations are only logged
    LEDGER_URL: Optional[AnyHttpUrl] = None

    # Caller-side signing wallet
    PRIVATE_KEY: Optional[str] = None
    BASE_SEPOLIA_RPC_URL: str = "https://sepolia.base.org"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


def get_base_url(config: Optional[Settings] = None) -> str:
    """Return the public base URL, preferring the Vercel deployment host."""
    config = config or settings
    if config.VERCEL_URL:
        return f"https://{config.VERCEL_URL}"
    return config.BASE_URL.rstrip("/")


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
