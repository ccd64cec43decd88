# app/x402/credits.py
"""
Credit calculation for settled x402 payments.

Credits are derived from the paid amount in atomic units:

    credits = floor(amount_atomic * credits_per_unit / 10**decimals)

Integer arithmetic only, so 999999 atomic USDC at 10 credits/USDC is 9 credits.
"""
import logging
from typing import Optional, Union

from app.core.config import settings

logger = logging.getLogger(__name__)


def calculate_credits(
    amount_atomic: Union[str, int],
    credits_per_unit: Optional[int] = None,
    decimals: Optional[int] = None
) -> int:
    """
    Convert an atomic token amount to ledger credits, rounding down.

    Args:
        amount_atomic: Amount in the asset's smallest unit
        credits_per_unit: Credits granted per whole token. Uses config if not provided.
        decimals: Asset decimal precision. Uses config if not provided.

    Returns:
        Whole number of credits (never negative)

    Raises:
        ValueError: If amount_atomic is not an integer amount
    """
    rate = credits_per_unit if credits_per_unit is not None else settings.X402_CREDITS_PER_USDC
    precision = decimals if decimals is not None else settings.X402_ASSET_DECIMALS

    amount = int(amount_atomic)
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {amount_atomic}")

    credits = (amount * rate) // (10 ** precision)
    logger.debug(f"Calculated {credits} credits for {amount} atomic units (rate={rate}, decimals={precision})")
    return credits
