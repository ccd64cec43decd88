# app/x402/requirements.py
"""
Payment requirement descriptors for x402 402 responses.

A requirement is rebuilt from configuration on every request; nothing is
stored between the challenge and the retried request.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import JSONResponse

from app.core.config import settings

# x402 protocol constants
X402_VERSION = 1
SCHEME_EXACT = "exact"
DEFAULT_MIME_TYPE = "application/json"
DEFAULT_MAX_TIMEOUT_SECONDS = 60

USDC_EXTRA = {
    "name": "USD Coin",
    "symbol": "USDC",
    "decimals": 6,
}


class PaymentRequirements(BaseModel):
    """One entry of the `accepts` list in a 402 body."""

    model_config = ConfigDict(populate_by_name=True)

    scheme: str = SCHEME_EXACT
    network: str
    max_amount_required: str = Field(alias="maxAmountRequired")
    resource: str
    description: str = ""
    mime_type: str = Field(default=DEFAULT_MIME_TYPE, alias="mimeType")
    pay_to: str = Field(alias="payTo")
    max_timeout_seconds: int = Field(default=DEFAULT_MAX_TIMEOUT_SECONDS, alias="maxTimeoutSeconds")
    asset: str
    extra: Optional[Dict[str, Any]] = None


def build_payment_requirements(
    resource_url: str,
    amount_atomic: str,
    pay_to: str,
    asset: str,
    description: str = "",
    extra: Optional[Dict[str, Any]] = None,
    network: Optional[str] = None,
) -> PaymentRequirements:
    """
    Create PaymentRequirements for an x402 402 response.

    The amount is passed through as given; its format is checked when a
    proof is validated against it, not here.

    Args:
        resource_url: Absolute URL of the protected resource
        amount_atomic: Price in the asset's smallest unit, as a decimal string
        pay_to: Recipient address (case preserved)
        asset: Token contract address (case preserved)
        description: Human readable description of the resource
        extra: Optional asset metadata (name/symbol/decimals)
        network: Chain identifier; defaults to X402_NETWORK

    Returns:
        PaymentRequirements object for the x402 response
    """
    return PaymentRequirements(
        scheme=SCHEME_EXACT,
        network=network or settings.X402_NETWORK,
        max_amount_required=amount_atomic,
        resource=resource_url,
        description=description,
        mime_type=DEFAULT_MIME_TYPE,
        pay_to=pay_to,
        max_timeout_seconds=DEFAULT_MAX_TIMEOUT_SECONDS,
        asset=asset,
        extra=extra,
    )


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: Optional[str] = None
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        payment_requirements: The payment requirements to include
        error_message: Why the request was not accepted, if a proof was sent

    Returns:
        JSONResponse with 402 status and payment details
    """
    response_body: Dict[str, Any] = {
        "x402Version": X402_VERSION,
        "accepts": [payment_requirements.model_dump(by_alias=True)],
    }
    if error_message:
        response_body["error"] = error_message

    return JSONResponse(
        status_code=402,
        content=response_body,
        headers={"Content-Type": "application/json"}
    )
