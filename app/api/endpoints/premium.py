# app/api/endpoints/premium.py
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from app.api.models.payment import PremiumContentResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/premium-content",
    response_model=PremiumContentResponse,
    responses={402: {"description": "Payment required"}, 400: {"model": ErrorResponse}}
)
async def get_premium_content(request: Request) -> PremiumContentResponse:
    """
    Serve premium content to callers that presented any X-PAYMENT header.

    The payment gate runs the presence-only policy for this route, so the
    proof's fields are not checked before this handler is reached.
    """
    payment = getattr(request.state, "payment", None)
    logger.info(f"Premium content served to {payment.payer if payment else 'unknown payer'}")
    return PremiumContentResponse(
        title="Premium Content",
        content="This is premium content that was accessed using an x402 payment. Congratulations!",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
