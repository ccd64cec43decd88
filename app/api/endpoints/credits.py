# app/api/endpoints/credits.py
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse

from app.api.models.payment import CreditsData, CreditsResponse, ErrorResponse
from app.core.config import settings
from app.x402.audit import log_allocation_failed, log_credits_allocated
from app.x402.credits import calculate_credits
from app.x402.exceptions import AllocationFailed, MalformedProof
from app.x402.ledger import Ledger, get_ledger
from app.x402.middleware import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/nevermined-credits",
    response_model=CreditsResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"description": "Payment required"},
        500: {"model": ErrorResponse},
    }
)
def purchase_credits(request: Request, ledger: Ledger = Depends(get_ledger)):
    """
    Allocate ledger credits for a verified payment.

    Credits are computed from the proof's amount, or from the `amount`
    query parameter when the development bypass was used.

    Returns:
        CreditsResponse with the credited wallet and credit count

    Raises:
        Nothing; ledger failures are returned as a 500 allocation_failed body
    """
    payment = getattr(request.state, "payment", None)
    if payment is None or not payment.paid:
        logger.error("Credits endpoint reached without a payment decision")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Payment gate is not configured", "code": "internal_error"}
        )

    client_ip = get_client_ip(request)

    if payment.bypassed:
        amount = request.query_params.get("amount") or settings.X402_DEFAULT_CREDITS_AMOUNT
    else:
        amount = payment.proof.amount

    try:
        credits = calculate_credits(amount)
    except ValueError as e:
        logger.warning(f"Invalid payment amount {amount!r}: {e}")
        error = MalformedProof(MalformedProof.INVALID_FIELDS, f"Invalid payment amount: {amount}")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    try:
        allocated = ledger.allocate(payment.payer, credits)
    except Exception as e:
        logger.error(f"Ledger raised while allocating {credits} credits to {payment.payer}: {e}")
        allocated = False

    if not allocated:
        error = AllocationFailed(payment.payer, credits)
        logger.error(f"x402: Payment accepted but credit allocation failed for {payment.payer} (tx={payment.tx})")
        log_allocation_failed(payment.payer, credits, payment.tx, error.message, client_ip=client_ip)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    log_credits_allocated(payment.payer, credits, payment.tx, client_ip=client_ip)
    return CreditsResponse(
        success=True,
        data=CreditsData(
            walletAddress=payment.payer,
            credits=credits,
            timestamp=datetime.now(timezone.utc).isoformat(),
        ),
    )
