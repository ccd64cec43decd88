# app/x402/middleware.py
"""
FastAPI middleware for the x402 challenge/response flow.

Each request to a protected endpoint is either UNPAID or PAID:
1. Development bypass (DEVELOPMENT_MODE + bypass signal) -> PAID
2. No X-PAYMENT header -> UNPAID, 402 with payment requirements
3. Unreadable X-PAYMENT header -> UNPAID, 400 malformed_payment
4. Proof rejected by the endpoint's validation policy -> UNPAID, 402
5. Proof accepted -> PAID

PAID requests reach the endpoint with the decision on `request.state.payment`,
and successful responses get an X-PAYMENT-RESPONSE acknowledgment header.
The requirement is rebuilt on every request; no challenge state is kept.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings, get_base_url, ZERO_ADDRESS
from app.x402.audit import (
    log_error,
    log_payment_accepted,
    log_payment_bypassed,
    log_payment_malformed,
    log_payment_rejected,
    log_payment_required_sent,
)
from app.x402.encoding import (
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    AcknowledgedPayment,
    PaymentAcknowledgment,
    PaymentProof,
    decode_payment_payload,
    encode_acknowledgment,
    proof_from_payload,
)
from app.x402.exceptions import MalformedProof, ValidationRejected, X402Error
from app.x402.requirements import (
    PaymentRequirements,
    USDC_EXTRA,
    build_payment_requirements,
    create_402_response,
)
from app.x402.validation import (
    PresenceOnlyPolicy,
    RejectionReason,
    StrictPolicy,
    ValidationPolicy,
    get_policy,
    is_bypass_requested,
)

logger = logging.getLogger(__name__)


# Synthesized transaction ids for bypassed payments; real ids are 0x-prefixed hex
BYPASS_TX_PREFIX = "dev-bypass-"


class PaymentState(Enum):
    UNPAID = "unpaid"
    PAID = "paid"


@dataclass(frozen=True)
class ProtectedResource:
    """A route that requires payment, and how its price and proof are handled."""
    method: str
    path: str
    description: str
    policy: str
    price_setting: str
    amount_from_query: bool = False

    def matches(self, method: str, path: str, prefix: str = "") -> bool:
        full_path = f"{prefix}{self.path}".rstrip("/")
        return method == self.method and path.rstrip("/") == full_path

    def resolve_amount(self, query_params: Mapping[str, str]) -> str:
        default = str(getattr(settings, self.price_setting))
        if self.amount_from_query:
            return query_params.get("amount") or default
        return default


# Paths are relative to settings.API_PREFIX
PROTECTED_ENDPOINTS = [
    ProtectedResource(
        method="GET",
        path="/premium-content",
        description="Access to premium content",
        policy=PresenceOnlyPolicy.name,
        price_setting="X402_PREMIUM_PRICE",
    ),
    ProtectedResource(
        method="GET",
        path="/nevermined-credits",
        description="Purchase Nevermined credits",
        policy=StrictPolicy.name,
        price_setting="X402_DEFAULT_CREDITS_AMOUNT",
        amount_from_query=True,
    ),
]


@dataclass
class PaymentDecision:
    """Outcome of evaluating one request against its payment requirement."""
    state: PaymentState
    status_code: int
    requirement: PaymentRequirements
    policy: str
    proof: Optional[PaymentProof] = None
    payload: Optional[Dict[str, Any]] = None
    payer: str = ZERO_ADDRESS
    tx: Optional[str] = None
    bypassed: bool = False
    error: Optional[X402Error] = None

    @property
    def paid(self) -> bool:
        return self.state is PaymentState.PAID


def synthesize_bypass_tx() -> str:
    """Placeholder transaction id for a bypassed payment."""
    return BYPASS_TX_PREFIX + format(int(time.time() * 1000), "x").zfill(16)


def is_bypass_transaction(tx: Optional[str]) -> bool:
    return bool(tx) and tx.startswith(BYPASS_TX_PREFIX)


def find_protected_resource(
    method: str,
    path: str,
    resources: Optional[List[ProtectedResource]] = None
) -> Optional[ProtectedResource]:
    """Return the protected resource matching the request, if any."""
    for resource in resources if resources is not None else PROTECTED_ENDPOINTS:
        if resource.matches(method, path, settings.API_PREFIX):
            return resource
    return None


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_payment_requirements(
    resource: ProtectedResource,
    path: str,
    query_params: Mapping[str, str]
) -> PaymentRequirements:
    """Build the requirement for a protected resource from configuration."""
    return build_payment_requirements(
        resource_url=f"{get_base_url(settings)}{path}",
        amount_atomic=resource.resolve_amount(query_params),
        pay_to=settings.X402_PAY_TO_ADDRESS,
        asset=settings.X402_USDC_ADDRESS,
        description=resource.description,
        extra=dict(USDC_EXTRA),
        network=settings.X402_NETWORK,
    )


def _unpaid(requirement, policy, status_code, error, payer=ZERO_ADDRESS) -> PaymentDecision:
    return PaymentDecision(
        state=PaymentState.UNPAID,
        status_code=status_code,
        requirement=requirement,
        policy=policy.name,
        payer=payer,
        error=error,
    )


def evaluate_payment(
    headers: Mapping[str, str],
    query_params: Mapping[str, str],
    requirement: PaymentRequirements,
    policy: ValidationPolicy,
    dev_mode: bool
) -> PaymentDecision:
    """
    Decide whether a request has paid for its resource.

    Args:
        headers: Request headers
        query_params: Request query parameters
        requirement: The requirement re-derived for this request
        policy: Validation policy for the resource
        dev_mode: Whether the development bypass may be honoured

    Returns:
        PaymentDecision in state PAID or UNPAID, with the status code
        the gate should answer with when UNPAID
    """
    if is_bypass_requested(headers, query_params, dev_mode):
        return PaymentDecision(
            state=PaymentState.PAID,
            status_code=200,
            requirement=requirement,
            policy=policy.name,
            payer=query_params.get("address") or ZERO_ADDRESS,
            tx=synthesize_bypass_tx(),
            bypassed=True,
        )

    payment_header = headers.get(X_PAYMENT_HEADER)
    if not payment_header:
        return _unpaid(
            requirement, policy, 402,
            ValidationRejected(RejectionReason.MISSING_PROOF.value, "X-PAYMENT header is required"),
        )

    try:
        payload = decode_payment_payload(payment_header)
    except MalformedProof as e:
        return _unpaid(requirement, policy, 400, e)

    payer = payload.get("from") if isinstance(payload.get("from"), str) else ZERO_ADDRESS

    try:
        proof = proof_from_payload(payload)
    except MalformedProof as e:
        if policy.requires_decoded_proof:
            if e.kind == MalformedProof.MISSING_FIELDS:
                # A readable proof without all fields is a validation failure, not a bad request
                return _unpaid(
                    requirement, policy, 402,
                    ValidationRejected(RejectionReason.MISSING_FIELDS.value, e.message),
                    payer=payer,
                )
            return _unpaid(requirement, policy, 400, e, payer=payer)
        proof = None

    result = policy.validate(proof if policy.requires_decoded_proof else payload, requirement)
    if not result.ok:
        return _unpaid(
            requirement, policy, 402,
            ValidationRejected(result.reason.value, result.detail),
            payer=payer,
        )

    tx = payload.get("tx")
    return PaymentDecision(
        state=PaymentState.PAID,
        status_code=200,
        requirement=requirement,
        policy=policy.name,
        proof=proof,
        payload=payload,
        payer=payer,
        tx=tx if isinstance(tx, str) else None,
    )


def create_acknowledgment(decision: PaymentDecision) -> PaymentAcknowledgment:
    """Build the X-PAYMENT-RESPONSE body for a paid request."""
    return PaymentAcknowledgment(
        success=True,
        payment=AcknowledgedPayment(
            tx=decision.tx,
            facilitator=get_base_url(settings),  # this server attests its own payments
            payer=decision.payer,
        ),
    )


def create_error_response(error: X402Error) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    Requests to endpoints not listed in `resources` pass through unchanged.
    """

    def __init__(self, app, resources: Optional[List[ProtectedResource]] = None):
        super().__init__(app)
        self.resources = resources if resources is not None else PROTECTED_ENDPOINTS

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        resource = find_protected_resource(request.method, request.url.path, self.resources)
        if resource is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        logger.info(f"x402: Processing protected request from {client_ip}: {request.method} {request.url.path}")

        try:
            requirement = create_payment_requirements(resource, request.url.path, request.query_params)
            policy = get_policy(
                resource.policy,
                enforce_network=settings.X402_ENFORCE_NETWORK,
                enforce_amount=settings.X402_ENFORCE_AMOUNT,
            )
            decision = evaluate_payment(
                request.headers,
                request.query_params,
                requirement,
                policy,
                dev_mode=settings.DEVELOPMENT_MODE,
            )
        except Exception as e:
            logger.exception(f"x402: Failed to evaluate payment: {e}")
            log_error(client_ip, type(e).__name__, str(e), context={"path": request.url.path})
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Payment processing failed", "code": "internal_error"}
            )

        if not decision.paid:
            return self._reject(decision, client_ip)

        if decision.bypassed:
            logger.warning(f"x402: Development bypass used for {request.url.path} by {client_ip}")
            log_payment_bypassed(client_ip, request.url.path, wallet_address=decision.payer)
        else:
            logger.info(f"x402: Payment accepted for payer {decision.payer} (tx={decision.tx})")
            log_payment_accepted(
                client_ip,
                payer=decision.payer,
                transaction_hash=decision.tx,
                amount=decision.proof.amount if decision.proof else None,
                policy=decision.policy,
            )

        request.state.payment = decision
        response = await call_next(request)

        if 200 <= response.status_code < 300:
            response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_acknowledgment(create_acknowledgment(decision))

        return response

    def _reject(self, decision: PaymentDecision, client_ip: str) -> Response:
        error = decision.error
        requirement = decision.requirement

        if isinstance(error, MalformedProof):
            logger.warning(f"x402: Invalid X-PAYMENT header from {client_ip}: {error.message}")
            log_payment_malformed(client_ip, error.kind, error.message)
            return create_error_response(error)

        if isinstance(error, ValidationRejected) and error.reason != RejectionReason.MISSING_PROOF.value:
            logger.warning(f"x402: Payment rejected ({error.reason}) from {client_ip}")
            log_payment_rejected(client_ip, error.reason, decision.policy, payer=decision.payer)
        else:
            logger.info(f"x402: No X-PAYMENT header, returning 402 for {requirement.max_amount_required} atomic units")

        log_payment_required_sent(
            client_ip,
            resource=requirement.resource,
            amount=requirement.max_amount_required,
            network=requirement.network,
            pay_to=requirement.pay_to,
            reason=error.reason if isinstance(error, ValidationRejected) else None,
        )
        return create_402_response(requirement, error_message=error.message if error else None)
