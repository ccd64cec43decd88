# app/x402/validation.py
"""
Proof validation policies for x402 protected resources.

Two named policies share one interface so each endpoint picks its own:

- StrictPolicy: the proof must pay the configured recipient in the
  configured asset (case-insensitive). Network and amount checks are
  available as opt-in hardening flags and are off by default.
- PresenceOnlyPolicy: any non-empty X-PAYMENT header is accepted; the
  proof's contents are not inspected.

The development bypass is a separate gate and never runs through a policy.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from app.x402.encoding import PaymentProof
from app.x402.requirements import PaymentRequirements

logger = logging.getLogger(__name__)

BYPASS_HEADER = "X-DEV-BYPASS-PAYMENT"
BYPASS_QUERY_PARAM = "bypass"


class RejectionReason(str, Enum):
    """Why a proof did not unlock the resource."""
    MISSING_PROOF = "MissingProof"
    MISSING_FIELDS = "MissingFields"
    WRONG_RECIPIENT = "WrongRecipient"
    WRONG_ASSET = "WrongAsset"
    WRONG_NETWORK = "WrongNetwork"
    INSUFFICIENT_AMOUNT = "InsufficientAmount"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[RejectionReason] = None
    detail: Optional[str] = None

    @classmethod
    def accepted(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def rejected(cls, reason: RejectionReason, detail: Optional[str] = None) -> "ValidationResult":
        return cls(ok=False, reason=reason, detail=detail)


def _same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


class ValidationPolicy(ABC):
    """Base class for proof validation policies."""

    name = "base"
    # Whether the orchestrator must fully decode the proof before validating
    requires_decoded_proof = True

    @abstractmethod
    def validate(self, proof: Optional[PaymentProof], requirement: PaymentRequirements) -> ValidationResult:
        raise NotImplementedError


class StrictPolicy(ValidationPolicy):
    """
    Field-matching validation used by the credits endpoint.

    Checks run in order and the first failure wins:
    1. proof.to == requirement.payTo (case-insensitive)
    2. proof.asset == requirement.asset (case-insensitive)
    3. proof.network == requirement.network (only with enforce_network)
    4. int(proof.amount) >= int(requirement.maxAmountRequired) (only with enforce_amount)

    The on-chain transaction itself is never looked up.
    """

    name = "strict"

    def __init__(self, enforce_network: bool = False, enforce_amount: bool = False):
        self.enforce_network = enforce_network
        self.enforce_amount = enforce_amount

    def validate(self, proof: Optional[PaymentProof], requirement: PaymentRequirements) -> ValidationResult:
        if proof is None:
            return ValidationResult.rejected(RejectionReason.MISSING_PROOF, "X-PAYMENT header is required")

        if not _same_address(proof.to, requirement.pay_to):
            logger.warning(f"Payment sent to wrong recipient: {proof.to} vs {requirement.pay_to}")
            return ValidationResult.rejected(
                RejectionReason.WRONG_RECIPIENT,
                f"Payment sent to wrong recipient: {proof.to}"
            )

        if not _same_address(proof.asset, requirement.asset):
            logger.warning(f"Payment made in wrong token: {proof.asset} vs {requirement.asset}")
            return ValidationResult.rejected(
                RejectionReason.WRONG_ASSET,
                f"Payment made in wrong token: {proof.asset}"
            )

        if self.enforce_network and proof.network != requirement.network:
            logger.warning(f"Payment made on wrong network: {proof.network} vs {requirement.network}")
            return ValidationResult.rejected(
                RejectionReason.WRONG_NETWORK,
                f"Payment made on wrong network: {proof.network}"
            )

        if self.enforce_amount and not _amount_covers(proof.amount, requirement.max_amount_required):
            logger.warning(f"Payment amount too low: {proof.amount} < {requirement.max_amount_required}")
            return ValidationResult.rejected(
                RejectionReason.INSUFFICIENT_AMOUNT,
                f"Payment amount {proof.amount} is below {requirement.max_amount_required}"
            )

        return ValidationResult.accepted()


class PresenceOnlyPolicy(ValidationPolicy):
    """Accepts any request that carries a non-empty X-PAYMENT header."""

    name = "presence"
    requires_decoded_proof = False

    def validate(self, proof: Optional[Any], requirement: PaymentRequirements) -> ValidationResult:
        # proof may be a PaymentProof or the raw decoded payload
        if proof is None:
            return ValidationResult.rejected(RejectionReason.MISSING_PROOF, "X-PAYMENT header is required")
        return ValidationResult.accepted()


def _amount_covers(amount: str, required: str) -> bool:
    try:
        return int(amount) >= int(required)
    except (TypeError, ValueError):
        return False


def get_policy(name: str, enforce_network: bool = False, enforce_amount: bool = False) -> ValidationPolicy:
    """Look up a validation policy by name ("strict" or "presence")."""
    if name == StrictPolicy.name:
        return StrictPolicy(enforce_network=enforce_network, enforce_amount=enforce_amount)
    if name == PresenceOnlyPolicy.name:
        return PresenceOnlyPolicy()
    raise ValueError(f"Unknown validation policy: {name}")


def is_bypass_requested(
    headers: Mapping[str, str],
    query_params: Mapping[str, str],
    dev_mode: bool
) -> bool:
    """
    Check whether the development payment bypass applies to a request.

    Never true unless dev_mode is set, whatever the client sends.
    """
    if not dev_mode:
        return False
    if headers.get(BYPASS_HEADER) == "true":
        return True
    return query_params.get(BYPASS_QUERY_PARAM) == "true"
