# app/x402/exceptions.py
"""
Error types for the x402 payment flow.

Server-side errors map onto stable HTTP status codes:
- MalformedProof      -> 400 (the X-PAYMENT header could not be read)
- ValidationRejected  -> 402 (a readable proof that does not satisfy the requirement)
- AllocationFailed    -> 500 (payment accepted, ledger write failed)

Caller-side errors are raised by the settlement client and carry the stage
of the pipeline that failed.
"""
from typing import Any, List, Optional


class X402Error(Exception):
    """Base class for server-side x402 errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class MalformedProof(X402Error):
    """The payment token is not base64 JSON, or lacks required fields."""

    status_code = 400
    code = "malformed_payment"

    INVALID_ENCODING = "invalid_encoding"
    INVALID_JSON = "invalid_json"
    MISSING_FIELDS = "missing_fields"
    INVALID_FIELDS = "invalid_fields"

    def __init__(self, kind: str, detail: str, missing: Optional[List[str]] = None):
        super().__init__(detail)
        self.kind = kind
        self.missing = missing or []


class ValidationRejected(X402Error):
    """A well-formed proof that does not satisfy the payment requirement."""

    status_code = 402
    code = "payment_rejected"

    def __init__(self, reason: str, detail: Optional[str] = None):
        super().__init__(detail or f"Payment verification failed: {reason}")
        self.reason = reason


class AllocationFailed(X402Error):
    """Payment was accepted but the ledger refused the credit allocation."""

    status_code = 500
    code = "allocation_failed"

    def __init__(self, address: str, credits: int, detail: str = "Failed to allocate credits"):
        super().__init__(detail)
        self.address = address
        self.credits = credits


class SettlementError(Exception):
    """Base class for caller-side settlement failures."""

    stage = "settlement"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DiscoveryFailed(SettlementError):
    """The initial request for the resource could not be made."""

    stage = "discover"


class UnexpectedStatus(SettlementError):
    stage = "discover"

    def __init__(self, status_code: int):
        super().__init__(f"Unexpected response status: {status_code}")
        self.status_code = status_code


class NoPaymentOptions(SettlementError):
    stage = "discover"

    def __init__(self, message: str = "No payment options available"):
        super().__init__(message)


class UnsupportedRequirement(SettlementError):
    stage = "select"


class TransferSubmissionFailed(SettlementError):
    stage = "submit"


class TransferNotConfirmed(SettlementError):
    stage = "confirm"

    def __init__(self, tx: str, message: Optional[str] = None):
        super().__init__(message or f"Transaction {tx} was not confirmed")
        self.tx = tx


class PaymentVerificationFailed(SettlementError):
    stage = "retry"

    def __init__(self, status_code: int, body: Any = None, tx: Optional[str] = None):
        super().__init__(f"Payment verification failed with status {status_code}")
        self.status_code = status_code
        self.body = body
        # Set when a transfer was already submitted; there is no refund path
        self.tx = tx
