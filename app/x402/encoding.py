# app/x402/encoding.py
"""
Transport encoding for x402 payment headers.

Both the X-PAYMENT proof and the X-PAYMENT-RESPONSE acknowledgment travel as
standard base64 of UTF-8 JSON. Field names on the wire are fixed (camelCase,
`from` for the payer), so the models below serialize by alias.
"""
import base64
import binascii
import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.x402.exceptions import MalformedProof


X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

REQUIRED_PROOF_FIELDS = ("from", "to", "asset", "amount", "tx", "network")


class PaymentProof(BaseModel):
    """Caller-issued evidence of a completed on-chain transfer."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    from_: str = Field(alias="from")
    to: str
    asset: str
    amount: str
    tx: str
    network: str


class AcknowledgedPayment(BaseModel):
    tx: Optional[str] = None
    facilitator: str
    payer: str


class PaymentAcknowledgment(BaseModel):
    """Server-issued X-PAYMENT-RESPONSE body."""

    success: bool = True
    payment: AcknowledgedPayment


def encode_json_header(payload: Dict[str, Any]) -> str:
    """Encode a dict as base64 of its UTF-8 JSON text."""
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_payment_payload(token: str) -> Dict[str, Any]:
    """
    Decode a header token into its JSON object without checking fields.

    Raises:
        MalformedProof: token is not base64, not UTF-8 or not a JSON object
    """
    try:
        raw = base64.b64decode(token.strip(), validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise MalformedProof(MalformedProof.INVALID_ENCODING, f"Invalid X-PAYMENT header encoding: {e}")

    # ValueError covers JSONDecodeError and the int digit limit; RecursionError is deep nesting
    try:
        payload = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise MalformedProof(MalformedProof.INVALID_JSON, f"Invalid X-PAYMENT header JSON: {e}")

    if not isinstance(payload, dict):
        raise MalformedProof(MalformedProof.INVALID_JSON, "X-PAYMENT header must encode a JSON object")

    return payload


def proof_from_payload(payload: Dict[str, Any]) -> PaymentProof:
    """
    Build a PaymentProof from an already decoded payload.

    Raises:
        MalformedProof: a required field is absent (kind=missing_fields) or
            has a non-scalar value (kind=invalid_fields)
    """
    missing = [name for name in REQUIRED_PROOF_FIELDS if payload.get(name) is None]
    if missing:
        raise MalformedProof(
            MalformedProof.MISSING_FIELDS,
            f"Invalid payment data: missing required fields: {', '.join(missing)}",
            missing=missing,
        )

    try:
        return PaymentProof.model_validate(payload)
    except ValidationError as e:
        raise MalformedProof(MalformedProof.INVALID_FIELDS, f"Invalid payment data: {e.error_count()} invalid field(s)")


def encode_payment_proof(proof: PaymentProof) -> str:
    """Encode a PaymentProof for the X-PAYMENT header."""
    return encode_json_header(proof.model_dump(by_alias=True))


def decode_payment_proof(token: str) -> PaymentProof:
    """
    Decode an X-PAYMENT header value into a PaymentProof.

    Raises:
        MalformedProof: on any decoding or field failure; see `kind`
    """
    return proof_from_payload(decode_payment_payload(token))


def encode_acknowledgment(ack: PaymentAcknowledgment) -> str:
    """Encode an acknowledgment for the X-PAYMENT-RESPONSE header."""
    return encode_json_header(ack.model_dump())


def decode_acknowledgment(token: str) -> PaymentAcknowledgment:
    """Decode an X-PAYMENT-RESPONSE header value."""
    payload = decode_payment_payload(token)
    try:
        return PaymentAcknowledgment.model_validate(payload)
    except ValidationError as e:
        raise MalformedProof(MalformedProof.INVALID_FIELDS, f"Invalid X-PAYMENT-RESPONSE payload: {e.error_count()} invalid field(s)")
