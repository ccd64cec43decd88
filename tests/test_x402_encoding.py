# tests/test_x402_encoding.py
"""
Unit tests for X-PAYMENT / X-PAYMENT-RESPONSE encoding.
"""
import json
from base64 import b64decode, b64encode

import pytest

from app.x402.encoding import (
    AcknowledgedPayment,
    PaymentAcknowledgment,
    PaymentProof,
    REQUIRED_PROOF_FIELDS,
    decode_acknowledgment,
    decode_payment_payload,
    decode_payment_proof,
    encode_acknowledgment,
    encode_payment_proof,
    proof_from_payload,
)
from app.x402.exceptions import MalformedProof

from conftest import PAYER, SELLER, TX_HASH, USDC


def proof_fields(**overrides):
    fields = {
        "from": PAYER,
        "to": SELLER,
        "asset": USDC,
        "amount": "500000",
        "tx": TX_HASH,
        "network": "base-sepolia",
    }
    fields.update(overrides)
    return fields


def encode_raw(payload) -> str:
    return b64encode(json.dumps(payload).encode()).decode()


class TestEncodePaymentProof:
    """Test proof encoding."""

    def test_encodes_base64_json_with_wire_names(self):
        """The payer travels as `from`, not the Python attribute name."""
        proof = PaymentProof.model_validate(proof_fields())

        decoded = json.loads(b64decode(encode_payment_proof(proof)).decode("utf-8"))

        assert decoded == proof_fields()
        assert "from_" not in decoded

    def test_round_trip(self):
        """decode(encode(p)) == p."""
        proof = PaymentProof.model_validate(proof_fields(**{"from": "0xAbCdEf0000000000000000000000000000000001"}))

        assert decode_payment_proof(encode_payment_proof(proof)) == proof

    def test_populate_by_attribute_name(self):
        """Proofs can be built with from_ in Python code."""
        proof = PaymentProof(from_=PAYER, to=SELLER, asset=USDC, amount="1", tx=TX_HASH, network="base-sepolia")
        assert proof.from_ == PAYER


class TestDecodePaymentProof:
    """Test proof decoding failures."""

    def test_decode_valid_header(self):
        proof = decode_payment_proof(encode_raw(proof_fields()))

        assert proof.from_ == PAYER
        assert proof.to == SELLER
        assert proof.amount == "500000"
        assert proof.tx == TX_HASH

    def test_invalid_base64(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof("not-valid-base64!!!")
        assert exc_info.value.kind == MalformedProof.INVALID_ENCODING

    def test_invalid_utf8(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof(b64encode(b"\xff\xfe\xfd").decode())
        assert exc_info.value.kind == MalformedProof.INVALID_ENCODING

    def test_invalid_json(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof(b64encode(b"not json").decode())
        assert exc_info.value.kind == MalformedProof.INVALID_JSON

    def test_oversized_integer_is_invalid_json(self):
        """Integers past the interpreter's digit limit are a decode failure, not a crash."""
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_payload(b64encode(b"1" * 5000).decode())
        assert exc_info.value.kind == MalformedProof.INVALID_JSON

    def test_deeply_nested_json_is_invalid_json(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_payload(b64encode(b"[" * 100000 + b"]" * 100000).decode())
        assert exc_info.value.kind == MalformedProof.INVALID_JSON

    def test_json_array_is_not_a_proof(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof(encode_raw(["from", "to"]))
        assert exc_info.value.kind == MalformedProof.INVALID_JSON

    @pytest.mark.parametrize("field", REQUIRED_PROOF_FIELDS)
    def test_each_field_is_required(self, field):
        fields = proof_fields()
        del fields[field]

        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof(encode_raw(fields))

        assert exc_info.value.kind == MalformedProof.MISSING_FIELDS
        assert exc_info.value.missing == [field]

    def test_null_field_counts_as_missing(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof(encode_raw(proof_fields(tx=None)))
        assert exc_info.value.missing == ["tx"]

    def test_numeric_amount_is_accepted_as_string(self):
        proof = decode_payment_proof(encode_raw(proof_fields(amount=500000)))
        assert proof.amount == "500000"

    def test_structured_field_value_is_invalid(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof(encode_raw(proof_fields(to={"address": SELLER})))
        assert exc_info.value.kind == MalformedProof.INVALID_FIELDS

    def test_malformed_proof_maps_to_400(self):
        with pytest.raises(MalformedProof) as exc_info:
            decode_payment_proof("%%%")
        assert exc_info.value.status_code == 400
        assert exc_info.value.to_dict()["code"] == "malformed_payment"


class TestDecodePaymentPayload:
    """Lenient decoding used by presence-only endpoints."""

    def test_partial_payload_is_returned(self):
        assert decode_payment_payload(encode_raw({"from": PAYER})) == {"from": PAYER}

    def test_surrounding_whitespace_is_ignored(self):
        assert decode_payment_payload("  " + encode_raw({"a": 1}) + "\n") == {"a": 1}

    def test_proof_from_payload_lists_all_missing_fields(self):
        with pytest.raises(MalformedProof) as exc_info:
            proof_from_payload({"from": PAYER, "to": SELLER})
        assert exc_info.value.missing == ["asset", "amount", "tx", "network"]


class TestAcknowledgment:
    """Test X-PAYMENT-RESPONSE encoding."""

    def test_encode_acknowledgment(self):
        ack = PaymentAcknowledgment(
            payment=AcknowledgedPayment(tx=TX_HASH, facilitator="https://gateway.example.com", payer=PAYER)
        )

        decoded = json.loads(b64decode(encode_acknowledgment(ack)).decode())

        assert decoded == {
            "success": True,
            "payment": {
                "tx": TX_HASH,
                "facilitator": "https://gateway.example.com",
                "payer": PAYER,
            },
        }

    def test_round_trip(self):
        ack = PaymentAcknowledgment(
            payment=AcknowledgedPayment(tx=None, facilitator="http://localhost:3000", payer=PAYER)
        )
        assert decode_acknowledgment(encode_acknowledgment(ack)) == ack

    def test_decode_rejects_missing_payment(self):
        with pytest.raises(MalformedProof):
            decode_acknowledgment(encode_raw({"success": True}))
