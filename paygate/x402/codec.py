# paygate/x402/codec.py
"""
Encoding of the header-carried x402 envelopes.

X-PAYMENT carries a PaymentProof and X-PAYMENT-RESPONSE carries a
SettlementReceipt, both as base64 of canonical JSON (sorted keys, compact
separators). Decoding only checks the envelope shape: a well-formed proof
with an unknown scheme decodes fine and is judged by the Verifier.
"""
import json
import logging
from typing import Any, Dict

from pydantic import ValidationError
from x402.encoding import safe_base64_decode, safe_base64_encode

from paygate.x402.errors import DecodeError
from paygate.x402.types import PaymentProof, SettlementReceipt

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

REQUIRED_PROOF_FIELDS = ("scheme", "network", "payload")


def canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _b64encode(text: str) -> str:
    return safe_base64_encode(text.encode("utf-8"))


def _b64decode(token: str) -> str:
    token = token.strip()
    if not token:
        raise DecodeError("Empty payment token")

    # safe_base64_decode restores stripped padding and returns text
    try:
        text = safe_base64_decode(token)
    except UnicodeDecodeError as e:
        raise DecodeError("Payment token is not UTF-8 text") from e
    except ValueError as e:
        raise DecodeError("Payment token is not valid base64") from e

    if text is None:
        raise DecodeError("Payment token is not valid base64")
    return text


def encode(proof: PaymentProof) -> str:
    """Encode a proof as the X-PAYMENT header value."""
    return _b64encode(canonical_json(proof.model_dump(by_alias=True, mode="json")))


def decode(token: str) -> PaymentProof:
    """
    Decode an X-PAYMENT header value.

    Raises:
        DecodeError: for anything that is not base64 JSON carrying a proof envelope
    """
    if not isinstance(token, str):
        raise DecodeError("Payment token must be a string")

    text = _b64decode(token)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError("Payment token is not JSON") from e

    if not isinstance(data, dict):
        raise DecodeError("Payment token must be a JSON object")

    missing = [name for name in REQUIRED_PROOF_FIELDS if name not in data]
    if missing:
        raise DecodeError(f"Payment token is missing fields: {', '.join(missing)}")

    try:
        return PaymentProof.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"Payment token has an invalid envelope: {e.error_count()} error(s)") from e


def encode_settlement_response(receipt: SettlementReceipt) -> str:
    """Encode a settlement receipt for the X-PAYMENT-RESPONSE header."""
    return _b64encode(canonical_json(receipt.model_dump(by_alias=True, exclude_none=True, mode="json")))


def decode_settlement_response(header_value: str) -> SettlementReceipt:
    """
    Decode an X-PAYMENT-RESPONSE header value.

    Raises:
        DecodeError: if the header is not a base64 JSON settlement receipt
    """
    text = _b64decode(header_value)
    try:
        return SettlementReceipt.model_validate_json(text)
    except ValidationError as e:
        raise DecodeError("X-PAYMENT-RESPONSE is not a settlement receipt") from e
