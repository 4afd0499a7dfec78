# paygate/x402/types.py
"""
Typed x402 protocol envelopes.

Attributes are snake_case in Python and camelCase on the wire; always dump
with ``by_alias=True`` at the HTTP boundary. Monetary amounts are decimal
strings in the asset's smallest unit and never pass through float.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

X402_VERSION = 1


class X402Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssetDescriptor(X402Model):
    address: str
    decimals: int = 6
    symbol: Optional[str] = None


class PaymentRequirements(X402Model):
    """One acceptable way to pay for a resource."""

    scheme: str
    network: str
    max_amount_required: str
    resource: str
    description: str = ""
    mime_type: str = "application/json"
    pay_to: str
    max_timeout_seconds: int
    asset: AssetDescriptor
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("max_amount_required")
    @classmethod
    def validate_amount(cls, value: str) -> str:
        if not isinstance(value, str) or not value.isdigit() or int(value) <= 0:
            raise ValueError("maxAmountRequired must be a positive integer encoded as a string")
        return value

    @field_validator("max_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("maxTimeoutSeconds must be positive")
        return value

    @field_validator("asset", mode="before")
    @classmethod
    def accept_bare_address(cls, value: Any) -> Any:
        # Older servers send the asset as a plain contract address
        if isinstance(value, str):
            return {"address": value}
        return value

    @field_validator("extra", mode="before")
    @classmethod
    def none_extra(cls, value: Any) -> Any:
        return {} if value is None else value

    def matches(self, scheme: str, network: str) -> bool:
        return self.scheme == scheme and self.network == network


class PaymentOffer(X402Model):
    """Body of a 402 response: the list of accepted payment options."""

    x402_version: int = X402_VERSION
    error: Optional[str] = None
    accepts: List[PaymentRequirements] = Field(min_length=1)

    def find(self, scheme: str, network: str) -> Optional[PaymentRequirements]:
        for option in self.accepts:
            if option.matches(scheme, network):
                return option
        return None


class ProofPayload(X402Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    signature_or_authorization: Union[str, Dict[str, Any]]
    payer: str
    transaction: Optional[str] = None
    issued_at: Optional[int] = None
    requirements_issued_at: Optional[int] = None
    requirements_issued_at_mac: Optional[str] = None

    @field_validator("signature_or_authorization", mode="before")
    @classmethod
    def hex_encode_bytes(cls, value: Any) -> Any:
        # Raw signatures travel as 0x-prefixed hex
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        return value


class PaymentProof(X402Model):
    """Client-supplied evidence of payment carried in the X-PAYMENT header."""

    x402_version: int = X402_VERSION
    scheme: str
    network: str
    payload: ProofPayload


class VerificationResult(X402Model):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.is_valid


class SettlementReceipt(X402Model):
    success: bool
    network: Optional[str] = None
    transaction: Optional[str] = None
    payer: Optional[str] = None
    error_reason: Optional[str] = None


class SupportedKind(X402Model):
    x402_version: int = X402_VERSION
    scheme: str
    network: str


def to_smallest_units(amount: Decimal, decimals: int) -> str:
    """
    Convert a human amount (e.g. USD 0.01) to the asset's smallest unit.

    Raises:
        ValueError: if the amount is not positive or needs more than ``decimals`` places
    """
    try:
        amount = Decimal(amount)
        scaled = amount * (Decimal(10) ** decimals)
        integral = scaled.to_integral_exact()
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Amount {amount!r} is not a valid decimal") from exc

    if integral != scaled:
        raise ValueError(f"Amount {amount} cannot be represented with {decimals} decimals")
    if integral <= 0:
        raise ValueError("Payment amount must be greater than zero")
    return str(int(integral))


def format_amount(smallest_units: str, decimals: int) -> str:
    """Human display of a smallest-unit amount, e.g. "10000" with 6 decimals -> "0.01"."""
    value = Decimal(smallest_units) / (Decimal(10) ** decimals)
    return format(value.normalize(), "f")
