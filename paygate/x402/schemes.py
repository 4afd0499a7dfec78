# paygate/x402/schemes.py
"""
Payment scheme registry.

Each supported scheme is a member of the closed ``Scheme`` enum and maps to
one ``SchemeStrategy``. The orchestrator and the requirement policy look
schemes up here instead of matching strings, so adding a scheme means adding
a strategy and registering it.
"""
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from paygate.x402.types import PaymentRequirements, ProofPayload
from paygate.x402.wallet import SignedTransfer, TransferIntent, TxRef

logger = logging.getLogger(__name__)


class Scheme(str, Enum):
    EXACT = "exact"


def _whole_seconds(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"issuedAt must be a number of seconds, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    raise ValueError(f"issuedAt must be a number of seconds, got {value!r}")


def issuance_stamp(requirements: PaymentRequirements) -> Tuple[Optional[int], Optional[str]]:
    """
    The server's ``extra.issuedAt`` stamp and its ``issuedAtMac``, if any.

    Raises:
        ValueError: if ``issuedAt`` is present but not a whole number of seconds
    """
    issued_at = requirements.extra.get("issuedAt")
    if issued_at is None:
        return None, None
    mac = requirements.extra.get("issuedAtMac")
    return _whole_seconds(issued_at), mac if isinstance(mac, str) else None


class SchemeStrategy:
    """Builds the scheme-specific parts of a payment."""

    scheme: Scheme

    def build_intent(self, requirements: PaymentRequirements, now: Optional[int] = None) -> TransferIntent:
        raise NotImplementedError

    def build_payload(
        self,
        signed: SignedTransfer,
        tx_ref: TxRef,
        requirements: PaymentRequirements,
        now: Optional[int] = None,
    ) -> ProofPayload:
        raise NotImplementedError


class ExactScheme(SchemeStrategy):
    """
    Transfer of exactly ``maxAmountRequired`` to ``payTo``.

    The authorization is valid until ``maxTimeoutSeconds`` after it is built.
    """

    scheme = Scheme.EXACT

    def build_intent(self, requirements: PaymentRequirements, now: Optional[int] = None) -> TransferIntent:
        now = int(time.time()) if now is None else now
        return TransferIntent(
            scheme=requirements.scheme,
            network=requirements.network,
            pay_to=requirements.pay_to,
            asset=requirements.asset.address,
            amount=requirements.max_amount_required,
            resource=requirements.resource,
            valid_before=now + requirements.max_timeout_seconds,
            extra=dict(requirements.extra),
        )

    def build_payload(
        self,
        signed: SignedTransfer,
        tx_ref: TxRef,
        requirements: PaymentRequirements,
        now: Optional[int] = None,
    ) -> ProofPayload:
        now = int(time.time()) if now is None else now
        handed_out, mac = issuance_stamp(requirements)
        return ProofPayload(
            signature_or_authorization=signed.signature_or_authorization,
            payer=signed.payer,
            transaction=tx_ref.reference,
            issued_at=now,
            requirements_issued_at=handed_out,
            requirements_issued_at_mac=mac,
        )


_REGISTRY: Dict[Scheme, SchemeStrategy] = {}


def register_scheme(strategy: SchemeStrategy) -> None:
    if strategy.scheme in _REGISTRY:
        logger.warning(f"Replacing registered strategy for scheme '{strategy.scheme.value}'")
    _REGISTRY[strategy.scheme] = strategy


def get_scheme(name: str) -> Optional[SchemeStrategy]:
    """Look up the strategy for a wire scheme name; None if unknown."""
    try:
        return _REGISTRY.get(Scheme(name))
    except ValueError:
        return None


def registered_schemes() -> List[str]:
    return [scheme.value for scheme in _REGISTRY]


register_scheme(ExactScheme())
