# paygate/x402/verifier.py
"""
Server-side payment gate.

Verifier.admit() runs one request through the x402 state machine:

1. No X-PAYMENT header                     -> PaymentRequired
2. Header present but undecodable          -> PaymentRequired
3. Proof scheme/network not offered        -> PaymentRequired
4. Stamp echo not authentic or expired     -> PaymentRequired
5. Facilitator error, timeout or invalid   -> PaymentRequired
6. Facilitator says valid                  -> Admit(payer)

Every rejection carries the unchanged offer and nothing else the requester
can see; the internal reason is kept for logs and the audit trail only.
Settlement is not done here: the caller applies its SettlementPolicy to an
Admit outcome.
"""
import asyncio
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from paygate.core.config import settings
from paygate.x402 import audit
from paygate.x402.codec import X_PAYMENT_HEADER, canonical_json, decode
from paygate.x402.errors import DecodeError
from paygate.x402.facilitator import FACILITATOR_UNAVAILABLE, FacilitatorClient
from paygate.x402.replay import ProofUsageCache
from paygate.x402.types import (
    PaymentOffer,
    PaymentProof,
    PaymentRequirements,
    SettlementReceipt,
)

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_DEADLINE_SECONDS = 10.0

# Allowance for clocks running ahead of ours
CLOCK_SKEW_SECONDS = 30


class SettlementPolicy(str, Enum):
    """When the payment is settled relative to the success response."""
    INLINE = "inline"  # settle, then respond
    DEFERRED = "deferred"  # respond, then settle in the background


class RejectReason(str, Enum):
    NO_PROOF = "no_proof"
    UNDECODABLE = "undecodable"
    SCHEME_MISMATCH = "scheme_mismatch"
    STALE = "stale"
    REPLAYED = "replayed"
    FACILITATOR_TIMEOUT = "facilitator_timeout"
    FACILITATOR_ERROR = "facilitator_error"
    INVALID = "invalid"


@dataclass(frozen=True)
class PaymentRequired:
    offer: PaymentOffer
    reason: RejectReason = RejectReason.NO_PROOF


@dataclass(frozen=True)
class Admit:
    payer: str
    proof: PaymentProof
    requirements: PaymentRequirements


Outcome = Union[PaymentRequired, Admit]


def stamp_mac(requirements: PaymentRequirements, issued_at: int, secret: Optional[str] = None) -> str:
    """HMAC-SHA256 binding ``issued_at`` to the option it was handed out with."""
    secret = settings.X402_STAMP_SECRET if secret is None else secret
    message = canonical_json({
        "issuedAt": issued_at,
        "maxAmountRequired": requirements.max_amount_required,
        "network": requirements.network,
        "payTo": requirements.pay_to,
        "resource": requirements.resource,
        "scheme": requirements.scheme,
    })
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def is_stale(
    proof: PaymentProof,
    requirements: PaymentRequirements,
    now: Optional[float] = None,
    secret: Optional[str] = None,
) -> bool:
    """
    True unless the proof echoes an authentic, still-open issuance stamp.

    The echo is ``requirementsIssuedAt`` plus ``requirementsIssuedAtMac``
    copied from the offer's ``extra``. A missing echo or a MAC that does not
    match ``requirements`` counts as stale.
    """
    handed_out = proof.payload.requirements_issued_at
    mac = proof.payload.requirements_issued_at_mac
    if handed_out is None or not mac:
        return True

    expected = stamp_mac(requirements, handed_out, secret)
    if not hmac.compare_digest(mac.encode("utf-8"), expected.encode("utf-8")):
        return True

    now = time.time() if now is None else now
    window = requirements.max_timeout_seconds
    if handed_out > now + CLOCK_SKEW_SECONDS:
        return True
    if now - handed_out > window:
        return True
    issued_at = proof.payload.issued_at
    if issued_at is not None and issued_at - handed_out > window:
        return True
    return False


def stamp_offer(offer: PaymentOffer, now: Optional[float] = None, secret: Optional[str] = None) -> PaymentOffer:
    """Copy of ``offer`` with each option's ``extra`` carrying ``issuedAt`` and its MAC."""
    issued_at = int(time.time() if now is None else now)
    return offer.model_copy(
        update={
            "accepts": [
                option.model_copy(update={"extra": {
                    **option.extra,
                    "issuedAt": issued_at,
                    "issuedAtMac": stamp_mac(option, issued_at, secret),
                }})
                for option in offer.accepts
            ]
        }
    )


class Verifier:
    """
    Decides admit/reject for requests to priced resources.

    Holds no per-request state; one instance serves concurrent requests.
    """

    def __init__(
        self,
        facilitator: FacilitatorClient,
        *,
        deadline: float = DEFAULT_VERIFY_DEADLINE_SECONDS,
        replay_cache: Optional[ProofUsageCache] = None,
        stamp_secret: Optional[str] = None,
    ):
        self.facilitator = facilitator
        self.deadline = deadline
        self.replay_cache = replay_cache
        # None means X402_STAMP_SECRET
        self.stamp_secret = stamp_secret

    def _reject(
        self,
        offer: PaymentOffer,
        reason: RejectReason,
        client_ip: str,
        request_id: Optional[str],
        payer: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> PaymentRequired:
        logger.info(f"x402: Rejecting payment from {client_ip}: {reason.value} ({detail or 'no detail'})")
        if reason is not RejectReason.NO_PROOF:
            audit.log_payment_rejected(
                client_ip=client_ip,
                stage=reason.value,
                reason=detail or reason.value,
                payer=payer,
                request_id=request_id,
            )
        return PaymentRequired(offer=offer, reason=reason)

    async def admit(
        self,
        request,
        offer: PaymentOffer,
        *,
        client_ip: str = "unknown",
        request_id: Optional[str] = None,
    ) -> Outcome:
        """
        Run ``request`` (anything with a ``headers`` mapping) against ``offer``.

        Never raises: every failure is a PaymentRequired carrying ``offer``.
        """
        header = request.headers.get(X_PAYMENT_HEADER)
        if not header:
            return self._reject(offer, RejectReason.NO_PROOF, client_ip, request_id)

        try:
            proof = decode(header)
        except DecodeError as e:
            return self._reject(offer, RejectReason.UNDECODABLE, client_ip, request_id, detail=str(e))

        payer = proof.payload.payer
        audit.log_payment_received(
            client_ip=client_ip,
            payer=payer,
            scheme=proof.scheme,
            network=proof.network,
            request_id=request_id,
        )

        requirements = offer.find(proof.scheme, proof.network)
        if requirements is None:
            return self._reject(
                offer, RejectReason.SCHEME_MISMATCH, client_ip, request_id,
                payer=payer, detail=f"{proof.scheme}/{proof.network} not offered",
            )

        if is_stale(proof, requirements, secret=self.stamp_secret):
            return self._reject(offer, RejectReason.STALE, client_ip, request_id, payer=payer)

        try:
            result = await asyncio.wait_for(self.facilitator.verify(proof, requirements), timeout=self.deadline)
        except asyncio.TimeoutError:
            return self._reject(
                offer, RejectReason.FACILITATOR_TIMEOUT, client_ip, request_id,
                payer=payer, detail=f"no verdict within {self.deadline}s",
            )
        except Exception as e:
            # Any failure to get a verdict is a rejection
            logger.exception("x402: Facilitator verification failed")
            return self._reject(
                offer, RejectReason.FACILITATOR_ERROR, client_ip, request_id,
                payer=payer, detail=type(e).__name__,
            )

        audit.log_payment_verified(
            client_ip=client_ip,
            payer=result.payer or payer,
            is_valid=result.is_valid,
            invalid_reason=result.invalid_reason,
            request_id=request_id,
        )

        if not result.is_valid:
            reason = (
                RejectReason.FACILITATOR_ERROR
                if result.invalid_reason == FACILITATOR_UNAVAILABLE
                else RejectReason.INVALID
            )
            return self._reject(offer, reason, client_ip, request_id, payer=payer, detail=result.invalid_reason)

        if self.replay_cache is not None and not self.replay_cache.check_and_mark(proof):
            return self._reject(offer, RejectReason.REPLAYED, client_ip, request_id, payer=payer)

        payer = result.payer or payer
        logger.info(f"x402: Payment verified for payer {payer}")
        return Admit(payer=payer, proof=proof, requirements=requirements)

    async def settle(self, admitted: Admit) -> SettlementReceipt:
        """Settle an admitted payment, bounded by the verification deadline."""
        try:
            return await asyncio.wait_for(
                self.facilitator.settle(admitted.proof, admitted.requirements),
                timeout=self.deadline,
            )
        except asyncio.TimeoutError:
            logger.warning(f"x402: Settlement for {admitted.payer} timed out after {self.deadline}s")
            reason = "settlement_timeout"
        except Exception as e:
            logger.exception("x402: Settlement failed")
            reason = type(e).__name__
        return SettlementReceipt(success=False, network=admitted.requirements.network, error_reason=reason)
