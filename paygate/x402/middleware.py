# paygate/x402/middleware.py
"""
FastAPI middleware for x402 payment gating.

This module provides HTTP middleware that:
1. Intercepts requests to priced resources (X402_PRICE_TABLE)
2. Computes the payment offer via the RequirementPolicy
3. Runs the Verifier against the X-PAYMENT header
4. Returns an opaque 402 Payment Required on any rejection
5. Settles admitted payments inline or in the background (X402_SETTLEMENT_POLICY)
"""
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from paygate.core.config import settings
from paygate.x402 import audit
from paygate.x402.codec import X_PAYMENT_RESPONSE_HEADER, encode_settlement_response
from paygate.x402.facilitator import FacilitatorClient, get_facilitator_client
from paygate.x402.pricing import RequirementPolicy, ResourceDescriptor
from paygate.x402.replay import ProofUsageCache
from paygate.x402.types import PaymentOffer
from paygate.x402.verifier import (
    Admit,
    PaymentRequired,
    SettlementPolicy,
    Verifier,
    stamp_offer,
)

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED_MESSAGE = "Payment required"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


def describe_request(request: Request) -> ResourceDescriptor:
    return ResourceDescriptor(
        method=request.method.upper(),
        path=request.url.path,
        url=str(request.url),
    )


def create_402_response(
    offer: PaymentOffer,
    error_message: str = PAYMENT_REQUIRED_MESSAGE,
    stamp_secret: Optional[str] = None,
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    The body is the same for every rejection path: the offer, freshly
    stamped with its authenticated issuance time, and a generic message.
    """
    stamped = stamp_offer(offer, secret=stamp_secret)
    response_body = stamped.model_copy(update={"error": error_message}).model_dump(by_alias=True, mode="json")

    return JSONResponse(
        status_code=402,
        content=response_body,
        headers={"Content-Type": "application/json"}
    )


async def _read_body(response: Response) -> bytes:
    body = b""
    async for chunk in response.body_iterator:
        body += chunk
    return body


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    When X402_ENABLED=true, priced routes require a verified payment and
    everything else passes through unchanged. When X402_ENABLED=false, all
    requests pass through unchanged.
    """

    def __init__(
        self,
        app,
        facilitator_client: Optional[FacilitatorClient] = None,
        policy: Optional[RequirementPolicy] = None,
        verifier: Optional[Verifier] = None,
        settlement_policy: Optional[SettlementPolicy] = None,
    ):
        super().__init__(app)
        self._facilitator_client = facilitator_client
        self._policy = policy
        self._verifier = verifier
        self._settlement_policy = settlement_policy

    @property
    def policy(self) -> RequirementPolicy:
        """Lazy initialization of the requirement policy (raises ConfigError)."""
        if self._policy is None:
            self._policy = RequirementPolicy.from_settings(settings)
        return self._policy

    @property
    def verifier(self) -> Verifier:
        """Lazy initialization of the verifier."""
        if self._verifier is None:
            replay_cache = None
            if settings.X402_REPLAY_PROTECTION:
                replay_cache = ProofUsageCache(ttl_seconds=settings.X402_REPLAY_TTL_SECONDS)
            self._verifier = Verifier(
                self._facilitator_client or get_facilitator_client(),
                deadline=settings.X402_VERIFY_DEADLINE_SECONDS,
                replay_cache=replay_cache,
            )
        return self._verifier

    @property
    def settlement_policy(self) -> SettlementPolicy:
        if self._settlement_policy is None:
            self._settlement_policy = SettlementPolicy(settings.X402_SETTLEMENT_POLICY)
        return self._settlement_policy

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        """
        Process the request through the payment gate.

        Flow:
        1. Check if x402 is enabled and the route is priced
        2. Compute the offer and run the Verifier
        3. On rejection return the opaque 402
        4. On admission run the handler, then settle per policy
        """
        # Skip if x402 is disabled
        if not settings.X402_ENABLED:
            return await call_next(request)

        descriptor = describe_request(request)
        try:
            policy = self.policy
            if not policy.is_priced(descriptor):
                return await call_next(request)
            offer = policy.compute(descriptor)
        except Exception as e:
            logger.error(f"x402: Failed to compute payment requirements: {e}")
            audit.log_error(
                client_ip=get_client_ip(request),
                error_type=type(e).__name__,
                error_message=str(e),
                context={"method": descriptor.method, "path": descriptor.path},
            )
            return JSONResponse(
                status_code=503,
                content={"error": "Service temporarily unavailable"}
            )

        client_ip = get_client_ip(request)
        request_id = audit.generate_request_id()
        logger.info(f"x402: Processing priced request from {client_ip}: {request.method} {request.url.path}")

        outcome = await self.verifier.admit(request, offer, client_ip=client_ip, request_id=request_id)

        if isinstance(outcome, PaymentRequired):
            audit.log_payment_required_sent(
                client_ip=client_ip,
                resource=descriptor.url,
                options=[
                    {"scheme": o.scheme, "network": o.network, "amount": o.max_amount_required}
                    for o in offer.accepts
                ],
                request_id=request_id,
            )
            return create_402_response(offer, stamp_secret=self.verifier.stamp_secret)

        # Verified: the handler only runs after a successful verification
        response = await call_next(request)

        if not 200 <= response.status_code < 300:
            logger.info(f"x402: Handler returned {response.status_code}, payment not settled")
            if self.verifier.replay_cache is not None:
                self.verifier.replay_cache.forget(outcome.proof)
            return response

        body = await _read_body(response)

        if self.settlement_policy is SettlementPolicy.DEFERRED:
            return Response(
                content=body,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
                background=BackgroundTask(self._settle_in_background, outcome, client_ip, request_id),
            )

        receipt = await self.verifier.settle(outcome)
        audit.log_payment_settled(
            client_ip=client_ip,
            payer=outcome.payer,
            transaction=receipt.transaction,
            network=receipt.network,
            success=receipt.success,
            policy=SettlementPolicy.INLINE.value,
            error_reason=receipt.error_reason,
            request_id=request_id,
        )
        if not receipt.success:
            logger.warning(f"x402: Inline settlement failed for {outcome.payer}: {receipt.error_reason}")
            # Nothing was charged, so the proof may be presented again
            if self.verifier.replay_cache is not None:
                self.verifier.replay_cache.forget(outcome.proof)
            return create_402_response(offer, stamp_secret=self.verifier.stamp_secret)

        logger.info(f"x402: Payment settled successfully ({receipt.transaction})")
        new_response = Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type
        )
        new_response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_settlement_response(receipt)
        return new_response

    async def _settle_in_background(self, admitted: Admit, client_ip: str, request_id: str) -> None:
        receipt = await self.verifier.settle(admitted)
        audit.log_payment_settled(
            client_ip=client_ip,
            payer=admitted.payer,
            transaction=receipt.transaction,
            network=receipt.network,
            success=receipt.success,
            policy=SettlementPolicy.DEFERRED.value,
            error_reason=receipt.error_reason,
            request_id=request_id,
        )
        if receipt.success:
            logger.info(f"x402: Deferred settlement succeeded for {admitted.payer} ({receipt.transaction})")
        else:
            logger.error(f"x402: Deferred settlement failed for {admitted.payer}: {receipt.error_reason}")
