# paygate/x402/facilitator.py
"""
HTTP client for the x402 facilitator.

The facilitator exposes three endpoints:
- POST /verify: check a proof against requirements without moving funds
- POST /settle: finalize the payment on the ledger
- GET /supported: list the (scheme, network) kinds it handles

Every call is bounded by ``timeout``. verify() and settle() never raise on
transport problems: they resolve to a failed result so no caller can mistake
an outage for success.
"""
import asyncio
import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from paygate.core.config import settings
from paygate.x402.errors import FacilitatorUnavailable
from paygate.x402.types import (
    X402_VERSION,
    PaymentProof,
    PaymentRequirements,
    SettlementReceipt,
    SupportedKind,
    VerificationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8.0

FACILITATOR_UNAVAILABLE = "facilitator_unavailable"
INVALID_FACILITATOR_RESPONSE = "invalid_facilitator_response"


def build_facilitator_request(proof: PaymentProof, requirements: PaymentRequirements) -> Dict[str, Any]:
    """Body shared by /verify and /settle."""
    return {
        "x402Version": X402_VERSION,
        "paymentPayload": proof.model_dump(by_alias=True, mode="json"),
        "paymentRequirements": requirements.model_dump(by_alias=True, mode="json"),
    }


class FacilitatorClient:
    """
    Thin async wrapper around the facilitator endpoints.

    Pass a shared ``httpx.AsyncClient`` to reuse one connection pool across
    many concurrent requests; otherwise the instance owns its own client and
    should be closed with :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def __aenter__(self) -> "FacilitatorClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request_json(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await asyncio.wait_for(
                self._client.request(method, url, json=body, timeout=self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise FacilitatorUnavailable(f"Facilitator at {url} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise FacilitatorUnavailable(f"Facilitator at {url} unreachable: {e}") from e

        if response.status_code >= 400:
            raise FacilitatorUnavailable(
                f"Facilitator responded with {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise FacilitatorUnavailable(f"Failed to parse JSON from facilitator at {url}") from e

    async def verify(self, proof: PaymentProof, requirements: PaymentRequirements) -> VerificationResult:
        """Ask the facilitator whether ``proof`` satisfies ``requirements``."""
        logger.info(f"x402: Submitting payment for verification to {self.base_url}/verify")
        try:
            data = await self._request_json("POST", "/verify", build_facilitator_request(proof, requirements))
        except FacilitatorUnavailable as e:
            logger.warning(f"x402: Verification unavailable: {e}")
            return VerificationResult(is_valid=False, invalid_reason=FACILITATOR_UNAVAILABLE)

        try:
            return VerificationResult.model_validate(data)
        except ValidationError:
            logger.warning(f"x402: Unexpected verify response: {data!r:.200}")
            return VerificationResult(is_valid=False, invalid_reason=INVALID_FACILITATOR_RESPONSE)

    async def settle(self, proof: PaymentProof, requirements: PaymentRequirements) -> SettlementReceipt:
        """Finalize the payment; failures resolve to ``success=False``."""
        logger.info(f"x402: Submitting payment for settlement to {self.base_url}/settle")
        try:
            data = await self._request_json("POST", "/settle", build_facilitator_request(proof, requirements))
        except FacilitatorUnavailable as e:
            logger.warning(f"x402: Settlement unavailable: {e}")
            return SettlementReceipt(
                success=False,
                network=requirements.network,
                error_reason=FACILITATOR_UNAVAILABLE,
            )

        try:
            receipt = SettlementReceipt.model_validate(data)
        except ValidationError:
            logger.warning(f"x402: Unexpected settle response: {data!r:.200}")
            return SettlementReceipt(
                success=False,
                network=requirements.network,
                error_reason=INVALID_FACILITATOR_RESPONSE,
            )
        if receipt.network is None:
            receipt = receipt.model_copy(update={"network": requirements.network})
        return receipt

    async def supported(self) -> List[SupportedKind]:
        """
        List the payment kinds the facilitator handles.

        Raises:
            FacilitatorUnavailable: on timeout, transport error or malformed body
        """
        data = await self._request_json("GET", "/supported")
        kinds = data.get("kinds") if isinstance(data, dict) else data
        if not isinstance(kinds, list):
            raise FacilitatorUnavailable("Facilitator /supported response has no 'kinds' list")
        try:
            return [SupportedKind.model_validate(kind) for kind in kinds]
        except ValidationError as e:
            raise FacilitatorUnavailable("Facilitator /supported response is malformed") from e


@lru_cache()
def get_facilitator_client() -> FacilitatorClient:
    """Process-wide facilitator client sharing one connection pool."""
    return FacilitatorClient(
        str(settings.X402_FACILITATOR_URL),
        timeout=settings.X402_FACILITATOR_TIMEOUT_SECONDS,
    )
