# paygate/x402/orchestrator.py
"""
Client-side driver for paid requests.

PaymentOrchestrator.drive() turns a plain HTTP request into a paid one:

1. Send the request without a proof
2. Anything but 402 is returned untouched
3. Pick the first offered option the Signer supports (else UnsupportedScheme)
4. Sign, submit and confirm the transfer within maxTimeoutSeconds
5. Encode the proof and retry exactly once with the X-PAYMENT header
6. A second 402 is PaymentRejectedAfterRetry; anything else is returned

At most two requests reach the target URL per call. Errors are typed so the
calling application can tell a declined signature from a ledger outage.
"""
import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from paygate.x402.codec import (
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    decode_settlement_response,
    encode,
)
from paygate.x402.errors import (
    DecodeError,
    InvalidPaymentRequired,
    LedgerSubmissionFailed,
    PaymentExpired,
    PaymentRejectedAfterRetry,
    SignerRejected,
    UnsupportedScheme,
)
from paygate.x402.schemes import get_scheme, issuance_stamp
from paygate.x402.types import (
    X402_VERSION,
    PaymentOffer,
    PaymentProof,
    PaymentRequirements,
    SettlementReceipt,
)
from paygate.x402.wallet import LedgerClient, Signer, UserRejected

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED_STATUS = 402
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0


def parse_payment_offer(response: httpx.Response, url: Optional[str] = None) -> PaymentOffer:
    """
    Read the payment offer from a 402 response.

    Options that fail validation are skipped so one malformed entry does not
    hide the usable ones.

    Raises:
        InvalidPaymentRequired: if the body holds no usable option
    """
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise InvalidPaymentRequired("402 response body is not JSON", url=url) from e

    if not isinstance(body, dict) or not isinstance(body.get("accepts"), list):
        raise InvalidPaymentRequired("402 response body has no 'accepts' list", url=url)

    options: List[PaymentRequirements] = []
    for raw_option in body["accepts"]:
        try:
            options.append(PaymentRequirements.model_validate(raw_option))
        except ValidationError as e:
            logger.warning(f"x402: Skipping malformed payment option from {url}: {e.error_count()} error(s)")

    if not options:
        raise InvalidPaymentRequired("402 response offers no valid payment option", url=url)

    return PaymentOffer(
        x402_version=body.get("x402Version", X402_VERSION),
        error=body.get("error"),
        accepts=options,
    )


def settlement_receipt(response: httpx.Response) -> Optional[SettlementReceipt]:
    """The decoded X-PAYMENT-RESPONSE header of a paid response, if any."""
    header = response.headers.get(X_PAYMENT_RESPONSE_HEADER)
    if not header:
        return None
    try:
        return decode_settlement_response(header)
    except DecodeError:
        logger.warning("x402: Ignoring malformed X-PAYMENT-RESPONSE header")
        return None


class PaymentOrchestrator:
    """
    Drives request -> 402 -> pay -> retry.

    The Signer and LedgerClient are injected; the orchestrator never touches
    keys or ledger formats. Instances keep no per-call state, so concurrent
    drive() calls are independent and share only the HTTP connection pool.
    """

    def __init__(
        self,
        signer: Signer,
        ledger: LedgerClient,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.signer = signer
        self.ledger = ledger
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock

    async def __aenter__(self) -> "PaymentOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def select_option(self, offer: PaymentOffer, url: Optional[str] = None) -> PaymentRequirements:
        """
        First offered option with a registered scheme that the signer supports.

        Raises:
            UnsupportedScheme: if there is none
        """
        for option in offer.accepts:
            if get_scheme(option.scheme) is None:
                continue
            if self.signer.supports(option.scheme, option.network):
                return option

        offered = ", ".join(f"{o.scheme}/{o.network}" for o in offer.accepts)
        raise UnsupportedScheme(f"No supported payment option among: {offered}", url=url)

    async def drive(
        self,
        url: str,
        method: str = "GET",
        *,
        headers: Optional[Dict[str, str]] = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """
        Request ``url``, paying once if the server asks for it.

        ``request_kwargs`` go to ``httpx.AsyncClient.request``; request bodies
        must be replayable (bytes, str, json or form data, not streams).

        Raises:
            InvalidPaymentRequired, UnsupportedScheme, SignerRejected,
            LedgerSubmissionFailed, PaymentExpired, PaymentRejectedAfterRetry
        """
        headers = dict(headers or {})
        response = await self._client.request(method, url, headers=headers, **request_kwargs)
        if response.status_code != PAYMENT_REQUIRED_STATUS:
            return response

        received_at = self._clock()
        offer = parse_payment_offer(response, url=url)
        requirements = self.select_option(offer, url=url)
        logger.info(
            f"x402: {url} requires {requirements.max_amount_required} of {requirements.asset.address} "
            f"via {requirements.scheme}/{requirements.network}"
        )

        proof = await self._pay(url, requirements, deadline=received_at + requirements.max_timeout_seconds)

        headers[X_PAYMENT_HEADER] = encode(proof)
        retried = await self._client.request(method, url, headers=headers, **request_kwargs)
        if retried.status_code == PAYMENT_REQUIRED_STATUS:
            raise PaymentRejectedAfterRetry(
                f"{url} still requires payment after a proof was presented",
                url=url,
                requirements=requirements,
            )

        logger.info(f"x402: Paid request to {url} completed with status {retried.status_code}")
        return retried

    def _remaining(self, deadline: float, url: str, requirements: PaymentRequirements, step: str) -> float:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise PaymentExpired(
                f"Payment window of {requirements.max_timeout_seconds}s elapsed before {step}",
                url=url,
                requirements=requirements,
            )
        return remaining

    async def _pay(self, url: str, requirements: PaymentRequirements, deadline: float) -> PaymentProof:
        """Sign, submit and confirm a transfer, returning the proof to present."""
        try:
            issuance_stamp(requirements)
        except ValueError as e:
            # Must fail before anything is signed
            raise InvalidPaymentRequired(
                f"Unusable payment option from {url}: {e}", url=url, requirements=requirements
            ) from e

        strategy = get_scheme(requirements.scheme)
        intent = strategy.build_intent(requirements)

        remaining = self._remaining(deadline, url, requirements, "signing")
        try:
            signed = await asyncio.wait_for(self.signer.sign(intent), timeout=remaining)
        except UserRejected as e:
            raise SignerRejected(f"Signer declined payment for {url}: {e}", url=url, requirements=requirements) from e
        except asyncio.TimeoutError as e:
            raise PaymentExpired(
                f"Signer did not answer within the payment window for {url}",
                url=url,
                requirements=requirements,
            ) from e

        remaining = self._remaining(deadline, url, requirements, "submission")
        try:
            tx_ref = await asyncio.wait_for(self.ledger.submit(signed), timeout=remaining)
        except asyncio.TimeoutError as e:
            raise PaymentExpired(
                f"Ledger submission did not finish within the payment window for {url}",
                url=url,
                requirements=requirements,
            ) from e
        except Exception as e:
            raise LedgerSubmissionFailed(
                f"Ledger submission failed for {url}: {e}", url=url, requirements=requirements
            ) from e

        remaining = self._remaining(deadline, url, requirements, "confirmation")
        try:
            confirmation = await asyncio.wait_for(self.ledger.confirm(tx_ref, remaining), timeout=remaining)
        except asyncio.TimeoutError as e:
            raise PaymentExpired(
                f"Transfer {tx_ref.reference} not confirmed within the payment window",
                url=url,
                requirements=requirements,
            ) from e
        except Exception as e:
            raise LedgerSubmissionFailed(
                f"Confirming transfer {tx_ref.reference} failed: {e}", url=url, requirements=requirements
            ) from e

        if not confirmation.accepted:
            raise LedgerSubmissionFailed(
                f"Ledger did not accept transfer {tx_ref.reference}: {confirmation.detail or 'no detail'}",
                url=url,
                requirements=requirements,
            )

        payload = strategy.build_payload(signed, tx_ref, requirements)
        self._remaining(deadline, url, requirements, "presenting the proof")
        logger.info(f"x402: Transfer {tx_ref.reference} confirmed for payer {signed.payer}")
        return PaymentProof(
            x402_version=X402_VERSION,
            scheme=requirements.scheme,
            network=requirements.network,
            payload=payload,
        )
