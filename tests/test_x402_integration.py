# tests/test_x402_integration.py
"""
Integration tests for the x402 payment flow.

A PaymentOrchestrator drives requests against the paygate FastAPI app
(over httpx.ASGITransport). The app verifies and settles through a real
FacilitatorClient whose HTTP is served by httpx.MockTransport, so every
hop is exercised without network access or a ledger.
"""
import asyncio
import json
from unittest.mock import patch

import httpx
import pytest
from fastapi import FastAPI

from paygate.api.endpoints import resources
from paygate.x402.audit import AuditEventType, read_audit_log
from paygate.x402.errors import PaymentRejectedAfterRetry, UnsupportedScheme
from paygate.x402.facilitator import FacilitatorClient
from paygate.x402.middleware import X402Middleware
from paygate.x402.orchestrator import PaymentOrchestrator, settlement_receipt
from paygate.x402.verifier import SettlementPolicy, Verifier

from conftest import PAY_TO, PAYER, FakeLedger, FakeSigner, make_policy

BASE_URL = "http://testserver"
WEATHER = f"{BASE_URL}/api/v1/resources/weather"


class FakeFacilitator:
    """Facilitator HTTP API backed by a set of accepted payers."""

    def __init__(self, accepted_payers=(PAYER,), settle_success=True):
        self.accepted_payers = set(accepted_payers)
        self.settle_success = settle_success
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        body = json.loads(request.content)
        payload = body["paymentPayload"]["payload"]
        requirements = body["paymentRequirements"]

        if request.url.path == "/verify":
            ok = payload["payer"] in self.accepted_payers and requirements["payTo"] == PAY_TO
            return httpx.Response(200, json={
                "isValid": ok,
                "invalidReason": None if ok else "invalid_signature",
                "payer": payload["payer"],
            })

        if request.url.path == "/settle":
            return httpx.Response(200, json={
                "success": self.settle_success,
                "transaction": payload.get("transaction"),
                "network": requirements["network"],
                "payer": payload["payer"],
                "errorReason": None if self.settle_success else "settlement_reverted",
            })

        return httpx.Response(404)


def create_test_app(facilitator: FakeFacilitator, settlement_policy=SettlementPolicy.INLINE, networks=("base-sepolia",)):
    facilitator_client = FacilitatorClient(
        "https://facilitator.test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(facilitator)),
    )
    app = FastAPI()
    app.add_middleware(
        X402Middleware,
        policy=make_policy(networks=networks),
        verifier=Verifier(facilitator_client),
        settlement_policy=settlement_policy,
    )
    app.include_router(resources.router, prefix="/api/v1/resources")

    @app.get("/")
    async def root():
        return {"status": "ok"}

    return app


def make_orchestrator(app, signer=None, ledger=None):
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)
    return PaymentOrchestrator(
        signer or FakeSigner([("exact", "base-sepolia")]),
        ledger or FakeLedger(),
        client=client,
    )


def drive(orchestrator, url=WEATHER):
    return asyncio.run(orchestrator.drive(url))


@patch("paygate.x402.middleware.settings")
class TestEndToEnd:
    """Client and server halves working together."""

    def test_paid_request_inline(self, mock_settings):
        """Request, 402, pay, retry, 200 with a settlement receipt."""
        mock_settings.X402_ENABLED = True
        facilitator = FakeFacilitator()
        ledger = FakeLedger()

        response = drive(make_orchestrator(create_test_app(facilitator), ledger=ledger))

        assert response.status_code == 200
        assert response.json()["name"] == "weather"
        receipt = settlement_receipt(response)
        assert receipt.success is True
        assert receipt.transaction == "0xtxhash"
        assert receipt.network == "base-sepolia"
        assert facilitator.calls == ["/verify", "/settle"]
        assert ledger.submitted[0].intent.amount == "10000"

    def test_paid_request_deferred(self, mock_settings):
        mock_settings.X402_ENABLED = True
        facilitator = FakeFacilitator()

        response = drive(make_orchestrator(create_test_app(facilitator, SettlementPolicy.DEFERRED)))

        assert response.status_code == 200
        assert settlement_receipt(response) is None
        assert facilitator.calls == ["/verify", "/settle"]

    def test_free_route_not_paid(self, mock_settings):
        mock_settings.X402_ENABLED = True
        facilitator = FakeFacilitator()
        signer = FakeSigner([("exact", "base-sepolia")])

        response = drive(make_orchestrator(create_test_app(facilitator), signer=signer), url=f"{BASE_URL}/")

        assert response.status_code == 200
        assert signer.intents == []
        assert facilitator.calls == []

    def test_missing_resource_not_charged(self, mock_settings):
        mock_settings.X402_ENABLED = True
        facilitator = FakeFacilitator()

        response = drive(
            make_orchestrator(create_test_app(facilitator)),
            url=f"{BASE_URL}/api/v1/resources/nothing",
        )

        assert response.status_code == 404
        assert facilitator.calls == ["/verify"]

    def test_rejected_payment_after_retry(self, mock_settings):
        """A payer the facilitator refuses ends in PaymentRejectedAfterRetry."""
        mock_settings.X402_ENABLED = True
        facilitator = FakeFacilitator(accepted_payers=())

        with pytest.raises(PaymentRejectedAfterRetry) as exc_info:
            drive(make_orchestrator(create_test_app(facilitator)))

        assert exc_info.value.url == WEATHER
        assert facilitator.calls == ["/verify"]

    def test_inline_settlement_failure(self, mock_settings):
        mock_settings.X402_ENABLED = True
        facilitator = FakeFacilitator(settle_success=False)

        with pytest.raises(PaymentRejectedAfterRetry):
            drive(make_orchestrator(create_test_app(facilitator)))

    def test_unsupported_network_never_pays(self, mock_settings):
        mock_settings.X402_ENABLED = True
        facilitator = FakeFacilitator()
        ledger = FakeLedger()

        with pytest.raises(UnsupportedScheme):
            drive(make_orchestrator(
                create_test_app(facilitator, networks=("X",)),
                signer=FakeSigner([("exact", "Y")]),
                ledger=ledger,
            ))

        assert ledger.submitted == []
        assert facilitator.calls == []

    def test_audit_trail(self, mock_settings):
        """A paid request leaves one correlated trail in the audit log."""
        mock_settings.X402_ENABLED = True

        drive(make_orchestrator(create_test_app(FakeFacilitator())))

        events = list(reversed(read_audit_log()))
        kinds = [e["event_type"] for e in events]
        assert kinds == [
            AuditEventType.PAYMENT_REQUIRED_SENT.value,
            AuditEventType.PAYMENT_RECEIVED.value,
            AuditEventType.PAYMENT_VERIFIED.value,
            AuditEventType.PAYMENT_SETTLED.value,
        ]
        paid = events[1:]
        assert len({e["request_id"] for e in paid}) == 1
        assert paid[-1]["data"]["transaction"] == "0xtxhash"
