# tests/conftest.py
"""
Shared fixtures and fakes for the x402 test suite.
"""
from typing import List, Optional, Tuple
from unittest.mock import MagicMock, AsyncMock

import pytest

from paygate.core.config import settings
from paygate.x402.pricing import RequirementPolicy, ResourceDescriptor
from paygate.x402.types import (
    PaymentProof,
    ProofPayload,
    SettlementReceipt,
    VerificationResult,
)
from paygate.x402.verifier import stamp_offer
from paygate.x402.wallet import Confirmation, SignedTransfer, TransferIntent, TxRef, UserRejected

PAY_TO = "0x1234567890abcdef1234567890abcdef12345678"
PAYER = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
USDC_BASE_SEPOLIA = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


@pytest.fixture(autouse=True)
def audit_log_in_tmp(tmp_path, monkeypatch):
    """Keep audit events out of the working tree."""
    monkeypatch.setattr(settings, "X402_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
    return tmp_path / "audit.jsonl"


def make_policy(
    price_table=None,
    networks=("base-sepolia",),
    schemes=("exact",),
    max_timeout_seconds=300,
) -> RequirementPolicy:
    return RequirementPolicy(
        price_table=price_table if price_table is not None else {"GET /api/v1/resources": "0.01"},
        pay_to=PAY_TO,
        networks=list(networks),
        asset_addresses={
            "base-sepolia": USDC_BASE_SEPOLIA,
            "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
            "X": "0xasset-x",
            "Y": "0xasset-y",
        },
        schemes=list(schemes),
        max_timeout_seconds=max_timeout_seconds,
    )


def make_descriptor(path="/api/v1/resources/weather", method="GET") -> ResourceDescriptor:
    return ResourceDescriptor(method=method, path=path, url=f"http://testserver{path}")


def make_proof(scheme="exact", network="base-sepolia", **payload_fields) -> PaymentProof:
    fields = {"signature_or_authorization": "0xsigned", "payer": PAYER}
    fields.update(payload_fields)
    return PaymentProof(scheme=scheme, network=network, payload=ProofPayload(**fields))


def make_stamped_proof(
    path="/api/v1/resources/weather",
    network="base-sepolia",
    now=None,
    secret=None,
    **payload_fields,
) -> PaymentProof:
    """A proof echoing the issuance stamp a 402 for ``path`` would carry."""
    the_offer = stamp_offer(make_policy(networks=(network,)).compute(make_descriptor(path)), now=now, secret=secret)
    requirements = the_offer.find("exact", network)
    fields = {
        "requirements_issued_at": requirements.extra["issuedAt"],
        "requirements_issued_at_mac": requirements.extra["issuedAtMac"],
    }
    fields.update(payload_fields)
    return make_proof("exact", network, **fields)


def make_facilitator(
    valid: bool = True,
    invalid_reason: Optional[str] = None,
    settle_success: bool = True,
) -> MagicMock:
    facilitator = MagicMock()
    facilitator.verify = AsyncMock(
        return_value=VerificationResult(
            is_valid=valid,
            invalid_reason=invalid_reason,
            payer=PAYER if valid else None,
        )
    )
    facilitator.settle = AsyncMock(
        return_value=SettlementReceipt(
            success=settle_success,
            network="base-sepolia",
            transaction="0xtxhash" if settle_success else None,
            payer=PAYER,
            error_reason=None if settle_success else "insufficient_funds",
        )
    )
    return facilitator


class FakeRequest:
    """Anything with a headers mapping is a request to the Verifier."""

    def __init__(self, headers=None):
        self.headers = headers or {}


class FakeSigner:
    def __init__(self, supported: List[Tuple[str, str]], reject: bool = False):
        self.supported = set(supported)
        self.reject = reject
        self.intents: List[TransferIntent] = []

    def supports(self, scheme: str, network: str) -> bool:
        return (scheme, network) in self.supported

    async def sign(self, intent: TransferIntent) -> SignedTransfer:
        self.intents.append(intent)
        if self.reject:
            raise UserRejected("user declined")
        return SignedTransfer(intent=intent, payer=PAYER, signature_or_authorization="0xsigned")


class FakeLedger:
    def __init__(self, accept: bool = True, submit_error: Optional[Exception] = None):
        self.accept = accept
        self.submit_error = submit_error
        self.submitted: List[SignedTransfer] = []
        self.confirmed: List[TxRef] = []

    async def submit(self, signed: SignedTransfer) -> TxRef:
        self.submitted.append(signed)
        if self.submit_error is not None:
            raise self.submit_error
        return TxRef(network=signed.intent.network, reference="0xtxhash")

    async def confirm(self, tx_ref: TxRef, timeout: float) -> Confirmation:
        self.confirmed.append(tx_ref)
        return Confirmation(tx_ref=tx_ref, accepted=self.accept, detail=None if self.accept else "reverted")
