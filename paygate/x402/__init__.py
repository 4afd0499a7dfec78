# paygate/x402/__init__.py
"""
x402 Payment Protocol core.

Pay-per-request access to HTTP resources: the server answers 402 with the
accepted payment options, the client pays and retries once with a proof.

Key components:
- pricing: RequirementPolicy, resource -> accepted payment options
- codec: X-PAYMENT / X-PAYMENT-RESPONSE header encoding
- verifier: server-side admit/reject state machine
- facilitator: remote verify/settle/supported client
- orchestrator: client-side request -> 402 -> pay -> retry driver
- schemes: payment scheme registry
- wallet: Signer and LedgerClient interfaces
- middleware: FastAPI integration
- replay: optional proof-usage cache
- audit: payment audit trail

Configuration is loaded from environment variables via paygate.core.config.
"""
from paygate.x402.codec import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER, decode, encode
from paygate.x402.errors import (
    ConfigError,
    DecodeError,
    FacilitatorUnavailable,
    InvalidPaymentRequired,
    LedgerSubmissionFailed,
    PaymentExpired,
    PaymentRejectedAfterRetry,
    SignerRejected,
    UnsupportedScheme,
    X402Error,
)
from paygate.x402.facilitator import FacilitatorClient
from paygate.x402.orchestrator import PaymentOrchestrator, settlement_receipt
from paygate.x402.pricing import RequirementPolicy, ResourceDescriptor
from paygate.x402.types import (
    AssetDescriptor,
    PaymentOffer,
    PaymentProof,
    PaymentRequirements,
    ProofPayload,
    SettlementReceipt,
    VerificationResult,
)
from paygate.x402.verifier import Admit, PaymentRequired, SettlementPolicy, Verifier
from paygate.x402.wallet import Confirmation, SignedTransfer, TransferIntent, TxRef, UserRejected

__all__ = [
    "Admit",
    "AssetDescriptor",
    "ConfigError",
    "Confirmation",
    "DecodeError",
    "FacilitatorClient",
    "FacilitatorUnavailable",
    "InvalidPaymentRequired",
    "LedgerSubmissionFailed",
    "PaymentExpired",
    "PaymentOffer",
    "PaymentOrchestrator",
    "PaymentProof",
    "PaymentRejectedAfterRetry",
    "PaymentRequired",
    "PaymentRequirements",
    "ProofPayload",
    "RequirementPolicy",
    "ResourceDescriptor",
    "SettlementPolicy",
    "SettlementReceipt",
    "SignedTransfer",
    "SignerRejected",
    "TransferIntent",
    "TxRef",
    "UnsupportedScheme",
    "UserRejected",
    "VerificationResult",
    "Verifier",
    "X402Error",
    "X_PAYMENT_HEADER",
    "X_PAYMENT_RESPONSE_HEADER",
    "decode",
    "encode",
    "settlement_receipt",
]
