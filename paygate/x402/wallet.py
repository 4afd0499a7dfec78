# paygate/x402/wallet.py
"""
Narrow interfaces to the signing and ledger collaborators.

The protocol core never holds keys or builds ledger-specific transactions:
it hands a TransferIntent to an injected Signer and the resulting
SignedTransfer to an injected LedgerClient. Wallet discovery, key custody
and transaction binary formats live behind these protocols.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Union

from paygate.x402.errors import X402Error


@dataclass(frozen=True)
class TransferIntent:
    """What the payer is asked to authorize."""
    scheme: str
    network: str
    pay_to: str
    asset: str
    amount: str  # smallest unit, decimal string
    resource: str
    valid_before: int  # unix seconds
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SignedTransfer:
    intent: TransferIntent
    payer: str
    signature_or_authorization: Union[str, bytes, Dict[str, Any]]  # bytes are sent as 0x hex


@dataclass(frozen=True)
class TxRef:
    network: str
    reference: str


@dataclass(frozen=True)
class Confirmation:
    tx_ref: TxRef
    accepted: bool
    detail: Optional[str] = None


class UserRejected(X402Error):
    """Raised by a Signer when the user or agent declines to sign."""


class Signer(Protocol):
    def supports(self, scheme: str, network: str) -> bool:
        ...

    async def sign(self, intent: TransferIntent) -> SignedTransfer:
        """Authorize the transfer or raise UserRejected."""
        ...


class LedgerClient(Protocol):
    async def submit(self, signed: SignedTransfer) -> TxRef:
        ...

    async def confirm(self, tx_ref: TxRef, timeout: float) -> Confirmation:
        """Wait up to ``timeout`` seconds; may raise asyncio.TimeoutError."""
        ...
