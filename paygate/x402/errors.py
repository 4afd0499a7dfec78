# paygate/x402/errors.py
"""
Error taxonomy for the x402 payment protocol.

Server-side failures never leave the Verifier as exceptions: they collapse to
an opaque 402. The client-side errors below are raised by the
PaymentOrchestrator so calling applications can react to each case.
"""
from typing import Optional

from paygate.x402.types import PaymentRequirements


class X402Error(Exception):
    """Base class for x402 protocol errors."""


class ConfigError(X402Error):
    """Raised when the payment configuration is invalid."""


class DecodeError(X402Error, ValueError):
    """Raised when an X-PAYMENT token cannot be decoded into a proof."""


class FacilitatorUnavailable(X402Error):
    """Raised when the facilitator cannot be reached or answers garbage."""


class PaymentFlowError(X402Error):
    """Base class for terminal errors raised while driving a paid request."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        requirements: Optional[PaymentRequirements] = None,
    ):
        super().__init__(message)
        self.url = url
        self.requirements = requirements


class InvalidPaymentRequired(PaymentFlowError):
    """The server answered 402 with a body that is not a payment offer."""


class UnsupportedScheme(PaymentFlowError):
    """No advertised option matches a scheme/network the signer supports."""


class SignerRejected(PaymentFlowError):
    """The signer declined to authorize the transfer."""


class LedgerSubmissionFailed(PaymentFlowError):
    """Submitting or confirming the transfer failed. Retryable by the caller."""


class PaymentExpired(PaymentFlowError):
    """The requirements' maxTimeoutSeconds elapsed before a proof was ready."""


class PaymentRejectedAfterRetry(PaymentFlowError):
    """The server still answered 402 after a proof was presented."""
