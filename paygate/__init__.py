# paygate/__init__.py
"""
paygate: pay-per-request resource access over HTTP 402.

The server side gates routes behind programmatic payment requirements and
verifies payment proofs through a facilitator; the client side pays and
retries automatically. See paygate.x402 for the protocol core.
"""

__version__ = "0.1.0"
