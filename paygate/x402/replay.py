# paygate/x402/replay.py
"""
Short-lived proof-usage cache.

Double-spend protection belongs to the ledger; this cache is an opt-in
extension (X402_REPLAY_PROTECTION) that refuses a proof already admitted
within the last X402_REPLAY_TTL_SECONDS, across all resources.

Proofs are tracked by the SHA-256 of their canonical JSON, in memory.
Thread-safe for concurrent access.
"""
import hashlib
import logging
import threading
import time
from typing import Dict, Optional

from paygate.x402.codec import canonical_json
from paygate.x402.types import PaymentProof

logger = logging.getLogger(__name__)


def proof_fingerprint(proof: PaymentProof) -> str:
    return hashlib.sha256(canonical_json(proof.model_dump(by_alias=True, mode="json")).encode("utf-8")).hexdigest()


class ProofUsageCache:
    """
    TTL set of proof fingerprints.

    Stale entries are swept at most once per ``cleanup_interval`` seconds.
    """

    def __init__(self, ttl_seconds: int = 600, cleanup_interval: int = 300):
        self._ttl_seconds = ttl_seconds
        self._cleanup_interval = cleanup_interval
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_cleanup = time.time()

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def check_and_mark(self, proof: PaymentProof, now: Optional[float] = None) -> bool:
        """
        Record ``proof`` as used.

        Returns:
            True if the proof is fresh, False if it was already used within the TTL
        """
        now = time.time() if now is None else now
        fingerprint = proof_fingerprint(proof)
        self._maybe_cleanup(now)

        with self._lock:
            used_at = self._seen.get(fingerprint)
            if used_at is not None and now - used_at < self._ttl_seconds:
                logger.warning(f"x402: Proof replay detected for payer {proof.payload.payer}")
                return False
            self._seen[fingerprint] = now
            return True

    def forget(self, proof: PaymentProof) -> None:
        """Drop a proof, e.g. when its admission did not lead to a settled payment."""
        with self._lock:
            self._seen.pop(proof_fingerprint(proof), None)

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()

    def _maybe_cleanup(self, now: float) -> None:
        with self._lock:
            if now - self._last_cleanup < self._cleanup_interval:
                return
            self._last_cleanup = now
            cutoff = now - self._ttl_seconds
            stale = [fp for fp, used_at in self._seen.items() if used_at <= cutoff]
            for fp in stale:
                del self._seen[fp]

        if stale:
            logger.debug(f"Cleaned up {len(stale)} expired proof fingerprints")
