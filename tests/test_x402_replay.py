# tests/test_x402_replay.py
"""
Unit tests for the proof-usage cache.
"""
import threading
import time

from paygate.x402.replay import ProofUsageCache, proof_fingerprint

from conftest import make_proof


class TestProofFingerprint:
    def test_equal_proofs_share_fingerprint(self):
        assert proof_fingerprint(make_proof()) == proof_fingerprint(make_proof())

    def test_different_proofs_differ(self):
        assert proof_fingerprint(make_proof()) != proof_fingerprint(make_proof(transaction="0xother"))


class TestProofUsageCache:
    """Test the ProofUsageCache class."""

    def test_first_use_allowed(self):
        cache = ProofUsageCache(ttl_seconds=60)
        assert cache.check_and_mark(make_proof(), now=1000.0) is True
        assert len(cache) == 1

    def test_reuse_within_ttl_rejected(self):
        cache = ProofUsageCache(ttl_seconds=60)
        cache.check_and_mark(make_proof(), now=1000.0)
        assert cache.check_and_mark(make_proof(), now=1059.0) is False

    def test_reuse_after_ttl_allowed(self):
        cache = ProofUsageCache(ttl_seconds=60)
        cache.check_and_mark(make_proof(), now=1000.0)
        assert cache.check_and_mark(make_proof(), now=1060.0) is True

    def test_distinct_proofs_tracked_separately(self):
        cache = ProofUsageCache(ttl_seconds=60)
        assert cache.check_and_mark(make_proof(transaction="0x1"), now=1000.0) is True
        assert cache.check_and_mark(make_proof(transaction="0x2"), now=1000.0) is True

    def test_forget_allows_reuse(self):
        cache = ProofUsageCache(ttl_seconds=60)
        cache.check_and_mark(make_proof(), now=1000.0)
        cache.forget(make_proof())
        assert cache.check_and_mark(make_proof(), now=1001.0) is True

    def test_forget_unknown_proof(self):
        cache = ProofUsageCache()
        cache.forget(make_proof())
        assert len(cache) == 0

    def test_reset(self):
        cache = ProofUsageCache()
        cache.check_and_mark(make_proof())
        cache.reset()
        assert len(cache) == 0

    def test_cleanup_drops_expired_entries(self):
        cache = ProofUsageCache(ttl_seconds=10, cleanup_interval=0)
        start = time.time()
        cache.check_and_mark(make_proof(transaction="0x1"), now=start)
        cache.check_and_mark(make_proof(transaction="0x2"), now=start + 20)
        assert len(cache) == 1

    def test_concurrent_use_admits_once(self):
        """Only one of many simultaneous presentations wins."""
        cache = ProofUsageCache(ttl_seconds=60)
        results = []
        barrier = threading.Barrier(20)

        def present():
            barrier.wait()
            results.append(cache.check_and_mark(make_proof()))

        threads = [threading.Thread(target=present) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert len(results) == 20
