# tests/test_config.py
"""
Tests for environment-driven settings.
"""
import pytest
from pydantic import ValidationError

from paygate.core.config import Settings


def make_settings(monkeypatch, **env):
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return Settings(_env_file=None)


class TestSettings:
    def test_defaults(self, monkeypatch):
        config = make_settings(monkeypatch)
        assert config.X402_ENABLED is True
        assert config.networks == ["base-sepolia"]
        assert config.schemes == ["exact"]
        assert config.X402_SETTLEMENT_POLICY == "inline"
        assert config.X402_REPLAY_PROTECTION is False

    def test_comma_separated_networks(self, monkeypatch):
        config = make_settings(monkeypatch, X402_NETWORKS="base, base-sepolia,")
        assert config.networks == ["base", "base-sepolia"]

    def test_price_table_from_json(self, monkeypatch):
        config = make_settings(monkeypatch, X402_PRICE_TABLE='{"POST /api/v1/upload": "0.25"}')
        assert config.X402_PRICE_TABLE == {"POST /api/v1/upload": "0.25"}

    @pytest.mark.parametrize("raw,expected", [("0.1", 1.0), ("8", 8.0), ("120", 30.0)])
    def test_facilitator_timeout_clamped(self, monkeypatch, raw, expected):
        config = make_settings(monkeypatch, X402_FACILITATOR_TIMEOUT_SECONDS=raw)
        assert config.X402_FACILITATOR_TIMEOUT_SECONDS == expected

    def test_settlement_policy_normalized(self, monkeypatch):
        config = make_settings(monkeypatch, X402_SETTLEMENT_POLICY=" Deferred ")
        assert config.X402_SETTLEMENT_POLICY == "deferred"

    def test_unknown_settlement_policy(self, monkeypatch):
        with pytest.raises(ValidationError):
            make_settings(monkeypatch, X402_SETTLEMENT_POLICY="eventually")

    def test_stamp_secret_generated_when_unset(self, monkeypatch):
        monkeypatch.delenv("X402_STAMP_SECRET", raising=False)
        first, second = make_settings(monkeypatch), make_settings(monkeypatch)
        assert len(first.X402_STAMP_SECRET) == 64
        assert first.X402_STAMP_SECRET != second.X402_STAMP_SECRET

    def test_stamp_secret_from_env(self, monkeypatch):
        config = make_settings(monkeypatch, X402_STAMP_SECRET="shared-by-all-workers")
        assert config.X402_STAMP_SECRET == "shared-by-all-workers"

    def test_blank_stamp_secret_rejected(self, monkeypatch):
        with pytest.raises(ValidationError):
            make_settings(monkeypatch, X402_STAMP_SECRET="  ")
