# paygate/core/config.py
import secrets
from typing import Dict, List

from pydantic import AnyHttpUrl, Field, field_validator  # AnyHttpUrl stays in pydantic core
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

# USDC contract addresses by network
DEFAULT_ASSET_ADDRESSES = {
    "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "base-sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
}


class Settings(BaseSettings):
    PROJECT_NAME: str = "Paygate Resource Server"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Payment gate
    X402_ENABLED: bool = True
    X402_FACILITATOR_URL: AnyHttpUrl = "https://x402.org/facilitator"
    X402_FACILITATOR_TIMEOUT_SECONDS: float = 8.0
    X402_VERIFY_DEADLINE_SECONDS: float = 10.0

    # Advertised payment options
    X402_NETWORKS: str = "base-sepolia"  # comma separated
    X402_SCHEMES: str = "exact"  # comma separated
    X402_PAY_TO_ADDRESS: str = ""
    X402_ASSET_ADDRESSES: Dict[str, str] = DEFAULT_ASSET_ADDRESSES
    X402_ASSET_DECIMALS: int = 6
    X402_MAX_TIMEOUT_SECONDS: int = 300

    # Key for the MAC on each offer's issuedAt stamp. Set it explicitly when
    # several workers or replicas serve the same resources.
    X402_STAMP_SECRET: str = Field(default_factory=lambda: secrets.token_hex(32))

    # Price table: "METHOD /path-prefix" -> price in USD (decimal string)
    X402_PRICE_TABLE: Dict[str, str] = {"GET /api/v1/resources": "0.01"}
    X402_DEFAULT_MIME_TYPE: str = "application/json"

    # "inline" settles before responding, "deferred" settles after the response is sent
    X402_SETTLEMENT_POLICY: str = "inline"

    # Optional proof-usage cache
    X402_REPLAY_PROTECTION: bool = False
    X402_REPLAY_TTL_SECONDS: int = 600

    # Audit trail
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    @field_validator("X402_FACILITATOR_TIMEOUT_SECONDS")
    @classmethod
    def clamp_facilitator_timeout(cls, value: float) -> float:
        return min(max(value, 1.0), 30.0)

    @field_validator("X402_STAMP_SECRET")
    @classmethod
    def check_stamp_secret(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("X402_STAMP_SECRET must not be empty")
        return value

    @field_validator("X402_SETTLEMENT_POLICY")
    @classmethod
    def check_settlement_policy(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("inline", "deferred"):
            raise ValueError("X402_SETTLEMENT_POLICY must be 'inline' or 'deferred'")
        return value

    @property
    def networks(self) -> List[str]:
        return [n.strip() for n in self.X402_NETWORKS.split(",") if n.strip()]

    @property
    def schemes(self) -> List[str]:
        return [s.strip() for s in self.X402_SCHEMES.split(",") if s.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
