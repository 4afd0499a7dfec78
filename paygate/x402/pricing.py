# paygate/x402/pricing.py
"""
Requirement policy: maps a requested resource to its accepted payment options.

The policy is a pure function of static configuration:
1. Find the price rule for the request (method + longest matching path prefix)
2. Convert the USD price to the asset's smallest unit (Decimal, never float)
3. Emit one PaymentRequirements per configured scheme x network

Configuration is loaded from paygate/core/config.py:
- X402_PRICE_TABLE: "METHOD /path-prefix" -> USD price
- X402_NETWORKS / X402_SCHEMES: advertised options
- X402_PAY_TO_ADDRESS, X402_ASSET_ADDRESSES, X402_ASSET_DECIMALS
- X402_MAX_TIMEOUT_SECONDS
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional, Sequence

from paygate.core.config import Settings, settings as default_settings
from paygate.x402.errors import ConfigError
from paygate.x402.schemes import get_scheme, registered_schemes
from paygate.x402.types import (
    X402_VERSION,
    AssetDescriptor,
    PaymentOffer,
    PaymentRequirements,
    to_smallest_units,
)

logger = logging.getLogger(__name__)

ANY_METHOD = "*"


@dataclass(frozen=True)
class ResourceDescriptor:
    """The parts of a request that pricing depends on."""
    method: str
    path: str
    url: str
    description: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass(frozen=True)
class PriceRule:
    method: str
    path_prefix: str
    price_usd: Decimal
    amount: str  # smallest unit

    def matches(self, method: str, path: str) -> bool:
        if self.method != ANY_METHOD and self.method != method.upper():
            return False
        path = path.rstrip("/") or "/"
        if self.path_prefix == "/":
            return True
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")


def parse_price_table(table: Mapping[str, str], decimals: int) -> List[PriceRule]:
    """
    Parse "METHOD /path-prefix" -> USD price entries.

    Rules are returned longest prefix first so the most specific one wins.

    Raises:
        ConfigError: on malformed keys or prices that are not positive decimals
    """
    rules = []
    for key, raw_price in table.items():
        parts = key.split()
        if len(parts) != 2 or not parts[1].startswith("/"):
            raise ConfigError(f"Price table key must look like 'METHOD /path', got '{key}'")
        method, prefix = parts[0].upper(), parts[1].rstrip("/") or "/"

        try:
            price = Decimal(str(raw_price))
            amount = to_smallest_units(price, decimals)
        except (InvalidOperation, ValueError) as e:
            raise ConfigError(f"Invalid price for '{key}': {e}") from e

        rules.append(PriceRule(method=method, path_prefix=prefix, price_usd=price, amount=amount))

    rules.sort(key=lambda rule: (len(rule.path_prefix), rule.method != ANY_METHOD), reverse=True)
    return rules


class RequirementPolicy:
    """
    Computes payment requirements for priced resources.

    Instances hold only immutable configuration, so one policy can serve any
    number of concurrent requests.
    """

    def __init__(
        self,
        price_table: Mapping[str, str],
        pay_to: str,
        networks: Sequence[str],
        asset_addresses: Mapping[str, str],
        schemes: Sequence[str] = ("exact",),
        asset_decimals: int = 6,
        max_timeout_seconds: int = 300,
        default_mime_type: str = "application/json",
        default_description: str = "Paid resource",
    ):
        if not pay_to or not pay_to.strip():
            raise ConfigError("X402_PAY_TO_ADDRESS must be configured")
        if not networks:
            raise ConfigError("At least one network must be configured")
        if not schemes:
            raise ConfigError("At least one scheme must be configured")
        for scheme in schemes:
            if get_scheme(scheme) is None:
                raise ConfigError(
                    f"Unknown payment scheme '{scheme}' (registered: {', '.join(registered_schemes())})"
                )
        for network in networks:
            if network not in asset_addresses:
                raise ConfigError(f"No asset address configured for network '{network}'")
        if max_timeout_seconds <= 0:
            raise ConfigError("X402_MAX_TIMEOUT_SECONDS must be positive")

        self._rules = parse_price_table(price_table, asset_decimals)
        self._pay_to = pay_to.strip()
        self._networks = tuple(networks)
        self._schemes = tuple(schemes)
        self._asset_addresses: Dict[str, str] = dict(asset_addresses)
        self._asset_decimals = asset_decimals
        self._max_timeout_seconds = max_timeout_seconds
        self._default_mime_type = default_mime_type
        self._default_description = default_description

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "RequirementPolicy":
        config = config or default_settings
        return cls(
            price_table=config.X402_PRICE_TABLE,
            pay_to=config.X402_PAY_TO_ADDRESS,
            networks=config.networks,
            asset_addresses=config.X402_ASSET_ADDRESSES,
            schemes=config.schemes,
            asset_decimals=config.X402_ASSET_DECIMALS,
            max_timeout_seconds=config.X402_MAX_TIMEOUT_SECONDS,
            default_mime_type=config.X402_DEFAULT_MIME_TYPE,
        )

    @property
    def rules(self) -> List[PriceRule]:
        return list(self._rules)

    def price_for(self, descriptor: ResourceDescriptor) -> Optional[PriceRule]:
        """Return the most specific matching price rule, or None for free resources."""
        for rule in self._rules:
            if rule.matches(descriptor.method, descriptor.path):
                return rule
        return None

    def is_priced(self, descriptor: ResourceDescriptor) -> bool:
        return self.price_for(descriptor) is not None

    def compute(self, descriptor: ResourceDescriptor) -> PaymentOffer:
        """
        Build the payment offer for a priced resource.

        Deterministic: identical descriptors and configuration give equal offers.

        Raises:
            LookupError: if the resource has no price rule
        """
        rule = self.price_for(descriptor)
        if rule is None:
            raise LookupError(f"No price configured for {descriptor.method} {descriptor.path}")

        accepts = [
            PaymentRequirements(
                scheme=scheme,
                network=network,
                max_amount_required=rule.amount,
                resource=descriptor.url,
                description=descriptor.description or self._default_description,
                mime_type=descriptor.mime_type or self._default_mime_type,
                pay_to=self._pay_to,
                max_timeout_seconds=self._max_timeout_seconds,
                asset=AssetDescriptor(
                    address=self._asset_addresses[network],
                    decimals=self._asset_decimals,
                ),
                extra={},
            )
            for scheme in self._schemes
            for network in self._networks
        ]

        logger.debug(
            f"x402: {len(accepts)} payment option(s) for {descriptor.method} {descriptor.path} "
            f"at {rule.amount} smallest units (${rule.price_usd})"
        )
        return PaymentOffer(x402_version=X402_VERSION, accepts=accepts)
