"""
aarelay Configuration

All values are read from environment variables prefixed with ``AARELAY_``.
Module-level constants hold the process defaults; ``RelayConfig`` bundles
them so an EntryPoint can be built with explicit, per-instance settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .relay_exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Canonical ERC-4337 v0.6 EntryPoint deployment address
DEFAULT_ENTRY_POINT_ADDRESS = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"


def _get_int(env_var: str, default: int, minimum: int = 0) -> int:
    """Read a non-negative integer from the environment."""
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw, 0)
    except ValueError:
        raise ConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            details={"env_var": env_var, "value": raw},
        )
    if value < minimum:
        raise ConfigurationError(
            f"{env_var} must be >= {minimum}, got {value}",
            details={"env_var": env_var, "value": value},
        )
    return value


CHAIN_ID = _get_int("AARELAY_CHAIN_ID", 1, minimum=1)
ENTRY_POINT_ADDRESS = os.getenv("AARELAY_ENTRY_POINT_ADDRESS", DEFAULT_ENTRY_POINT_ADDRESS).strip()

# Host block base fee used to derive the effective gas price
BASE_FEE = _get_int("AARELAY_BASE_FEE", 0)

# Fixed gas charged for each guarded collaborator validation call
ACCOUNT_VALIDATION_GAS = _get_int("AARELAY_ACCOUNT_VALIDATION_GAS", 10_000)
PAYMASTER_VALIDATION_GAS = _get_int("AARELAY_PAYMASTER_VALIDATION_GAS", 10_000)

LOG_LEVEL = os.getenv("AARELAY_LOG_LEVEL", "INFO").strip().upper()


@dataclass(frozen=True)
class RelayConfig:
    """Settings for a single EntryPoint deployment."""

    chain_id: int = CHAIN_ID
    entry_point_address: str = ENTRY_POINT_ADDRESS
    base_fee: int = BASE_FEE
    account_validation_gas: int = ACCOUNT_VALIDATION_GAS
    paymaster_validation_gas: int = PAYMASTER_VALIDATION_GAS

    def __post_init__(self) -> None:
        if self.chain_id < 1:
            raise ConfigurationError(f"chain_id must be positive, got {self.chain_id}")
        for name in ("base_fee", "account_validation_gas", "paymaster_validation_gas"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative")
        address = self.entry_point_address
        if not address.startswith("0x") or len(address) != 42:
            raise ConfigurationError(
                f"entry_point_address must be a 0x-prefixed 20-byte hex address, got {address!r}"
            )

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Build a config from the current environment."""
        config = cls(
            chain_id=_get_int("AARELAY_CHAIN_ID", 1, minimum=1),
            entry_point_address=os.getenv(
                "AARELAY_ENTRY_POINT_ADDRESS", DEFAULT_ENTRY_POINT_ADDRESS
            ).strip(),
            base_fee=_get_int("AARELAY_BASE_FEE", 0),
            account_validation_gas=_get_int("AARELAY_ACCOUNT_VALIDATION_GAS", 10_000),
            paymaster_validation_gas=_get_int("AARELAY_PAYMASTER_VALIDATION_GAS", 10_000),
        )
        logger.debug(
            "Relay configuration loaded",
            extra={
                "event": "config.loaded",
                "chain_id": config.chain_id,
                "entry_point": config.entry_point_address[:10],
            },
        )
        return config
