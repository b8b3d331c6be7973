"""Audit events emitted by the entry point."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class UserOperationEvent:
    """One per settled operation, in submission order."""

    user_op_hash: bytes
    sender: str
    payer: str
    nonce: int
    success: bool
    actual_gas_cost: int
    actual_gas_used: int

    @property
    def sponsored(self) -> bool:
        return self.payer != self.sender

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["user_op_hash"] = "0x" + self.user_op_hash.hex()
        data["event"] = "UserOperationEvent"
        return data


@dataclass(frozen=True)
class Deposited:
    account: str
    total_deposit: int

    def to_dict(self) -> Dict[str, Any]:
        return {"event": "Deposited", **asdict(self)}


@dataclass(frozen=True)
class Withdrawn:
    account: str
    withdraw_address: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"event": "Withdrawn", **asdict(self)}
