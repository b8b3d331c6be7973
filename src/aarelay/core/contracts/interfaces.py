"""
Collaborator Protocol Interfaces.

The entry point only needs a narrow capability set from accounts and
paymasters. Anything implementing these methods can be registered, which
keeps the core independent of how accounts are deployed or priced.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Tuple, runtime_checkable

if TYPE_CHECKING:
    from aarelay.core.contracts.user_operation import UserOperation
    from aarelay.core.gas import GasMeter

# Paymaster post-op modes
POST_OP_MODE_SUCCESS = 0
POST_OP_MODE_OP_REVERTED = 1


@runtime_checkable
class Account(Protocol):
    """IAccount: the operation's sender."""

    def validate_user_op(
        self,
        user_op: "UserOperation",
        user_op_hash: bytes,
        missing_account_funds: int,
    ) -> int:
        """Return 0 to authorize; raise or return non-zero to reject."""
        ...

    def execute(self, call_data: bytes, gas_meter: "GasMeter") -> bytes:
        """Run the operation payload, charging gas to ``gas_meter``."""
        ...


@runtime_checkable
class Paymaster(Protocol):
    """IPaymaster: optional sponsor of an operation's gas."""

    def validate_paymaster_user_op(
        self,
        user_op: "UserOperation",
        user_op_hash: bytes,
        max_cost: int,
    ) -> Tuple[bytes, int]:
        """Return (context, verdict); verdict 0 agrees to pay."""
        ...

    def post_op(self, mode: int, context: bytes, actual_gas_cost: int) -> None:
        """Called once the sponsored operation has been settled."""
        ...
