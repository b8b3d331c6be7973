"""
UserOperation Executor.

Runs the sender's payload under a gas ceiling of ``call_gas_limit``. A
payload fault never escapes: it is reported as ``success=False`` so the
operation still reaches settlement and the beneficiary is paid for the
attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..gas import GasMeter
from ..relay_exceptions import ExecutionFailure, OutOfGasError
from ..value_store import normalize_address
from .interfaces import Account
from .user_operation import UserOperation

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of UserOp execution."""
    success: bool
    gas_used: int
    return_data: bytes = b""
    error: str = ""


class Executor:
    """
    Invokes account payloads, converting faults into a status flag.

    When ``snapshot_state``/``restore_state`` are given, state is captured
    before each payload and put back if the payload faults, so a reverted
    call leaves nothing behind except the gas it burned.
    """

    def __init__(
        self,
        accounts: Dict[str, Account],
        snapshot_state: Optional[Callable[[], Any]] = None,
        restore_state: Optional[Callable[[Any], None]] = None,
    ) -> None:
        self.accounts = accounts
        self.snapshot_state = snapshot_state
        self.restore_state = restore_state

    def execute(self, op: UserOperation, gas_meter: Optional[GasMeter] = None) -> bool:
        """Run ``op``'s payload; True if it completed without raising."""
        return self.execute_with_result(op, gas_meter).success

    def execute_with_result(
        self,
        op: UserOperation,
        gas_meter: Optional[GasMeter] = None,
    ) -> ExecutionResult:
        if gas_meter is not None:
            call_meter = gas_meter.child(op.call_gas_limit)
        else:
            call_meter = GasMeter(op.call_gas_limit)

        if not op.call_data:
            return ExecutionResult(success=True, gas_used=0)

        checkpoint = self.snapshot_state() if self.snapshot_state is not None else None
        try:
            account = self.accounts.get(normalize_address(op.sender))
            if account is None:
                raise ExecutionFailure(f"Account {op.sender[:10]} not found")
            return_data = account.execute(op.call_data, call_meter)
            result = ExecutionResult(
                success=True,
                gas_used=call_meter.used,
                return_data=bytes(return_data or b""),
            )
        except OutOfGasError as e:
            result = ExecutionResult(success=False, gas_used=call_meter.used, error=str(e))
            logger.warning(
                "UserOp execution ran out of gas",
                extra={
                    "event": "executor.out_of_gas",
                    "sender": op.sender[:10],
                    "call_gas_limit": op.call_gas_limit,
                },
            )
        except Exception as e:
            # Payload faults are absorbed; settlement still charges for them
            result = ExecutionResult(success=False, gas_used=call_meter.used, error=str(e))
            logger.warning(
                "UserOp execution failed",
                extra={
                    "event": "executor.execution_failed",
                    "sender": op.sender[:10],
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
        finally:
            if gas_meter is not None:
                gas_meter.settle_child(call_meter)

        if not result.success and self.restore_state is not None:
            self.restore_state(checkpoint)
            logger.debug(
                "Reverted payload state changes",
                extra={"event": "executor.reverted", "sender": op.sender[:10]},
            )
        return result
