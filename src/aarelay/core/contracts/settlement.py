"""
Settlement / gas accounting.

Charges the responsible payer's deposit for the gas an operation actually
consumed and pays the same amount to the beneficiary out of the entry
point's holdings. Every deposit is backed 1:1 by those holdings, so a
settlement moves value without creating or destroying any.
"""

from __future__ import annotations

import logging

from ..value_store import ValueStore, normalize_address
from .deposit_ledger import DepositLedger
from .events import UserOperationEvent
from .user_operation import UserOperation

logger = logging.getLogger(__name__)


class Settlement:
    """Debits the payer and compensates the beneficiary."""

    def __init__(self, ledger: DepositLedger, value_store: ValueStore, holder: str) -> None:
        self.ledger = ledger
        self.value_store = value_store
        # Address whose native balance backs the deposits
        self.holder = normalize_address(holder)

    def settle(
        self,
        op: UserOperation,
        op_hash: bytes,
        success: bool,
        gas_used: int,
        gas_price: int,
        beneficiary: str,
    ) -> UserOperationEvent:
        """
        Settle one executed operation.

        Raises:
            InsufficientDepositError: Payer cannot cover the actual cost
            TransferFailedError: Beneficiary payout failed
        """
        actual_gas_cost = gas_used * gas_price
        payer = normalize_address(op.paymaster or op.sender)

        self.ledger.debit(payer, actual_gas_cost)
        self.value_store.transfer(self.holder, beneficiary, actual_gas_cost)

        event = UserOperationEvent(
            user_op_hash=op_hash,
            sender=normalize_address(op.sender),
            payer=payer,
            nonce=op.nonce,
            success=success,
            actual_gas_cost=actual_gas_cost,
            actual_gas_used=gas_used,
        )

        logger.info(
            "UserOp settled",
            extra={
                "event": "settlement.settled",
                "user_op_hash": op_hash.hex()[:16],
                "sender": event.sender[:10],
                "payer": payer[:10],
                "success": success,
                "gas_used": gas_used,
                "gas_cost": actual_gas_cost,
            },
        )
        return event
