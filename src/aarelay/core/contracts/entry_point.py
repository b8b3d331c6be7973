"""
ERC-4337 EntryPoint.

The singleton that relayers (bundlers) submit batches to. For every
operation, in submission order, it:
1. Computes the operation hash
2. Validates it with the account (and paymaster, when sponsored)
3. Executes the payload
4. Settles gas: debits the payer's deposit and pays the beneficiary

A batch is all-or-nothing. Any fatal fault (a rejected operation, an
unfunded payer, a failed payout) restores every piece of state touched by
the batch and re-raises. Only payload execution faults are absorbed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..config import RelayConfig
from ..gas import GasMeter
from ..relay_exceptions import ReentrancyError, TransferFailedError, ValidationRejectedError
from ..value_store import ValueStore, normalize_address
from .deposit_ledger import DepositLedger
from .events import Deposited, UserOperationEvent, Withdrawn
from .executor import Executor
from .interfaces import POST_OP_MODE_OP_REVERTED, POST_OP_MODE_SUCCESS, Account, Paymaster
from .settlement import Settlement
from .user_operation import UserOperation, compute_user_op_hash
from .validator import ValidationOutcome, Validator

logger = logging.getLogger(__name__)

AuditEvent = Union[UserOperationEvent, Deposited, Withdrawn]


class EntryPoint:
    """
    Accepts batches of UserOperations and drives validate/execute/settle.

    The deposit ledger and value store are injectable so that each test
    scenario (or each simulated chain) can own isolated state.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        ledger: Optional[DepositLedger] = None,
        value_store: Optional[ValueStore] = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.address = normalize_address(self.config.entry_point_address)
        self.chain_id = self.config.chain_id

        self.ledger = ledger if ledger is not None else DepositLedger()
        self.value_store = value_store if value_store is not None else ValueStore()

        # Registry of known accounts/paymasters
        self.accounts: Dict[str, Account] = {}
        self.paymasters: Dict[str, Paymaster] = {}

        self.validator = Validator(self.ledger, self.accounts, self.paymasters, self.config)
        # A faulted payload is reverted to the post-validation state
        self.executor = Executor(self.accounts, self._snapshot, self._restore)
        self.settlement = Settlement(self.ledger, self.value_store, self.address)

        self.events: List[AuditEvent] = []

        # Statistics
        self.total_ops_processed = 0
        self.total_gas_used = 0

        self._in_batch = False

    # ==================== Main Entry Point ====================

    def handle_ops(
        self,
        ops: Sequence[UserOperation],
        beneficiary: str,
    ) -> List[UserOperationEvent]:
        """
        Handle a batch of UserOperations.

        Args:
            ops: Operations, processed strictly in order
            beneficiary: Address compensated for the gas of every operation

        Returns:
            One UserOperationEvent per operation, in submission order

        Raises:
            ValidationRejectedError: An account or paymaster rejected an operation
            InsufficientDepositError: A payer could not cover its cost
            TransferFailedError: The beneficiary payout failed
        """
        if self._in_batch:
            raise ReentrancyError("handle_ops called while a batch is in progress")
        if not ops:
            return []
        if not normalize_address(beneficiary or ""):
            raise TransferFailedError("Beneficiary address is required")

        snapshot = self._snapshot()
        self._in_batch = True
        try:
            results = [
                self._handle_single_op(index, op, beneficiary)
                for index, op in enumerate(ops)
            ]
            self.total_ops_processed += len(ops)
        except Exception as e:
            self._restore(snapshot)
            logger.warning(
                "Batch aborted, state rolled back",
                extra={
                    "event": "entrypoint.batch_aborted",
                    "ops": len(ops),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise
        finally:
            self._in_batch = False

        logger.info(
            "Batch handled",
            extra={
                "event": "entrypoint.batch_handled",
                "ops": len(ops),
                "beneficiary": normalize_address(beneficiary)[:10],
                "failed_executions": sum(1 for r in results if not r.success),
            },
        )
        return results

    def _handle_single_op(
        self,
        index: int,
        op: UserOperation,
        beneficiary: str,
    ) -> UserOperationEvent:
        """Handle a single UserOperation."""
        op_hash = self.get_user_op_hash(op)

        meter = GasMeter(op.pre_verification_gas + op.verification_gas_limit + op.call_gas_limit)
        meter.consume(op.pre_verification_gas, reason="pre-verification")

        verification_meter = meter.child(op.verification_gas_limit)
        outcome = self.validator.validate_with_context(op, op_hash, verification_meter)
        meter.settle_child(verification_meter)

        if not outcome.valid:
            raise ValidationRejectedError(
                f"FailedOp({index}, {outcome.reason or 'validation failed'})",
                op_index=index,
                reason=outcome.reason,
                verdict=outcome.verdict,
                details={"sender": op.sender, "user_op_hash": op_hash.hex()},
            )

        execution = self.executor.execute_with_result(op, meter)

        gas_used = meter.used
        event = self.settlement.settle(
            op,
            op_hash,
            execution.success,
            gas_used,
            self.gas_price(op),
            beneficiary,
        )

        if outcome.paymaster is not None:
            self._post_op(outcome, execution.success, event.actual_gas_cost)

        self.events.append(event)
        self.total_gas_used += gas_used

        logger.info(
            "UserOp processed",
            extra={
                "event": "entrypoint.op_processed",
                "op_index": index,
                "sender": op.sender[:10],
                "success": execution.success,
                "gas_used": gas_used,
            },
        )
        return event

    def _post_op(self, outcome: ValidationOutcome, success: bool, actual_gas_cost: int) -> None:
        """Tell the sponsoring paymaster what its operation finally cost."""
        paymaster = self.paymasters[normalize_address(outcome.paymaster)]
        mode = POST_OP_MODE_SUCCESS if success else POST_OP_MODE_OP_REVERTED
        paymaster.post_op(mode, outcome.paymaster_context, actual_gas_cost)

    # ==================== Queries ====================

    def get_user_op_hash(self, op: UserOperation) -> bytes:
        """Hash ``op`` for this chain and this entry point deployment."""
        return compute_user_op_hash(op, self.chain_id, self.address)

    def gas_price(self, op: UserOperation) -> int:
        """Effective price: the fee cap, or priority fee on top of the base fee if lower."""
        if op.max_fee_per_gas == op.max_priority_fee_per_gas:
            return op.max_fee_per_gas
        return min(op.max_fee_per_gas, op.max_priority_fee_per_gas + self.config.base_fee)

    def balance_of(self, account: str) -> int:
        """Get deposit balance."""
        return self.ledger.balance_of(account)

    # ==================== Deposit Management ====================

    def deposit_to(self, account: str, amount: int) -> int:
        """
        Deposit funds for ``account``.

        The value arrives with the call, so it is added to the entry point's
        own holdings as well as to the account's deposit.

        Returns:
            The account's total deposit
        """
        total = self.ledger.fund(account, amount)
        self.value_store.mint(self.address, amount)
        self.events.append(Deposited(account=normalize_address(account), total_deposit=total))
        return total

    def receive(self, sender: str, amount: int) -> int:
        """Plain value transfer to the entry point: credits the sender's own deposit."""
        return self.deposit_to(sender, amount)

    def withdraw_to(self, caller: str, withdraw_address: str, amount: int) -> int:
        """
        Withdraw from the caller's deposit to ``withdraw_address``.

        Returns:
            The caller's remaining deposit
        """
        snapshot = self.ledger.snapshot()
        remaining = self.ledger.debit(caller, amount)
        try:
            self.value_store.transfer(self.address, withdraw_address, amount)
        except TransferFailedError:
            self.ledger.restore(snapshot)
            raise

        self.events.append(
            Withdrawn(
                account=normalize_address(caller),
                withdraw_address=normalize_address(withdraw_address),
                amount=amount,
            )
        )
        logger.info(
            "Deposit withdrawn",
            extra={
                "event": "entrypoint.withdrawn",
                "account": normalize_address(caller)[:10],
                "amount": amount,
                "remaining": remaining,
            },
        )
        return remaining

    # ==================== Registration ====================

    def register_account(self, account: Account, address: Optional[str] = None) -> None:
        """Register a smart account under ``address`` (defaults to ``account.address``)."""
        key = normalize_address(address or getattr(account, "address", ""))
        if not key:
            raise ValueError("Account address is required")
        self.accounts[key] = account
        if hasattr(account, "entry_point"):
            account.entry_point = self.address

    def register_paymaster(self, paymaster: Paymaster, address: Optional[str] = None) -> None:
        """Register a paymaster under ``address`` (defaults to ``paymaster.address``)."""
        key = normalize_address(address or getattr(paymaster, "address", ""))
        if not key:
            raise ValueError("Paymaster address is required")
        self.paymasters[key] = paymaster
        if hasattr(paymaster, "deposit_source") and paymaster.deposit_source is None:
            paymaster.deposit_source = self.balance_of

    # ==================== Transaction wrapper ====================

    def _collaborators(self) -> List[Any]:
        return [
            c for c in list(self.accounts.values()) + list(self.paymasters.values())
            if callable(getattr(c, "snapshot", None)) and callable(getattr(c, "restore", None))
        ]

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "ledger": self.ledger.snapshot(),
            "value_store": self.value_store.snapshot(),
            "events": len(self.events),
            "total_ops_processed": self.total_ops_processed,
            "total_gas_used": self.total_gas_used,
            "collaborators": [(c, c.snapshot()) for c in self._collaborators()],
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.ledger.restore(snapshot["ledger"])
        self.value_store.restore(snapshot["value_store"])
        del self.events[snapshot["events"]:]
        self.total_ops_processed = snapshot["total_ops_processed"]
        self.total_gas_used = snapshot["total_gas_used"]
        for collaborator, state in snapshot["collaborators"]:
            collaborator.restore(state)

    # ==================== Stats ====================

    def get_stats(self) -> Dict[str, int]:
        """Get EntryPoint statistics."""
        return {
            "total_ops_processed": self.total_ops_processed,
            "total_gas_used": self.total_gas_used,
            "total_deposits": self.ledger.total_deposits(),
            "accounts_registered": len(self.accounts),
            "paymasters_registered": len(self.paymasters),
        }
