"""
aarelay Account Abstraction Contracts.

This module provides the ERC-4337 style entry point and its parts:
- UserOperation: intent envelope and its domain-separated hash
- DepositLedger: prepaid gas deposits
- Validator / Executor / Settlement: the per-operation pipeline
- EntryPoint: atomic batch orchestrator
- SmartAccount / Paymaster: reference collaborators
"""

from .account_abstraction import Paymaster, SmartAccount
from .deposit_ledger import DepositLedger
from .entry_point import EntryPoint
from .events import Deposited, UserOperationEvent, Withdrawn
from .executor import ExecutionResult, Executor
from .interfaces import Account, Paymaster as PaymasterProtocol
from .settlement import Settlement
from .user_operation import UserOperation, compute_user_op_hash
from .validator import (
    VALIDATION_FAILED,
    VALIDATION_SUCCESS,
    CollaboratorResult,
    ValidationOutcome,
    Validator,
)

__all__ = [
    # Intent model
    "UserOperation",
    "compute_user_op_hash",
    # Pipeline
    "DepositLedger",
    "Validator",
    "ValidationOutcome",
    "CollaboratorResult",
    "Executor",
    "ExecutionResult",
    "Settlement",
    "EntryPoint",
    # Events
    "UserOperationEvent",
    "Deposited",
    "Withdrawn",
    # Collaborators
    "Account",
    "PaymasterProtocol",
    "SmartAccount",
    "Paymaster",
    # Verdicts
    "VALIDATION_SUCCESS",
    "VALIDATION_FAILED",
]
