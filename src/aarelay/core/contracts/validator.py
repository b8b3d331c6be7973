"""
UserOperation Validator.

Runs the account's authorization check and, for sponsored operations, the
paymaster's sponsorship check. Both are external calls: their faults are
captured as explicit CollaboratorResult values and mapped to a rejection
verdict in one place, rather than being translated implicitly by exception
handlers scattered through the flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..config import RelayConfig
from ..gas import GasMeter
from ..relay_exceptions import InsufficientDepositError
from ..value_store import normalize_address
from .deposit_ledger import DepositLedger
from .interfaces import Account, Paymaster
from .user_operation import UserOperation

logger = logging.getLogger(__name__)

# ERC-4337 Constants
VALIDATION_SUCCESS = 0
VALIDATION_FAILED = 1

# Rejection reasons, using the ERC-4337 FailedOp codes
REASON_ACCOUNT_NOT_FOUND = "AA20 account not deployed"
REASON_INSUFFICIENT_PREFUND = "AA21 didn't pay prefund"
REASON_ACCOUNT_REVERTED = "AA23 reverted"
REASON_ACCOUNT_REJECTED = "AA24 signature error"
REASON_PAYMASTER_NOT_FOUND = "AA30 paymaster not deployed"
REASON_PAYMASTER_REVERTED = "AA33 reverted"
REASON_PAYMASTER_REJECTED = "AA34 signature error"


@dataclass(frozen=True)
class CollaboratorResult:
    """Outcome of a guarded account/paymaster call."""

    ok: bool
    verdict: int = VALIDATION_FAILED
    context: bytes = b""
    error: Optional[Exception] = None

    @classmethod
    def success(cls, verdict: int, context: bytes = b"") -> "CollaboratorResult":
        return cls(ok=True, verdict=verdict, context=context)

    @classmethod
    def failure(cls, error: Exception) -> "CollaboratorResult":
        return cls(ok=False, error=error)

    def verdict_or_reject(self) -> int:
        """A failed call is always a rejection (verdict 1)."""
        return self.verdict if self.ok else VALIDATION_FAILED


@dataclass(frozen=True)
class ValidationOutcome:
    """Verdict plus what settlement needs to know about the sponsor."""

    verdict: int
    required_prefund: int
    paymaster: Optional[str] = None
    paymaster_context: bytes = b""
    reason: str = ""

    @property
    def valid(self) -> bool:
        return self.verdict == VALIDATION_SUCCESS


class Validator:
    """Two-party validation: optional paymaster sponsorship, then account authorization."""

    def __init__(
        self,
        ledger: DepositLedger,
        accounts: Dict[str, Account],
        paymasters: Dict[str, Paymaster],
        config: Optional[RelayConfig] = None,
    ) -> None:
        self.ledger = ledger
        self.accounts = accounts
        self.paymasters = paymasters
        self.config = config or RelayConfig()

    def validate(
        self,
        op: UserOperation,
        op_hash: bytes,
        gas_meter: Optional[GasMeter] = None,
    ) -> int:
        """Return the verdict for ``op``: 0 authorized, non-zero rejected."""
        return self.validate_with_context(op, op_hash, gas_meter).verdict

    def validate_with_context(
        self,
        op: UserOperation,
        op_hash: bytes,
        gas_meter: Optional[GasMeter] = None,
    ) -> ValidationOutcome:
        """
        Validate ``op`` and keep the paymaster context for the post-op hook.

        Raises:
            InsufficientDepositError: Self-funded sender cannot cover the
                required prefund. Fatal for the batch.
        """
        required_prefund = op.required_prefund
        paymaster_address = op.paymaster
        paymaster_context = b""
        verdict = VALIDATION_SUCCESS
        reason = ""

        if paymaster_address is not None:
            _charge(gas_meter, self.config.paymaster_validation_gas)
            result = self._call_paymaster(op, op_hash, paymaster_address, required_prefund)
            verdict = result.verdict_or_reject()
            paymaster_context = result.context
            if verdict != VALIDATION_SUCCESS:
                reason = (
                    REASON_PAYMASTER_REJECTED if result.ok else _fault_reason(result, REASON_PAYMASTER_REVERTED)
                )
                logger.warning(
                    "Paymaster rejected UserOp",
                    extra={
                        "event": "validator.paymaster_rejected",
                        "sender": op.sender[:10],
                        "paymaster": paymaster_address[:10],
                        "verdict": verdict,
                        "reason": reason,
                    },
                )
        else:
            balance = self.ledger.balance_of(op.sender)
            if balance < required_prefund:
                logger.warning(
                    "UserOp validation failed: insufficient deposit",
                    extra={
                        "event": "validator.insufficient_deposit",
                        "sender": op.sender[:10],
                        "required": required_prefund,
                        "balance": balance,
                    },
                )
                raise InsufficientDepositError(
                    f"{REASON_INSUFFICIENT_PREFUND}: deposit {balance} < required {required_prefund}",
                    principal=normalize_address(op.sender),
                    required=required_prefund,
                    available=balance,
                )

        _charge(gas_meter, self.config.account_validation_gas)
        account_result = self._call_account(op, op_hash, required_prefund)
        account_verdict = account_result.verdict_or_reject()
        if account_verdict != VALIDATION_SUCCESS:
            # Account rejection overrides whatever the paymaster said
            verdict = account_verdict
            reason = (
                REASON_ACCOUNT_REJECTED
                if account_result.ok
                else _fault_reason(account_result, REASON_ACCOUNT_REVERTED)
            )
            logger.warning(
                "Account rejected UserOp",
                extra={
                    "event": "validator.account_rejected",
                    "sender": op.sender[:10],
                    "verdict": account_verdict,
                    "reason": reason,
                },
            )

        if verdict == VALIDATION_SUCCESS:
            logger.debug(
                "UserOp validated",
                extra={
                    "event": "validator.validated",
                    "sender": op.sender[:10],
                    "nonce": op.nonce,
                    "sponsored": paymaster_address is not None,
                },
            )

        return ValidationOutcome(
            verdict=verdict,
            required_prefund=required_prefund,
            paymaster=paymaster_address,
            paymaster_context=paymaster_context,
            reason=reason,
        )

    # ==================== Guarded calls ====================

    def _call_account(
        self,
        op: UserOperation,
        op_hash: bytes,
        required_prefund: int,
    ) -> CollaboratorResult:
        account = self.accounts.get(normalize_address(op.sender))
        if account is None:
            return CollaboratorResult.failure(LookupError(REASON_ACCOUNT_NOT_FOUND))
        try:
            verdict = account.validate_user_op(op, op_hash, required_prefund)
        except Exception as e:
            logger.warning(
                "Account validation raised",
                extra={
                    "event": "validator.account_fault",
                    "sender": op.sender[:10],
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return CollaboratorResult.failure(e)
        return _as_verdict_result(verdict)

    def _call_paymaster(
        self,
        op: UserOperation,
        op_hash: bytes,
        paymaster_address: str,
        max_cost: int,
    ) -> CollaboratorResult:
        paymaster = self.paymasters.get(normalize_address(paymaster_address))
        if paymaster is None:
            return CollaboratorResult.failure(LookupError(REASON_PAYMASTER_NOT_FOUND))
        try:
            context, verdict = paymaster.validate_paymaster_user_op(op, op_hash, max_cost)
        except Exception as e:
            logger.warning(
                "Paymaster validation raised",
                extra={
                    "event": "validator.paymaster_fault",
                    "paymaster": paymaster_address[:10],
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return CollaboratorResult.failure(e)
        result = _as_verdict_result(verdict)
        if not result.ok:
            return result
        if context is None:
            context = b""
        if not isinstance(context, (bytes, bytearray)):
            return CollaboratorResult.failure(
                TypeError(f"Paymaster context must be bytes, got {type(context).__name__}")
            )
        return CollaboratorResult.success(result.verdict, bytes(context))


def _as_verdict_result(verdict: object) -> CollaboratorResult:
    if isinstance(verdict, bool) or not isinstance(verdict, int):
        return CollaboratorResult.failure(TypeError(f"Verdict must be an integer, got {verdict!r}"))
    return CollaboratorResult.success(verdict)


def _fault_reason(result: CollaboratorResult, default: str) -> str:
    # Missing collaborators carry their own AA code
    if isinstance(result.error, LookupError) and str(result.error).startswith("AA"):
        return str(result.error)
    return default


def _charge(gas_meter: Optional[GasMeter], amount: int) -> None:
    """Charge validation overhead, never beyond the verification budget."""
    if gas_meter is not None:
        gas_meter.consume(min(amount, gas_meter.remaining), reason="validation")
