"""
Relay-specific exception hierarchy for aarelay.

Provides typed exceptions for entry point operations so that batch aborts,
collaborator faults and ledger failures can be told apart by callers.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class RelayError(Exception):
    """Base exception for all relay errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


class ConfigurationError(RelayError):
    """Raised when required configuration is missing or invalid."""
    pass


# ==================== Operation Errors ====================


class InvalidUserOperationError(RelayError):
    """Raised when a UserOperation is structurally invalid."""
    pass


class ValidationRejectedError(RelayError):
    """Raised when an account or paymaster rejects an operation.

    Aborts the whole batch. ``op_index`` is the position of the offending
    operation inside the submitted batch.
    """

    def __init__(
        self,
        message: str,
        op_index: int = -1,
        reason: str = "",
        verdict: int = 1,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.op_index = op_index
        self.reason = reason
        self.verdict = verdict


class ExecutionFailure(RelayError):
    """Raised by account payloads that fault during execution.

    Never escapes the executor; it is recorded as ``success=False``.
    """
    pass


class OutOfGasError(ExecutionFailure):
    """Raised when a gas meter is exhausted."""
    pass


class ReentrancyError(RelayError):
    """Raised when handle_ops is entered while a batch is in progress."""
    pass


# ==================== Funds Errors ====================


class InvalidAmountError(RelayError):
    """Raised for zero, negative or non-integer value amounts."""
    pass


class InsufficientDepositError(RelayError):
    """Raised when a principal's deposit cannot cover a cost."""

    def __init__(
        self,
        message: str,
        principal: str = "",
        required: int = 0,
        available: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.principal = principal
        self.required = required
        self.available = available


class TransferFailedError(RelayError):
    """Raised when a value transfer (e.g. beneficiary payout) fails."""
    pass


# ==================== Signature Errors ====================


class SignatureError(RelayError):
    """Base exception for signature verification failures."""
    pass


class MalformedSignatureError(SignatureError):
    """
    Raised when signature format is invalid.

    The signature data itself is malformed (wrong length, invalid encoding,
    missing data).
    """
    pass


class InvalidSignatureError(SignatureError):
    """
    Raised when signature does not match the claimed signer.

    The signature was properly formed but cryptographic verification failed.
    """
    pass


class MissingPublicKeyError(SignatureError):
    """Raised when the public key required for verification is not registered."""
    pass
