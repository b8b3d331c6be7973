"""
Reference account and paymaster implementations.

The entry point only depends on the Account/Paymaster protocols; these are
the stock collaborators used by relay deployments and tests:
- SmartAccount: single-owner wallet, secp256k1 ECDSA over the op hash,
  sequential nonce, pluggable call handler
- Paymaster: whitelist sponsor backed by its entry point deposit
"""

from __future__ import annotations

import hashlib
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from ..crypto_utils import address_from_public_key, verify_signature_hex
from ..gas import GasMeter
from ..relay_exceptions import (
    ExecutionFailure,
    InvalidSignatureError,
    MalformedSignatureError,
    MissingPublicKeyError,
    SignatureError,
)
from .user_operation import UserOperation
from .validator import VALIDATION_FAILED, VALIDATION_SUCCESS

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 64

# Calldata gas (EIP-2028)
CALLDATA_ZERO_BYTE_GAS = 4
CALLDATA_NONZERO_BYTE_GAS = 16

CallHandler = Callable[[bytes, GasMeter], bytes]


def calldata_gas(data: bytes) -> int:
    zero_bytes = data.count(0)
    return zero_bytes * CALLDATA_ZERO_BYTE_GAS + (len(data) - zero_bytes) * CALLDATA_NONZERO_BYTE_GAS


_address_sequence = itertools.count()


def _generated_address(label: str) -> str:
    """Deterministic per-process address for collaborators built without a key."""
    addr_hash = hashlib.sha3_256(f"{label}:{next(_address_sequence)}".encode()).digest()
    return f"0x{addr_hash[-20:].hex()}"


@dataclass
class SmartAccount:
    """
    Single-owner smart account.

    Signatures are 64-byte (r || s) secp256k1 ECDSA signatures over the
    UserOperation hash, checked against ``owner_public_key``.
    """

    address: str = ""
    owner: str = ""
    owner_public_key: str = ""  # 64-byte hex public key for ECDSA verification

    nonce: int = 0

    # Set by EntryPoint.register_account
    entry_point: str = ""

    # Runs the payload; the default only charges calldata gas
    call_handler: Optional[CallHandler] = None

    def __post_init__(self) -> None:
        if not self.address:
            if self.owner_public_key:
                self.address = address_from_public_key(self.owner_public_key)
            else:
                self.address = _generated_address(f"smart_account:{self.owner}")
        self.address = self.address.lower()

    # ==================== IAccount Interface ====================

    def validate_user_op(
        self,
        user_op: UserOperation,
        user_op_hash: bytes,
        missing_account_funds: int,
    ) -> int:
        """
        Validate the owner's signature and consume the nonce.

        Returns:
            VALIDATION_SUCCESS, or VALIDATION_FAILED on a nonce mismatch

        Raises:
            SignatureError: On any signature problem. The entry point maps
                this to a rejection.
        """
        self._validate_signature(user_op_hash, user_op.signature)

        if user_op.nonce != self.nonce:
            logger.warning(
                "UserOp validation failed: nonce mismatch",
                extra={
                    "event": "account.nonce_mismatch",
                    "account": self.address[:10],
                    "expected": self.nonce,
                    "got": user_op.nonce,
                },
            )
            return VALIDATION_FAILED

        self.nonce += 1
        logger.debug(
            "Account validated UserOp",
            extra={
                "event": "account.validated",
                "account": self.address[:10],
                "nonce": user_op.nonce,
                "prefund": missing_account_funds,
            },
        )
        return VALIDATION_SUCCESS

    def execute(self, call_data: bytes, gas_meter: GasMeter) -> bytes:
        """
        Execute a payload from this account.

        Raises:
            ExecutionFailure: Payload faulted
            OutOfGasError: Payload exceeded the call gas limit
        """
        gas_meter.consume(calldata_gas(call_data), reason="calldata")
        if self.call_handler is None:
            logger.debug(
                "Account executing call",
                extra={
                    "event": "account.execute",
                    "account": self.address[:10],
                    "size": len(call_data),
                },
            )
            return b""
        return self.call_handler(call_data, gas_meter)

    # ==================== State ====================

    def snapshot(self) -> Dict[str, Any]:
        return {"nonce": self.nonce}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self.nonce = snapshot["nonce"]

    # ==================== Internal ====================

    def _validate_signature(self, hash_: bytes, signature: bytes) -> bool:
        """
        Validate ECDSA signature against hash using secp256k1.

        Raises:
            MissingPublicKeyError: If owner_public_key is not registered
            MalformedSignatureError: If signature format is invalid
            InvalidSignatureError: If signature verification fails
            SignatureError: If a cryptographic error occurs during verification
        """
        if not self.owner_public_key:
            raise MissingPublicKeyError(f"Account {self.address[:16]} has no public key registered")

        if not signature:
            raise MalformedSignatureError("Missing signature")

        if len(signature) != SIGNATURE_LENGTH:
            raise MalformedSignatureError(
                f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)} bytes"
            )

        try:
            is_valid = verify_signature_hex(self.owner_public_key, hash_, signature.hex())
        except ValueError as e:
            raise MalformedSignatureError(f"Invalid signature format: {e}") from e
        except (TypeError, AttributeError, RuntimeError) as e:
            logger.error(
                "Signature validation error: cryptographic failure",
                extra={
                    "event": "account.signature_validation_error",
                    "account": self.address[:16],
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise SignatureError(f"Signature verification failed: {e}") from e

        if not is_valid:
            logger.warning(
                "Signature validation failed: invalid signature",
                extra={
                    "event": "account.signature_validation_failed",
                    "account": self.address[:16],
                },
            )
            raise InvalidSignatureError(
                f"Signature does not match owner of account {self.address[:16]}"
            )
        return True


@dataclass
class Paymaster:
    """
    Whitelist gas sponsor.

    An empty whitelist sponsors everyone. Sponsorship is refused when the
    paymaster's entry point deposit cannot cover the operation's max cost.
    """

    address: str = ""
    owner: str = ""

    # Sponsored accounts (whitelist mode)
    sponsored_accounts: Dict[str, bool] = field(default_factory=dict)

    # Reads this paymaster's entry point deposit; set on registration
    deposit_source: Optional[Callable[[str], int]] = None

    # Statistics
    total_sponsored: int = 0
    gas_sponsored: int = 0
    reverted_sponsored: int = 0

    def __post_init__(self) -> None:
        if not self.address:
            self.address = _generated_address(f"paymaster:{self.owner}")
        self.address = self.address.lower()

    @property
    def paymaster_and_data_prefix(self) -> bytes:
        """The 20 address bytes that open ``paymaster_and_data``."""
        return bytes.fromhex(self.address[2:])

    # ==================== IPaymaster Interface ====================

    def validate_paymaster_user_op(
        self,
        user_op: UserOperation,
        user_op_hash: bytes,
        max_cost: int,
    ) -> Tuple[bytes, int]:
        """
        Validate UserOp and agree to pay.

        Returns:
            (context, validationData)

        Raises:
            ExecutionFailure: Sender not sponsored or deposit too low
        """
        if not self._should_sponsor(user_op.sender):
            raise ExecutionFailure(f"Account {user_op.sender[:10]} not sponsored")

        if self.deposit_source is not None:
            deposit = self.deposit_source(self.address)
            if deposit < max_cost:
                raise ExecutionFailure(f"Paymaster deposit too low: {deposit} < {max_cost}")

        logger.debug(
            "Paymaster validating",
            extra={
                "event": "paymaster.validate",
                "sender": user_op.sender[:10],
                "max_cost": max_cost,
            },
        )
        return user_op.sender.lower().encode(), VALIDATION_SUCCESS

    def post_op(self, mode: int, context: bytes, actual_gas_cost: int) -> None:
        """
        Called after the sponsored UserOp has been settled.

        Args:
            mode: 0 = success, 1 = user op reverted
            context: Context returned from validation
            actual_gas_cost: Amount debited from this paymaster's deposit
        """
        self.total_sponsored += 1
        self.gas_sponsored += actual_gas_cost
        if mode != 0:
            self.reverted_sponsored += 1

        logger.info(
            "Paymaster post-op",
            extra={
                "event": "paymaster.post_op",
                "mode": mode,
                "sender": context.decode(errors="replace")[:10],
                "gas_cost": actual_gas_cost,
            },
        )

    # ==================== Management ====================

    def add_sponsored_account(self, caller: str, account: str) -> bool:
        """Add account to whitelist."""
        self._require_owner(caller)
        self.sponsored_accounts[account.lower()] = True
        return True

    def remove_sponsored_account(self, caller: str, account: str) -> bool:
        """Remove account from whitelist."""
        self._require_owner(caller)
        self.sponsored_accounts[account.lower()] = False
        return True

    # ==================== State ====================

    def snapshot(self) -> Dict[str, Any]:
        return {
            "total_sponsored": self.total_sponsored,
            "gas_sponsored": self.gas_sponsored,
            "reverted_sponsored": self.reverted_sponsored,
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self.total_sponsored = snapshot["total_sponsored"]
        self.gas_sponsored = snapshot["gas_sponsored"]
        self.reverted_sponsored = snapshot["reverted_sponsored"]

    # ==================== Internal ====================

    def _should_sponsor(self, sender: str) -> bool:
        if not self.sponsored_accounts:
            return True
        return self.sponsored_accounts.get(sender.lower(), False)

    def _require_owner(self, caller: str) -> None:
        if caller.lower() != self.owner.lower():
            raise PermissionError("Caller is not owner")
