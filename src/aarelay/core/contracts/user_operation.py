"""
UserOperation (ERC-4337 style).

A UserOperation is the intent envelope an account signs instead of a regular
transaction. Its hash binds every field (variable-length fields pre-hashed)
to one chain id and one entry point deployment, so a signature can never be
replayed on another network or against another entry point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_abi import encode

from ..crypto_utils import keccak256
from ..relay_exceptions import InvalidUserOperationError

PAYMASTER_ADDRESS_LENGTH = 20
UINT256_MAX = 2**256 - 1

_GAS_FIELDS = (
    "nonce",
    "call_gas_limit",
    "verification_gas_limit",
    "pre_verification_gas",
    "max_fee_per_gas",
    "max_priority_fee_per_gas",
)
_BYTES_FIELDS = ("init_code", "call_data", "paymaster_and_data", "signature")

_RPC_NAMES = {
    "sender": "sender",
    "nonce": "nonce",
    "init_code": "initCode",
    "call_data": "callData",
    "call_gas_limit": "callGasLimit",
    "verification_gas_limit": "verificationGasLimit",
    "pre_verification_gas": "preVerificationGas",
    "max_fee_per_gas": "maxFeePerGas",
    "max_priority_fee_per_gas": "maxPriorityFeePerGas",
    "paymaster_and_data": "paymasterAndData",
    "signature": "signature",
}


def address_to_bytes(address: str) -> bytes:
    """Decode a 0x-prefixed 20-byte hex address."""
    if not isinstance(address, str) or not address.startswith("0x") or len(address) != 42:
        raise InvalidUserOperationError(f"Invalid address: {address!r}")
    try:
        return bytes.fromhex(address[2:])
    except ValueError:
        raise InvalidUserOperationError(f"Invalid hex characters in address: {address!r}")


@dataclass(frozen=True)
class UserOperation:
    """
    ERC-4337 UserOperation struct.

    Immutable once built; the entry point only ever reads it.
    """

    sender: str  # Smart account address
    nonce: int  # Replay protection, owned by the account
    init_code: bytes = b""  # Account deployment payload, only hashed here
    call_data: bytes = b""  # What the account executes
    call_gas_limit: int = 200_000
    verification_gas_limit: int = 100_000
    pre_verification_gas: int = 50_000
    max_fee_per_gas: int = 1_000_000_000  # 1 Gwei
    max_priority_fee_per_gas: int = 1_000_000_000
    paymaster_and_data: bytes = b""  # Paymaster address + paymaster context
    signature: bytes = b""  # Interpreted by account/paymaster only

    def __post_init__(self) -> None:
        address_to_bytes(self.sender)
        for name in _GAS_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidUserOperationError(f"{name} must be an integer, got {value!r}")
            if value < 0 or value > UINT256_MAX:
                raise InvalidUserOperationError(f"{name} out of uint256 range: {value}")
        for name in _BYTES_FIELDS:
            if not isinstance(getattr(self, name), bytes):
                raise InvalidUserOperationError(f"{name} must be bytes")

    # ==================== Paymaster ====================

    @property
    def paymaster(self) -> Optional[str]:
        """Sponsoring paymaster address, or None for a self-funded operation."""
        if len(self.paymaster_and_data) < PAYMASTER_ADDRESS_LENGTH:
            return None
        return "0x" + self.paymaster_and_data[:PAYMASTER_ADDRESS_LENGTH].hex()

    @property
    def paymaster_context(self) -> bytes:
        """Opaque paymaster data following the address."""
        return self.paymaster_and_data[PAYMASTER_ADDRESS_LENGTH:]

    @property
    def required_prefund(self) -> int:
        """Worst-case cost the sender pre-commits to cover."""
        return self.call_gas_limit * self.max_fee_per_gas

    # ==================== Hashing ====================

    def pack(self) -> bytes:
        """ABI-encode the operation for hashing (signature excluded)."""
        return encode(
            [
                "address",
                "uint256",
                "bytes32",
                "bytes32",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "bytes32",
            ],
            [
                address_to_bytes(self.sender),
                self.nonce,
                keccak256(self.init_code),
                keccak256(self.call_data),
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                keccak256(self.paymaster_and_data),
            ],
        )

    def hash(self, entry_point: str, chain_id: int) -> bytes:
        """
        Get UserOp hash for signing.

        Args:
            entry_point: EntryPoint contract address
            chain_id: Chain ID for replay protection

        Returns:
            32-byte keccak256 digest
        """
        return compute_user_op_hash(self, chain_id, entry_point)

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, str]:
        """JSON-RPC form: camelCase keys, 0x-hex values."""
        result: Dict[str, str] = {}
        for name, rpc_name in _RPC_NAMES.items():
            value = getattr(self, name)
            if isinstance(value, bytes):
                result[rpc_name] = "0x" + value.hex()
            elif isinstance(value, int):
                result[rpc_name] = hex(value)
            else:
                result[rpc_name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserOperation":
        """Build an operation from its JSON-RPC form."""
        kwargs: Dict[str, Any] = {}
        for name, rpc_name in _RPC_NAMES.items():
            if rpc_name not in data:
                if name in ("sender", "nonce"):
                    raise InvalidUserOperationError(f"Missing field: {rpc_name}")
                continue
            value = data[rpc_name]
            try:
                if name in _BYTES_FIELDS:
                    if not isinstance(value, str):
                        raise TypeError(f"expected hex string, got {type(value).__name__}")
                    kwargs[name] = bytes.fromhex(_strip_0x(value))
                elif name == "sender":
                    kwargs[name] = value
                else:
                    kwargs[name] = value if isinstance(value, int) else int(value, 0)
            except (TypeError, ValueError) as e:
                raise InvalidUserOperationError(f"Invalid {rpc_name}: {value!r}") from e
        return cls(**kwargs)


def compute_user_op_hash(op: UserOperation, chain_id: int, entry_point: str) -> bytes:
    """
    Deterministic operation identifier.

    keccak256(abi.encode(keccak256(pack(op)), entry_point, chain_id))
    """
    inner_hash = keccak256(op.pack())
    return keccak256(
        encode(
            ["bytes32", "address", "uint256"],
            [inner_hash, address_to_bytes(entry_point), chain_id],
        )
    )


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value
