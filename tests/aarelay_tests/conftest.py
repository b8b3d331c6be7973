"""Shared fixtures for entry point tests."""

from dataclasses import replace

import pytest

from aarelay.core.config import RelayConfig
from aarelay.core.contracts.account_abstraction import Paymaster, SmartAccount
from aarelay.core.contracts.entry_point import EntryPoint
from aarelay.core.contracts.user_operation import UserOperation
from aarelay.core.crypto_utils import generate_secp256k1_keypair_hex, sign_message_hex

BENEFICIARY = "0x" + "be" * 20
OWNER = "0x" + "11" * 20
PAYMASTER_OWNER = "0x" + "22" * 20

# Gas profile used by most scenarios: price 10, 5k per validation call
PRE_VERIFICATION_GAS = 21_000
VALIDATION_GAS = 5_000
GAS_PRICE = 10


@pytest.fixture
def relay_config():
    return RelayConfig(
        chain_id=1337,
        account_validation_gas=VALIDATION_GAS,
        paymaster_validation_gas=VALIDATION_GAS,
        base_fee=0,
    )


@pytest.fixture
def entry_point(relay_config):
    return EntryPoint(relay_config)


@pytest.fixture
def owner_keys():
    return generate_secp256k1_keypair_hex()


@pytest.fixture
def account(entry_point, owner_keys):
    _, public_key = owner_keys
    smart_account = SmartAccount(owner=OWNER, owner_public_key=public_key)
    entry_point.register_account(smart_account)
    return smart_account


@pytest.fixture
def paymaster(entry_point):
    sponsor = Paymaster(owner=PAYMASTER_OWNER)
    entry_point.register_paymaster(sponsor)
    return sponsor


@pytest.fixture
def sign_op(entry_point, owner_keys):
    """Sign an operation with the account owner's key."""
    private_key, _ = owner_keys

    def _sign(op):
        op_hash = entry_point.get_user_op_hash(op)
        return replace(op, signature=bytes.fromhex(sign_message_hex(private_key, op_hash)))

    return _sign


@pytest.fixture
def make_op(account, sign_op):
    """Build a signed operation for ``account`` with the default gas profile."""

    def _make(sign=True, **overrides):
        fields = dict(
            sender=account.address,
            nonce=account.nonce,
            call_gas_limit=100_000,
            verification_gas_limit=50_000,
            pre_verification_gas=PRE_VERIFICATION_GAS,
            max_fee_per_gas=GAS_PRICE,
            max_priority_fee_per_gas=GAS_PRICE,
        )
        fields.update(overrides)
        op = UserOperation(**fields)
        return sign_op(op) if sign else op

    return _make
