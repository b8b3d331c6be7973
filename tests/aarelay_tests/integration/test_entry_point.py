"""
End-to-end tests for EntryPoint.handle_ops.

Covers the full validate -> execute -> settle pipeline:
- Self-funded and sponsored operations
- Rejections abort the whole batch and roll back every effect
- Payload faults are recorded, still charged, never raised
- Deposits, withdrawals and audit events
"""

from unittest.mock import Mock

import pytest

from aarelay.core.config import RelayConfig
from aarelay.core.contracts.entry_point import EntryPoint
from aarelay.core.contracts.events import Deposited, UserOperationEvent, Withdrawn
from aarelay.core.contracts.user_operation import UserOperation, compute_user_op_hash
from aarelay.core.contracts.validator import (
    REASON_ACCOUNT_REJECTED,
    REASON_PAYMASTER_NOT_FOUND,
    REASON_PAYMASTER_REVERTED,
    VALIDATION_FAILED,
)
from aarelay.core.relay_exceptions import (
    InsufficientDepositError,
    ReentrancyError,
    TransferFailedError,
    ValidationRejectedError,
)

BENEFICIARY = "0x" + "be" * 20
OUTSIDER = "0x" + "77" * 20

# Matches the relay_config fixture: 21k pre-verification, 5k per validation call, price 10
SELF_FUNDED_GAS = 21_000 + 5_000
SPONSORED_GAS = 21_000 + 5_000 + 5_000
GAS_PRICE = 10

FUNDING = 2_000_000


def reject_transfer(source, amount):
    raise RuntimeError("beneficiary has no receive function")


class TestSelfFundedOperations:
    """Operations paid from the sender's own deposit."""

    def test_success_debits_sender_and_pays_beneficiary(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)

        results = entry_point.handle_ops([make_op()], BENEFICIARY)

        expected_cost = SELF_FUNDED_GAS * GAS_PRICE
        assert len(results) == 1
        event = results[0]
        assert event.success is True
        assert event.payer == account.address
        assert event.actual_gas_used == SELF_FUNDED_GAS
        assert event.actual_gas_cost == expected_cost == 260_000
        assert entry_point.balance_of(account.address) == FUNDING - expected_cost
        assert entry_point.value_store.balance_of(BENEFICIARY) == expected_cost
        assert account.nonce == 1

    def test_insufficient_deposit_aborts_batch(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, 100)
        op = make_op(call_gas_limit=10, max_fee_per_gas=50, max_priority_fee_per_gas=50)

        with pytest.raises(InsufficientDepositError) as exc_info:
            entry_point.handle_ops([op], BENEFICIARY)

        assert exc_info.value.required == 500
        assert entry_point.balance_of(account.address) == 100
        assert entry_point.value_store.balance_of(BENEFICIARY) == 0
        assert account.nonce == 0

    def test_event_hash_matches_domain_separated_hash(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        op = make_op()

        event = entry_point.handle_ops([op], BENEFICIARY)[0]

        assert event.user_op_hash == compute_user_op_hash(op, 1337, entry_point.address)
        assert event.user_op_hash == entry_point.get_user_op_hash(op)

    def test_ops_processed_in_order(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        first = make_op()
        second = make_op(nonce=1)

        results = entry_point.handle_ops([first, second], BENEFICIARY)

        assert [e.nonce for e in results] == [0, 1]
        assert account.nonce == 2
        assert entry_point.value_store.balance_of(BENEFICIARY) == 2 * SELF_FUNDED_GAS * GAS_PRICE


class TestSponsoredOperations:
    """Operations whose gas is paid by a paymaster."""

    def test_paymaster_pays_not_sender(self, entry_point, account, paymaster, make_op):
        entry_point.deposit_to(paymaster.address, FUNDING)
        op = make_op(paymaster_and_data=paymaster.paymaster_and_data_prefix)

        event = entry_point.handle_ops([op], BENEFICIARY)[0]

        expected_cost = SPONSORED_GAS * GAS_PRICE
        assert event.actual_gas_cost == expected_cost == 310_000
        assert event.payer == paymaster.address
        assert event.sponsored is True
        assert entry_point.balance_of(paymaster.address) == FUNDING - expected_cost
        assert entry_point.balance_of(account.address) == 0
        assert entry_point.value_store.balance_of(BENEFICIARY) == expected_cost

    def test_post_op_receives_actual_cost(self, entry_point, account, paymaster, make_op):
        entry_point.deposit_to(paymaster.address, FUNDING)
        entry_point.handle_ops([make_op(paymaster_and_data=paymaster.paymaster_and_data_prefix)], BENEFICIARY)

        assert paymaster.total_sponsored == 1
        assert paymaster.gas_sponsored == SPONSORED_GAS * GAS_PRICE
        assert paymaster.reverted_sponsored == 0

    def test_post_op_mode_reflects_execution_failure(self, entry_point, account, paymaster, make_op):
        entry_point.deposit_to(paymaster.address, FUNDING)
        account.call_handler = Mock(side_effect=RuntimeError("payload reverted"))
        op = make_op(call_data=b"\x01", paymaster_and_data=paymaster.paymaster_and_data_prefix)

        event = entry_point.handle_ops([op], BENEFICIARY)[0]

        assert event.success is False
        assert paymaster.reverted_sponsored == 1

    def test_unfunded_paymaster_rejects(self, entry_point, account, paymaster, make_op):
        op = make_op(paymaster_and_data=paymaster.paymaster_and_data_prefix)

        with pytest.raises(ValidationRejectedError) as exc_info:
            entry_point.handle_ops([op], BENEFICIARY)

        assert exc_info.value.reason == REASON_PAYMASTER_REVERTED
        assert exc_info.value.op_index == 0

    def test_malformed_paymaster_context_rejects(self, entry_point, account, make_op):
        sponsor_address = "0x" + "9a" * 20
        sponsor = Mock(spec=["validate_paymaster_user_op", "post_op"])
        sponsor.validate_paymaster_user_op.return_value = ("ctx", 0)
        entry_point.register_paymaster(sponsor, address=sponsor_address)
        entry_point.deposit_to(sponsor_address, FUNDING)

        with pytest.raises(ValidationRejectedError) as exc_info:
            entry_point.handle_ops([make_op(paymaster_and_data=bytes.fromhex(sponsor_address[2:]))], BENEFICIARY)

        assert exc_info.value.reason == REASON_PAYMASTER_REVERTED
        assert account.nonce == 0
        sponsor.post_op.assert_not_called()

    def test_unknown_paymaster_rejects(self, entry_point, account, make_op):
        op = make_op(paymaster_and_data=bytes.fromhex(OUTSIDER[2:]))

        with pytest.raises(ValidationRejectedError) as exc_info:
            entry_point.handle_ops([op], BENEFICIARY)

        assert exc_info.value.reason == REASON_PAYMASTER_NOT_FOUND

    def test_account_rejection_overrides_paymaster(self, entry_point, paymaster):
        sender = "0x" + "5e" * 20
        rogue = Mock(spec=["validate_user_op", "execute"])
        rogue.validate_user_op.return_value = VALIDATION_FAILED
        entry_point.register_account(rogue, address=sender)
        entry_point.deposit_to(paymaster.address, FUNDING)
        events_before = list(entry_point.events)

        op = UserOperation(
            sender=sender,
            nonce=0,
            max_fee_per_gas=GAS_PRICE,
            max_priority_fee_per_gas=GAS_PRICE,
            paymaster_and_data=paymaster.paymaster_and_data_prefix,
        )

        with pytest.raises(ValidationRejectedError) as exc_info:
            entry_point.handle_ops([op], BENEFICIARY)

        assert exc_info.value.reason == REASON_ACCOUNT_REJECTED
        assert "FailedOp(0" in str(exc_info.value)
        assert entry_point.balance_of(paymaster.address) == FUNDING
        assert entry_point.events == events_before
        rogue.execute.assert_not_called()


class TestExecutionFaults:
    """Payload faults are absorbed and still paid for."""

    def test_failed_payload_is_charged(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        account.call_handler = Mock(side_effect=RuntimeError("transfer reverted"))

        event = entry_point.handle_ops([make_op(call_data=b"\x01\x02")], BENEFICIARY)[0]

        expected_gas = SELF_FUNDED_GAS + 32
        assert event.success is False
        assert event.actual_gas_used == expected_gas
        assert entry_point.balance_of(account.address) == FUNDING - expected_gas * GAS_PRICE
        assert entry_point.value_store.balance_of(BENEFICIARY) == expected_gas * GAS_PRICE
        # Validation effects stick even though the payload failed
        assert account.nonce == 1

    def test_failed_payload_state_changes_are_reverted(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)

        def withdraw_then_fault(call_data, gas_meter):
            entry_point.withdraw_to(account.address, OUTSIDER, 1_000_000)
            raise RuntimeError("payload reverted after withdrawing")

        account.call_handler = withdraw_then_fault

        event = entry_point.handle_ops([make_op(call_data=b"\x01")], BENEFICIARY)[0]

        expected_cost = (SELF_FUNDED_GAS + 16) * GAS_PRICE
        assert event.success is False
        assert entry_point.value_store.balance_of(OUTSIDER) == 0
        assert entry_point.balance_of(account.address) == FUNDING - expected_cost
        assert not any(isinstance(e, Withdrawn) for e in entry_point.events)
        # The nonce consumed during validation is kept
        assert account.nonce == 1

    def test_successful_payload_state_changes_are_kept(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)

        def withdraw(call_data, gas_meter):
            entry_point.withdraw_to(account.address, OUTSIDER, 1_000)
            return b""

        account.call_handler = withdraw

        event = entry_point.handle_ops([make_op(call_data=b"\x01")], BENEFICIARY)[0]

        assert event.success is True
        assert entry_point.value_store.balance_of(OUTSIDER) == 1_000

    def test_out_of_gas_burns_call_gas_limit(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)

        def expensive(call_data, gas_meter):
            gas_meter.consume(50_000)
            return b""

        account.call_handler = expensive

        event = entry_point.handle_ops([make_op(call_data=b"\x01", call_gas_limit=1_000)], BENEFICIARY)[0]

        assert event.success is False
        assert event.actual_gas_used == SELF_FUNDED_GAS + 1_000

    def test_nested_handle_ops_is_execution_failure(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        nested = []

        def reenter(call_data, gas_meter):
            try:
                entry_point.handle_ops([make_op(sign=False)], BENEFICIARY)
            except ReentrancyError as e:
                nested.append(e)
                raise
            return b""

        account.call_handler = reenter

        event = entry_point.handle_ops([make_op(call_data=b"\x01")], BENEFICIARY)[0]

        assert event.success is False
        assert len(nested) == 1
        assert entry_point._in_batch is False


class TestBatchAtomicity:
    """A fatal fault restores every piece of state touched by the batch."""

    def test_second_op_rejection_rolls_back_first(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        first = make_op()
        # Reuses nonce 0, which the first op consumes
        second = make_op(call_data=b"\x02")

        with pytest.raises(ValidationRejectedError) as exc_info:
            entry_point.handle_ops([first, second], BENEFICIARY)

        assert exc_info.value.op_index == 1
        assert account.nonce == 0
        assert entry_point.balance_of(account.address) == FUNDING
        assert entry_point.value_store.balance_of(BENEFICIARY) == 0
        assert not any(isinstance(e, UserOperationEvent) for e in entry_point.events)
        assert entry_point.get_stats()["total_ops_processed"] == 0

    def test_beneficiary_rejection_rolls_back(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        entry_point.value_store.register_receiver(BENEFICIARY, reject_transfer)

        with pytest.raises(TransferFailedError):
            entry_point.handle_ops([make_op()], BENEFICIARY)

        assert account.nonce == 0
        assert entry_point.balance_of(account.address) == FUNDING

    def test_paymaster_stats_rolled_back(self, entry_point, account, paymaster, make_op):
        entry_point.deposit_to(paymaster.address, FUNDING)
        sponsored = make_op(paymaster_and_data=paymaster.paymaster_and_data_prefix)
        replay = make_op(paymaster_and_data=paymaster.paymaster_and_data_prefix, call_data=b"\x03")

        with pytest.raises(ValidationRejectedError):
            entry_point.handle_ops([sponsored, replay], BENEFICIARY)

        assert paymaster.total_sponsored == 0
        assert paymaster.gas_sponsored == 0

    def test_batch_usable_after_abort(self, entry_point, account, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        entry_point.value_store.register_receiver(BENEFICIARY, reject_transfer)
        op = make_op()
        with pytest.raises(TransferFailedError):
            entry_point.handle_ops([op], BENEFICIARY)

        entry_point.value_store.register_receiver(BENEFICIARY, None)
        assert entry_point.handle_ops([op], BENEFICIARY)[0].success is True

    def test_reentrancy_guard(self, entry_point, account, make_op):
        entry_point._in_batch = True
        with pytest.raises(ReentrancyError):
            entry_point.handle_ops([make_op()], BENEFICIARY)

    def test_empty_batch(self, entry_point):
        assert entry_point.handle_ops([], BENEFICIARY) == []

    def test_beneficiary_required(self, entry_point, account, make_op):
        with pytest.raises(TransferFailedError):
            entry_point.handle_ops([make_op()], "")


class TestDeposits:
    """Tests for deposit_to, receive and withdraw_to."""

    def test_deposit_backed_by_holdings(self, entry_point):
        assert entry_point.deposit_to(OUTSIDER, 500) == 500
        assert entry_point.receive(OUTSIDER, 250) == 750

        assert entry_point.balance_of(OUTSIDER) == 750
        assert entry_point.value_store.balance_of(entry_point.address) == 750
        assert entry_point.events[-1] == Deposited(account=OUTSIDER, total_deposit=750)

    def test_withdraw(self, entry_point):
        destination = "0x" + "d0" * 20
        entry_point.deposit_to(OUTSIDER, 1_000)

        remaining = entry_point.withdraw_to(OUTSIDER, destination, 400)

        assert remaining == 600
        assert entry_point.value_store.balance_of(destination) == 400
        assert entry_point.value_store.balance_of(entry_point.address) == 600
        assert entry_point.events[-1] == Withdrawn(account=OUTSIDER, withdraw_address=destination, amount=400)

    def test_withdraw_more_than_deposit(self, entry_point):
        entry_point.deposit_to(OUTSIDER, 100)
        with pytest.raises(InsufficientDepositError):
            entry_point.withdraw_to(OUTSIDER, OUTSIDER, 101)
        assert entry_point.balance_of(OUTSIDER) == 100

    def test_failed_withdraw_transfer_keeps_deposit(self, entry_point):
        entry_point.deposit_to(OUTSIDER, 100)
        entry_point.value_store.register_receiver(OUTSIDER, reject_transfer)

        with pytest.raises(TransferFailedError):
            entry_point.withdraw_to(OUTSIDER, OUTSIDER, 50)

        assert entry_point.balance_of(OUTSIDER) == 100


class TestEntryPointQueries:
    """Tests for gas price, registration and stats."""

    def test_gas_price_uses_base_fee_when_caps_differ(self):
        entry_point = EntryPoint(RelayConfig(base_fee=5))
        op = UserOperation(sender=OUTSIDER, nonce=0, max_fee_per_gas=20, max_priority_fee_per_gas=3)
        assert entry_point.gas_price(op) == 8

        capped = UserOperation(sender=OUTSIDER, nonce=0, max_fee_per_gas=6, max_priority_fee_per_gas=3)
        assert entry_point.gas_price(capped) == 6

    def test_gas_price_equal_caps_ignores_base_fee(self):
        entry_point = EntryPoint(RelayConfig(base_fee=1_000))
        op = UserOperation(sender=OUTSIDER, nonce=0, max_fee_per_gas=7, max_priority_fee_per_gas=7)
        assert entry_point.gas_price(op) == 7

    def test_registration_wires_collaborators(self, entry_point, account, paymaster):
        assert account.entry_point == entry_point.address
        assert paymaster.deposit_source == entry_point.balance_of

    def test_registration_requires_address(self, entry_point):
        with pytest.raises(ValueError):
            entry_point.register_account(Mock(spec=["validate_user_op", "execute"]))

    def test_stats(self, entry_point, account, paymaster, make_op):
        entry_point.deposit_to(account.address, FUNDING)
        entry_point.handle_ops([make_op()], BENEFICIARY)

        stats = entry_point.get_stats()

        assert stats["total_ops_processed"] == 1
        assert stats["total_gas_used"] == SELF_FUNDED_GAS
        assert stats["total_deposits"] == FUNDING - SELF_FUNDED_GAS * GAS_PRICE
        assert stats["accounts_registered"] == 1
        assert stats["paymasters_registered"] == 1
