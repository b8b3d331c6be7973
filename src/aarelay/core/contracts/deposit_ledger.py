"""
Deposit Ledger.

Prepaid balances held by the entry point on behalf of accounts and
paymasters. Balances are never negative: debits larger than the balance are
refused outright.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..relay_exceptions import InsufficientDepositError, InvalidAmountError
from ..value_store import normalize_address

logger = logging.getLogger(__name__)


class DepositLedger:
    """Principal -> prepaid balance, injectable so tests get isolated ledgers."""

    def __init__(self) -> None:
        self.deposits: Dict[str, int] = {}

    def fund(self, principal: str, amount: int) -> int:
        """
        Credit ``amount`` to ``principal``.

        Returns:
            The principal's new balance

        Raises:
            InvalidAmountError: If amount is not a positive integer
        """
        _require_amount(amount, allow_zero=False)
        key = normalize_address(principal)
        self.deposits[key] = self.deposits.get(key, 0) + amount

        logger.info(
            "Deposit funded",
            extra={
                "event": "ledger.deposited",
                "principal": key[:10],
                "amount": amount,
                "total": self.deposits[key],
            },
        )
        return self.deposits[key]

    def balance_of(self, principal: str) -> int:
        return self.deposits.get(normalize_address(principal), 0)

    def debit(self, principal: str, amount: int) -> int:
        """
        Decrease ``principal``'s balance by ``amount``.

        Raises:
            InsufficientDepositError: If amount exceeds the balance
        """
        _require_amount(amount, allow_zero=True)
        key = normalize_address(principal)
        current = self.deposits.get(key, 0)
        if amount > current:
            logger.warning(
                "Deposit debit refused",
                extra={
                    "event": "ledger.debit_refused",
                    "principal": key[:10],
                    "amount": amount,
                    "balance": current,
                },
            )
            raise InsufficientDepositError(
                f"Insufficient deposit for {key[:10]}: {current} < {amount}",
                principal=key,
                required=amount,
                available=current,
            )
        self.deposits[key] = current - amount
        return self.deposits[key]

    def total_deposits(self) -> int:
        return sum(self.deposits.values())

    def snapshot(self) -> Dict[str, Any]:
        return {"deposits": dict(self.deposits)}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self.deposits = dict(snapshot.get("deposits", {}))


def _require_amount(amount: int, allow_zero: bool) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"Amount must be an integer, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmountError(f"Amount must be positive, got {amount}")
