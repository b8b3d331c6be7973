"""
aarelay - Host Value Store

Native balances of the host ledger: the entry point's own holdings (which
back every deposit) and the balances of beneficiaries and other principals.
Principals that behave like contracts may register a receive hook; a hook
that raises makes the transfer fail.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .relay_exceptions import InvalidAmountError, TransferFailedError

logger = logging.getLogger(__name__)

ReceiveHook = Callable[[str, int], None]


def normalize_address(address: str) -> str:
    return address.strip().lower()


class ValueStore:
    """Native balance book with snapshot/restore for batch rollback."""

    def __init__(self) -> None:
        self.balances: Dict[str, int] = {}
        self._receivers: Dict[str, ReceiveHook] = {}

    def balance_of(self, address: str) -> int:
        return self.balances.get(normalize_address(address), 0)

    def mint(self, address: str, amount: int) -> int:
        """Credit value arriving from outside the system."""
        _require_amount(amount)
        key = normalize_address(address)
        self.balances[key] = self.balances.get(key, 0) + amount
        return self.balances[key]

    def register_receiver(self, address: str, hook: Optional[ReceiveHook]) -> None:
        """Install (or with ``None`` remove) a receive hook for ``address``."""
        key = normalize_address(address)
        if hook is None:
            self._receivers.pop(key, None)
        else:
            self._receivers[key] = hook

    def transfer(self, source: str, recipient: str, amount: int) -> None:
        """
        Move ``amount`` from ``source`` to ``recipient``.

        A zero amount is a no-op. Any failure raises TransferFailedError and
        leaves both balances untouched.

        Raises:
            TransferFailedError: Invalid recipient, insufficient source
                balance, or a receive hook that raised
        """
        if amount == 0:
            return
        _require_amount(amount)

        src = normalize_address(source)
        dst = normalize_address(recipient)
        if not dst:
            raise TransferFailedError("Transfer recipient is empty")

        available = self.balances.get(src, 0)
        if amount > available:
            raise TransferFailedError(
                f"Insufficient balance for transfer: {available} < {amount}",
                details={"source": src, "recipient": dst, "amount": amount},
            )

        hook = self._receivers.get(dst)
        if hook is not None:
            try:
                hook(src, amount)
            except Exception as e:
                logger.warning(
                    "Value transfer rejected by recipient",
                    extra={
                        "event": "value.transfer_rejected",
                        "recipient": dst[:10],
                        "amount": amount,
                        "error": str(e),
                    },
                )
                raise TransferFailedError(
                    f"Recipient {dst[:10]} rejected transfer: {e}",
                    details={"recipient": dst, "amount": amount},
                ) from e

        self.balances[src] = available - amount
        self.balances[dst] = self.balances.get(dst, 0) + amount

        logger.debug(
            "Value transferred",
            extra={
                "event": "value.transferred",
                "source": src[:10],
                "recipient": dst[:10],
                "amount": amount,
            },
        )

    def total_supply(self) -> int:
        return sum(self.balances.values())

    def snapshot(self) -> Dict[str, Any]:
        return {"balances": dict(self.balances)}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self.balances = dict(snapshot.get("balances", {}))


def _require_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")
