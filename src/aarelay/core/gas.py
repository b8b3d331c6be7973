"""
Gas metering for UserOperation processing.

A GasMeter tracks consumption against a ceiling. The entry point opens one
meter per operation and hands bounded child meters to the validation and
execution phases, so the amount consumed can be read back after each phase.
"""

from __future__ import annotations

from typing import Optional

from .relay_exceptions import OutOfGasError


class GasMeter:
    """Tracks gas consumption against a fixed limit."""

    def __init__(self, limit: int, parent: Optional["GasMeter"] = None) -> None:
        if limit < 0:
            raise ValueError(f"Gas limit must be non-negative, got {limit}")
        self.limit = limit
        self.used = 0
        self._parent = parent

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    def consume(self, amount: int, reason: str = "") -> None:
        """
        Consume gas.

        Exhausting the meter pins ``used`` at ``limit`` and raises
        OutOfGasError, mirroring how a reverted call still burns its budget.
        """
        if amount < 0:
            raise ValueError(f"Gas amount must be non-negative, got {amount}")
        if amount > self.remaining:
            self.used = self.limit
            raise OutOfGasError(
                f"Out of gas{': ' + reason if reason else ''} "
                f"(requested {amount}, remaining {self.remaining})",
                details={"limit": self.limit, "requested": amount},
            )
        self.used += amount

    def child(self, limit: int) -> "GasMeter":
        """Open a sub-meter capped by both ``limit`` and this meter's remaining gas."""
        return GasMeter(min(limit, self.remaining), parent=self)

    def settle_child(self, child: "GasMeter") -> int:
        """Fold a child meter's consumption back into this meter."""
        if child._parent is not self:
            raise ValueError("Meter is not a child of this meter")
        self.used += min(child.used, self.remaining)
        return child.used
