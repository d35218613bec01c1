"""
PositionLedger — cached per-outcome share balances for the active market.

Two values exist for every outcome:

- the *cached* balance held here, updated optimistically after each
  submitted order, and
- the *authoritative* balance reported by the CLOB account.

They meet in exactly one place, `reconcile()`, which the executor calls
right before sizing a SELL. The ledger is reset when the active market's
identity changes; it is never persisted.
"""

from __future__ import annotations

from signal_trader.models import Direction, Outcome

__all__ = ["PositionLedger"]

_LEDGER_DECIMALS = 6


class PositionLedger:
    """Owned by a single `TradeExecutor`; not shared across tasks."""

    def __init__(self):
        self._shares: dict[Outcome, float] = {Outcome.UP: 0.0, Outcome.DOWN: 0.0}

    def get(self, outcome: Outcome) -> float:
        return self._shares[outcome]

    def reset(self) -> None:
        for outcome in self._shares:
            self._shares[outcome] = 0.0

    def reconcile(self, outcome: Outcome, authoritative: float) -> float:
        """Replace the cached balance with the account's figure."""
        self._shares[outcome] = round(max(0.0, authoritative), _LEDGER_DECIMALS)
        return self._shares[outcome]

    def apply_fill(self, outcome: Outcome, direction: Direction, size: float) -> float:
        """Optimistic update after a submitted order. SELL never goes below zero."""
        current = self._shares[outcome]
        if direction is Direction.BUY:
            updated = current + size
        else:
            updated = max(0.0, current - size)
        self._shares[outcome] = round(updated, _LEDGER_DECIMALS)
        return self._shares[outcome]

    def snapshot(self) -> dict[str, float]:
        return {outcome.value: shares for outcome, shares in self._shares.items()}
