# src/positions_calc/core/position/position_state.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.positions_calc.core.models.enums import MarketType


@dataclass(frozen=True, slots=True)
class PositionState:
    market: MarketType

    position: float = 0.0          # epsilon-normalized net size
    raw_position: float = 0.0      # as folded, before normalization
    avg_price: float = 0.0         # raw recurrence value
    realized_pnl: float = 0.0      # of the last folded step

    fee_base_total: float = 0.0
    fee_quote_total: float = 0.0
    funding_total: float = 0.0

    epsilon: float = 1e-10
    count: int = 0

    # a zero denominator was hit on a step that did not close the position
    degenerate: bool = False

    @property
    def is_flat(self) -> bool:
        return self.position == 0.0

    @property
    def display_avg_price(self) -> Optional[float]:
        if self.is_flat:
            return None
        return self.avg_price
