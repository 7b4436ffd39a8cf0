# src/positions_calc/core/position/unrealized.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from src.positions_calc.core.position.position_state import PositionState
from src.positions_calc.core.utils.numeric import to_number_safe


@dataclass(frozen=True, slots=True)
class UnrealizedPnl:
    unrealized_pnl: float
    cost: float


def compute_unrealized(
    last_price: Any,
    avg_price: Optional[float],
    position: Optional[float],
    taker_fee: float,
) -> Optional[UnrealizedPnl]:
    """
    Mark-to-market pnl of the open position, net of the estimated taker
    fee on exit.

    Returns None ("not computable") when the price is not a finite number
    or when the position is flat / not known yet. Never raises.
    """
    px = to_number_safe(last_price)
    if not math.isfinite(px):
        return None

    if avg_price is None or position is None:
        return None

    avg = to_number_safe(avg_price)
    pos = to_number_safe(position)
    if not math.isfinite(avg) or not math.isfinite(pos) or pos == 0:
        return None

    fee = float(taker_fee or 0.0)
    pnl = px * pos - avg * pos - px * fee * pos
    return UnrealizedPnl(unrealized_pnl=pnl, cost=abs(pos * px))


def compute_for_state(
    last_price: Any,
    state: Optional[PositionState],
    taker_fee: float,
) -> Optional[UnrealizedPnl]:
    if state is None:
        return None
    return compute_unrealized(last_price, state.display_avg_price, state.position, taker_fee)
