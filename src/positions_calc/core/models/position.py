from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import MarketType, PositionStatus


@dataclass
class Position:
    """
    Position record as kept by the position store.
    Prices here are NOT authoritative: avg price / pnl are always
    recomputed from transactions.
    """

    id: int
    symbol: str                # generic BASE/QUOTE, e.g. BTC/USDT
    venue: str
    market: MarketType = MarketType.SPOT
    status: PositionStatus = PositionStatus.OPEN

    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def identity(self) -> tuple[str, MarketType, str]:
        return self.venue.strip().lower(), self.market, self.symbol.strip().upper()

    def close(self) -> bool:
        if self.status == PositionStatus.CLOSED:
            return False
        self.status = PositionStatus.CLOSED
        self.closed_at = datetime.now(tz=timezone.utc)
        return True
