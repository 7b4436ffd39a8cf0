from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from src.positions_calc.core.models.enums import TransactionType
from src.positions_calc.core.utils.numeric import to_number_safe


def _num(row: Mapping[str, Any], *keys: str) -> float:
    for k in keys:
        if k in row and row[k] is not None and row[k] != "":
            v = to_number_safe(row[k])
            return 0.0 if v != v else v  # NaN -> 0
    return 0.0


@dataclass(frozen=True)
class Transaction:
    id: int
    type: TransactionType
    price: float = 0.0
    volume: float = 0.0        # signed: +buy / -sell
    fee_base: float = 0.0      # SPOT buys only
    fee_quote: float = 0.0
    funding: float = 0.0       # FUTURES only
    timestamp: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Transaction":
        """
        Build from a store / CSV style row.
        Accepts both snake_case keys and the upper-case column names
        (ID, TYPE/OP_TYPE, PRICE, VOLUME, FEE_BASE, FEE, FUNDING).
        """
        raw_id = row.get("id", row.get("ID"))
        if raw_id is None:
            raise ValueError(f"transaction row without id: {dict(row)!r}")

        raw_type = str(row.get("type") or row.get("TYPE") or row.get("OP_TYPE") or "TRADE").strip().upper()
        try:
            tx_type = TransactionType(raw_type)
        except ValueError:
            raise ValueError(f"unknown transaction type {raw_type!r} (id={raw_id})")

        ts = row.get("timestamp") or row.get("DATE")
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)

        return cls(
            id=int(raw_id),
            type=tx_type,
            price=_num(row, "price", "PRICE"),
            volume=_num(row, "volume", "VOLUME"),
            fee_base=_num(row, "fee_base", "FEE_BASE"),
            fee_quote=_num(row, "fee_quote", "fee", "FEE"),
            funding=_num(row, "funding", "FUNDING", "FUNDING_AMOUNT"),
            timestamp=ts if isinstance(ts, datetime) else None,
        )
