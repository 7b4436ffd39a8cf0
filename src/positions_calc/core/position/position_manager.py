# src/positions_calc/core/position/position_manager.py
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Protocol

from src.positions_calc.core.models.enums import TransactionType
from src.positions_calc.core.models.position import Position
from src.positions_calc.core.models.transaction import Transaction
from src.positions_calc.core.position.accountant import find_problems, fold, fold_selected
from src.positions_calc.core.position.position_state import PositionState

ChangeListener = Callable[[int], None]


class TransactionStore(Protocol):
    def fetch_transactions(self, position_id: int) -> List[Transaction]:
        ...

    def add_listener(self, cb: ChangeListener) -> None:
        ...


class InMemoryTransactionStore:
    """
    Reference transaction store.

    Rows are kept per position and returned ordered by id. Every mutation
    notifies listeners with the position id so derived folds can be dropped.
    """

    def __init__(self) -> None:
        self._rows: Dict[int, Dict[int, Transaction]] = {}
        self._ids = itertools.count(1)
        self._listeners: list[ChangeListener] = []
        self._lock = threading.RLock()

    def add_listener(self, cb: ChangeListener) -> None:
        self._listeners.append(cb)

    def _notify(self, position_id: int) -> None:
        for cb in list(self._listeners):
            cb(position_id)

    @staticmethod
    def _clean(tx: Transaction) -> Transaction:
        if tx.type == TransactionType.FUNDING:
            # funding rows carry only the funding amount
            return replace(tx, price=0.0, volume=0.0, fee_base=0.0, fee_quote=0.0)
        return replace(tx, funding=0.0)

    # ------------------------------------------------------------
    def add(self, position_id: int, tx: Transaction) -> Transaction:
        with self._lock:
            rows = self._rows.setdefault(int(position_id), {})
            if tx.id in rows:
                raise KeyError(f"transaction id={tx.id} already exists for position={position_id}")
            tx = self._clean(tx)
            rows[tx.id] = tx
        self._notify(int(position_id))
        return tx

    def create(self, position_id: int, **fields: Any) -> Transaction:
        with self._lock:
            existing = max(self._rows.get(int(position_id), {}) or [0])
            next_id = next(self._ids)
            while next_id <= existing:
                next_id = next(self._ids)
            fields.setdefault("type", TransactionType.TRADE)
            tx = Transaction(id=next_id, **fields)
        return self.add(position_id, tx)

    def edit(self, position_id: int, tx: Transaction) -> Transaction:
        with self._lock:
            rows = self._rows.get(int(position_id)) or {}
            if tx.id not in rows:
                raise KeyError(f"transaction id={tx.id} not found for position={position_id}")
            tx = self._clean(tx)
            rows[tx.id] = tx
        self._notify(int(position_id))
        return tx

    def delete(self, position_id: int, ids: Iterable[int]) -> int:
        with self._lock:
            rows = self._rows.get(int(position_id)) or {}
            n = 0
            for i in ids:
                if rows.pop(int(i), None) is not None:
                    n += 1
        if n:
            self._notify(int(position_id))
        return n

    def fetch_transactions(self, position_id: int) -> List[Transaction]:
        with self._lock:
            rows = self._rows.get(int(position_id)) or {}
            return [rows[k] for k in sorted(rows)]


class PositionManager:
    """
    Server-side view over stored positions.

    Responsibilities:
      ✔ recompute PositionState from the full transaction list
      ✔ cache folds per position, dropped on any store mutation
      ✔ independent fold over a selected subset
      ✖ NO persistence
    """

    def __init__(
        self,
        *,
        store: TransactionStore,
        positions: Dict[int, Position] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.positions: Dict[int, Position] = dict(positions or {})
        self.logger = logger or logging.getLogger("positions_calc.core.position")

        self._cache: Dict[int, PositionState] = {}
        self._lock = threading.RLock()

        store.add_listener(self.invalidate)

    # ------------------------------------------------------------
    def add_position(self, position: Position) -> Position:
        with self._lock:
            self.positions[int(position.id)] = position
            self._cache.pop(int(position.id), None)
        return position

    def get_position(self, position_id: int) -> Position:
        try:
            return self.positions[int(position_id)]
        except KeyError:
            raise KeyError(f"position not found: {position_id}")

    def invalidate(self, position_id: int) -> None:
        with self._lock:
            if self._cache.pop(int(position_id), None) is not None:
                self.logger.debug("[POSITIONS] cache dropped position=%s", position_id)

    # ------------------------------------------------------------
    def state(self, position_id: int) -> PositionState:
        position_id = int(position_id)
        with self._lock:
            st = self._cache.get(position_id)
            if st is not None:
                return st

            pos = self.get_position(position_id)
            txs = self.store.fetch_transactions(position_id)
            st = fold(txs, pos.market)
            self._cache[position_id] = st

        if st.degenerate:
            self.logger.warning(
                "[POSITIONS] position=%s hit a zero denominator; avg price fell back to 0", position_id,
            )
        return st

    def fold_selected(self, position_id: int, ids: Iterable[int]) -> PositionState:
        pos = self.get_position(position_id)
        return fold_selected(self.store.fetch_transactions(int(position_id)), pos.market, ids)

    def validate(self, position_id: int) -> List[str]:
        """Human-readable problems of stored rows (empty if none)."""
        return find_problems(self.store.fetch_transactions(int(position_id)))

    # ------------------------------------------------------------
    def summary(self, position_id: int) -> dict:
        pos = self.get_position(position_id)
        st = self.state(position_id)
        return {
            "position_id": pos.id,
            "symbol": pos.symbol,
            "venue": pos.venue,
            "market": pos.market.value,
            "status": pos.status.value,
            "created_at": pos.created_at,
            "closed_at": pos.closed_at,
            "final_position": st.position,
            "final_avg_price": st.display_avg_price,
            "fee_base_total": st.fee_base_total,
            "fee_total": st.fee_quote_total,
            "funding_total": st.funding_total,
            "realized_pnl": st.realized_pnl,
            "trans_count": st.count,
        }

    def close_position(self, position_id: int) -> bool:
        pos = self.get_position(position_id)
        changed = pos.close()
        if changed:
            self.logger.info("[POSITIONS] position=%s closed", position_id)
        return changed

    def open_positions(self) -> List[Position]:
        return [p for p in self.positions.values() if p.is_open]
