# src/positions_calc/core/position/accountant.py
"""
Position accounting.

Folds an id-ordered list of transactions into
{position, avg price, realized pnl}. Pure: no I/O, no caching, always
replayed from the empty state.

SPOT buys are booked net of the base-asset fee; sells carry the quote fee
into the average. FUTURES trades carry the quote fee into the average and
funding rows shift the average (or accrue to realized pnl when flat).
The realized pnl of a closing step is subtracted from the next opening
average, so it is reported per step and not accumulated.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from src.positions_calc.core.models.enums import MarketType, TransactionType
from src.positions_calc.core.models.transaction import Transaction
from src.positions_calc.core.position.position_state import PositionState

EPS_DEFAULT = 1e-10
EPS_MIN = 1e-12
EPS_MAX = 1e-8


class InvalidTransactionError(ValueError):
    pass


def _sign(x: float) -> float:
    if x > 0:
        return 1.0
    if x < 0:
        return -1.0
    return 0.0


def position_epsilon(transactions: Iterable[Transaction]) -> float:
    min_step = math.inf
    for tx in transactions:
        vol = abs(tx.volume or 0.0)
        fee_base = abs(tx.fee_base or 0.0)
        if 0 < vol < min_step:
            min_step = vol
        if 0 < fee_base < min_step:
            min_step = fee_base

    if not math.isfinite(min_step):
        return EPS_DEFAULT

    return max(EPS_MIN, min(EPS_MAX, min_step / 1000))


def normalize_near_zero(value: float, epsilon: float) -> float:
    if abs(value) <= epsilon:
        return 0.0
    return value


def validate_transaction(tx: Transaction) -> None:
    if tx.type == TransactionType.FUNDING and tx.volume != 0:
        raise InvalidTransactionError(
            f"funding transaction id={tx.id} carries volume={tx.volume}; funding rows must have volume 0"
        )


def find_problems(transactions: Iterable[Transaction]) -> List[str]:
    """Human-readable problems of the given rows (empty if none)."""
    problems: List[str] = []
    for tx in transactions:
        try:
            validate_transaction(tx)
        except InvalidTransactionError as e:
            problems.append(str(e))
    return problems


@dataclass
class _Fold:
    pos: float = 0.0
    avg: float = 0.0
    rpnl: float = 0.0
    degenerate: bool = False

    def closing_pnl(self, price: float, volume: float, avg_prev: float, pos_prev: float) -> float:
        return (price - avg_prev) * min(abs(volume), abs(pos_prev)) * _sign(pos_prev)

    # ------------------------------------------------------------------
    # SPOT
    # ------------------------------------------------------------------
    def spot(self, tx: Transaction, first: bool) -> None:
        avg_prev = self.avg
        pos = self.pos

        if tx.volume > 0:
            net = tx.volume - tx.fee_base

            if first:
                if net != 0:
                    self.avg = tx.price * tx.volume / net
                else:
                    self.avg = 0.0
                    self.degenerate = True
            elif pos + net != 0:
                if net != 0:
                    self.avg = (pos * self.avg + net * (tx.price * tx.volume / net) - self.rpnl) / (pos + net)
                else:
                    self.avg = 0.0
                    self.degenerate = True
            else:
                self.avg = 0.0

            if pos + net == 0:
                self.rpnl = self.closing_pnl(tx.price, tx.volume, avg_prev, pos)
            else:
                self.rpnl = 0.0

            self.pos = pos + net

        elif tx.volume < 0:
            if pos + tx.volume != 0:
                self.avg = (pos * self.avg + tx.volume * tx.price + tx.fee_quote) / (pos + tx.volume)
            else:
                self.avg = 0.0

            if pos + tx.volume == 0:
                self.rpnl = self.closing_pnl(tx.price, tx.volume, avg_prev, pos) - tx.fee_quote
            else:
                self.rpnl = 0.0

            self.pos = pos + tx.volume

    # ------------------------------------------------------------------
    # FUTURES
    # ------------------------------------------------------------------
    def futures(self, tx: Transaction, first: bool) -> None:
        avg_prev = self.avg
        pos = self.pos

        if tx.type == TransactionType.FUNDING:
            if pos != 0:
                self.avg = (pos * self.avg - tx.funding) / pos
            else:
                self.avg = 0.0
                self.rpnl += tx.funding

        elif first:
            if tx.volume != 0:
                self.avg = (tx.price * tx.volume + tx.fee_quote) / tx.volume
            else:
                self.avg = 0.0
                self.degenerate = True
            self.rpnl = 0.0

        elif pos + tx.volume != 0:
            self.avg = (pos * self.avg + tx.volume * tx.price + tx.fee_quote - self.rpnl) / (pos + tx.volume)
            self.rpnl = 0.0

        else:
            self.avg = 0.0
            self.rpnl = self.closing_pnl(tx.price, tx.volume, avg_prev, pos) - tx.fee_quote

        self.pos = pos + tx.volume


def fold(transactions: Iterable[Transaction], market: MarketType | str) -> PositionState:
    """
    Replay transactions (sorted by id, whatever the input order) from the
    empty state.

    Raises InvalidTransactionError for funding rows that carry volume.
    """
    market = MarketType.parse(market)
    txs: Sequence[Transaction] = sorted(transactions, key=lambda t: t.id)

    for tx in txs:
        validate_transaction(tx)

    eps = position_epsilon(txs)
    st = _Fold()
    fee_base = fee_quote = funding = 0.0

    for i, tx in enumerate(txs):
        if market == MarketType.SPOT:
            st.spot(tx, first=(i == 0))
        else:
            st.futures(tx, first=(i == 0))

        fee_base += tx.fee_base
        fee_quote += tx.fee_quote
        funding += tx.funding

    return PositionState(
        market=market,
        position=normalize_near_zero(st.pos, eps),
        raw_position=st.pos,
        avg_price=st.avg,
        realized_pnl=st.rpnl,
        fee_base_total=fee_base,
        fee_quote_total=fee_quote,
        funding_total=funding,
        epsilon=eps,
        count=len(txs),
        degenerate=st.degenerate,
    )


def fold_selected(
    transactions: Iterable[Transaction],
    market: MarketType | str,
    ids: Iterable[int],
) -> PositionState:
    """Independent fold over only the chosen transaction ids."""
    wanted = {int(i) for i in ids}
    return fold((tx for tx in transactions if tx.id in wanted), market)
