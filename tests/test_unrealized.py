import math

import pytest

from src.positions_calc.core.models.enums import MarketType, TransactionType
from src.positions_calc.core.models.transaction import Transaction
from src.positions_calc.core.position import compute_for_state, compute_unrealized, fold


class TestComputeUnrealized:
    def test_long_net_of_exit_fee(self):
        r = compute_unrealized(110, 100, 10, 0.001)
        assert r.unrealized_pnl == pytest.approx(98.9)
        assert r.cost == pytest.approx(1100)

    def test_short(self):
        r = compute_unrealized(90, 100, -2, 0)
        assert r.unrealized_pnl == pytest.approx(20)
        assert r.cost == pytest.approx(180)

    def test_price_as_string(self):
        r = compute_unrealized("110", 100, 10, 0)
        assert r.unrealized_pnl == pytest.approx(100)

    @pytest.mark.parametrize("price", [None, "", "-", "abc", math.nan, math.inf])
    def test_non_finite_price(self, price):
        assert compute_unrealized(price, 100, 10, 0.001) is None

    def test_flat_or_unknown_position(self):
        assert compute_unrealized(110, 100, 0, 0.001) is None
        assert compute_unrealized(110, 100, None, 0.001) is None
        assert compute_unrealized(110, None, 10, 0.001) is None


class TestComputeForState:
    def test_open_state(self):
        st = fold([Transaction(id=1, type=TransactionType.TRADE, price=100, volume=10)], MarketType.SPOT)
        r = compute_for_state(120, st, 0.0)
        assert r.unrealized_pnl == pytest.approx(200)

    def test_flat_state(self):
        st = fold([
            Transaction(id=1, type=TransactionType.TRADE, price=100, volume=10),
            Transaction(id=2, type=TransactionType.TRADE, price=110, volume=-10),
        ], MarketType.SPOT)
        assert compute_for_state(120, st, 0.001) is None

    def test_no_state(self):
        assert compute_for_state(120, None, 0.001) is None
