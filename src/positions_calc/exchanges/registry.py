# src/positions_calc/exchanges/registry.py
from __future__ import annotations

from typing import Any, Type

from src.positions_calc.core.models.enums import MarketType, Venue
from src.positions_calc.exchanges.base.exchange import MarketDataClient
from src.positions_calc.exchanges.binance.exchange import BinanceClient
from src.positions_calc.exchanges.bybit.exchange import BybitClient
from src.positions_calc.exchanges.coinex.exchange import CoinexClient
from src.positions_calc.exchanges.htx.exchange import HtxClient
from src.positions_calc.exchanges.kucoin.exchange import KucoinClient
from src.positions_calc.exchanges.poloniex.exchange import PoloniexClient

CLIENTS: dict[Venue, Type[MarketDataClient]] = {
    Venue.BINANCE: BinanceClient,
    Venue.BYBIT: BybitClient,
    Venue.KUCOIN: KucoinClient,
    Venue.HTX: HtxClient,
    Venue.COINEX: CoinexClient,
    Venue.POLONIEX: PoloniexClient,
}

_missing = set(Venue) - set(CLIENTS)
if _missing:
    raise RuntimeError(f"no market data client registered for: {sorted(v.value for v in _missing)}")


def parse_venue(name: str | Venue) -> Venue:
    if isinstance(name, Venue):
        return name
    key = str(name or "").strip().lower()
    if key == "huobi":
        key = Venue.HTX.value
    try:
        return Venue(key)
    except ValueError:
        raise ValueError(f"Unknown exchange: {name!r}") from None


def build_client(venue: str | Venue, market: str | MarketType, **kwargs: Any) -> MarketDataClient:
    """
    Factory keyed by venue x market type.
    Unknown venue raises ValueError right away.
    """
    cls = CLIENTS[parse_venue(venue)]
    return cls(MarketType.parse(market), **kwargs)
