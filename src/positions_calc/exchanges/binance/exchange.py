# src/positions_calc/exchanges/binance/exchange.py
from __future__ import annotations

from typing import Any, Optional

from src.positions_calc.exchanges.base.exchange import MarketDataClient, split_symbol
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig

SPOT_REST = "https://api.binance.com/api/v3/ticker/price"
FUTURES_REST = "https://fapi.binance.com/fapi/v1/ticker/price"

SPOT_WS = "wss://stream.binance.com:9443/ws"
FUTURES_WS = "wss://fstream.binance.com/ws"


class BinanceClient(MarketDataClient):
    """
    Binance spot / USDⓈ-M futures.
    The @ticker stream pushes every second; liveness is left to
    websocket-level ping frames.
    """

    name = "binance"
    taker_fees = {"spot": 0.001, "futures": 0.0004}

    heartbeat: Optional[HeartbeatConfig] = None
    ws_ping_interval = 20
    ws_ping_timeout = 10

    def map_symbol(self, symbol: str) -> str:
        base, quote = split_symbol(symbol)
        return f"{base}{quote}"

    def _request_initial_price(self, symbol: str) -> Any:
        url = SPOT_REST if self.is_spot else FUTURES_REST
        data = self.rest.get(url, params={"symbol": self.map_symbol(symbol)})
        return (data or {}).get("price")

    def stream_url(self, symbol: str) -> str:
        base = SPOT_WS if self.is_spot else FUTURES_WS
        return f"{base}/{self.map_symbol(symbol).lower()}@ticker"

    def parse_tick(self, data: Any) -> Any:
        # 24hrTicker: {"e":"24hrTicker","s":"BTCUSDT","c":"65000.1",...}
        if isinstance(data, dict):
            return data.get("c")
        return None
