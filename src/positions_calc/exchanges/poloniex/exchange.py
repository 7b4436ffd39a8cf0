# src/positions_calc/exchanges/poloniex/exchange.py
from __future__ import annotations

from typing import Any, Optional

from src.positions_calc.exchanges.base.exchange import MarketDataClient, split_symbol
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig

SPOT_REST = "https://api.poloniex.com/markets/{symbol}/ticker24h"
FUTURES_REST = "https://futures-api.poloniex.com/v1/ticker"

SPOT_WS = "wss://ws.poloniex.com/ws/public"
FUTURES_WS = "wss://futures-apiws.poloniex.com/ws/v1"


class PoloniexClient(MarketDataClient):
    name = "poloniex"
    taker_fees = {"spot": 0.0015, "futures": 0.0005}

    heartbeat = HeartbeatConfig(timeout=60.0, auto_pong=True)

    def map_symbol(self, symbol: str) -> str:
        base, quote = split_symbol(symbol)
        if self.is_spot:
            return f"{base}_{quote}" if quote else base
        return f"{base}{quote}"

    def _request_initial_price(self, symbol: str) -> Any:
        mapped = self.map_symbol(symbol)
        if self.is_spot:
            data = self.rest.get(SPOT_REST.format(symbol=mapped))
        else:
            data = self.rest.get(FUTURES_REST, params={"symbol": mapped})
        data = data or {}
        if isinstance(data.get("data"), dict):
            data = data["data"]
        return data.get("price") or data.get("last")

    def stream_url(self, symbol: str) -> str:
        return SPOT_WS if self.is_spot else FUTURES_WS

    def subscribe_payload(self, symbol: str) -> Optional[dict]:
        mapped = self.map_symbol(symbol)
        if self.is_spot:
            return {"event": "subscribe", "channel": ["ticker"], "symbols": [mapped]}
        return {"op": "subscribe", "args": [f"ticker.{mapped}"]}

    def parse_tick(self, data: Any) -> Any:
        if not isinstance(data, dict):
            return None
        rows = data.get("data")
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0].get("price") or rows[0].get("close")
        return None
