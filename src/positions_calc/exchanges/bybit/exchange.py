# src/positions_calc/exchanges/bybit/exchange.py
from __future__ import annotations

import json
from typing import Any, Optional

from src.positions_calc.exchanges.base.exchange import MarketDataClient, split_symbol
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig

REST_TICKERS = "https://api.bybit.com/v5/market/tickers"
WS_PUBLIC = "wss://stream.bybit.com/v5/public"


class BybitClient(MarketDataClient):
    name = "bybit"
    taker_fees = {"spot": 0.001, "futures": 0.00055}

    heartbeat = HeartbeatConfig(
        timeout=60.0,
        ping_interval=20.0,
        ping_message=json.dumps({"op": "ping"}),
    )

    @property
    def category(self) -> str:
        return "spot" if self.is_spot else "linear"

    def map_symbol(self, symbol: str) -> str:
        base, quote = split_symbol(symbol)
        return f"{base}{quote}"

    def _request_initial_price(self, symbol: str) -> Any:
        data = self.rest.get(REST_TICKERS, params={"category": self.category, "symbol": self.map_symbol(symbol)})
        rows = ((data or {}).get("result") or {}).get("list") or []
        return rows[0].get("lastPrice") if rows else None

    def stream_url(self, symbol: str) -> str:
        return f"{WS_PUBLIC}/{self.category}"

    def subscribe_payload(self, symbol: str) -> Optional[dict]:
        return {"op": "subscribe", "args": [f"tickers.{self.map_symbol(symbol)}"]}

    def parse_tick(self, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("topic"):
            return None
        payload = data.get("data") or {}
        # linear deltas may omit lastPrice
        return payload.get("lastPrice") if isinstance(payload, dict) else None
