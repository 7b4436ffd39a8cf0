# src/positions_calc/exchanges/coinex/exchange.py
from __future__ import annotations

import json
import time
from typing import Any, Optional

from src.positions_calc.exchanges.base.exchange import MarketDataClient, split_symbol
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig

SPOT_REST = "https://api.coinex.com/v1/market/ticker"
FUTURES_REST = "https://api.coinex.com/perpetual/v1/market/ticker"

SPOT_WS = "wss://socket.coinex.com/v1/spot"
FUTURES_WS = "wss://perpetual.coinex.com/ws"


class CoinexClient(MarketDataClient):
    name = "coinex"
    taker_fees = {"spot": 0.001, "futures": 0.0005}

    heartbeat = HeartbeatConfig(
        timeout=60.0,
        ping_interval=20.0,
        ping_message=json.dumps({"method": "ping"}),
    )

    def map_symbol(self, symbol: str) -> str:
        base, quote = split_symbol(symbol)
        return f"{base}{quote}"

    def _request_initial_price(self, symbol: str) -> Any:
        url = SPOT_REST if self.is_spot else FUTURES_REST
        data = self.rest.get(url, params={"market": self.map_symbol(symbol)})
        return (((data or {}).get("data") or {}).get("ticker") or {}).get("last")

    def stream_url(self, symbol: str) -> str:
        return SPOT_WS if self.is_spot else FUTURES_WS

    def subscribe_payload(self, symbol: str) -> Optional[dict]:
        return {
            "method": "subscribe",
            "params": [f"market.{self.map_symbol(symbol)}.ticker"],
            "id": int(time.time() * 1000),
        }

    def parse_tick(self, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("method") != "ticker.update":
            return None
        # params: [{"last": ...}] or [market, {"last": ...}]
        for item in data.get("params") or []:
            if isinstance(item, dict) and item.get("last") is not None:
                return item["last"]
        return None
