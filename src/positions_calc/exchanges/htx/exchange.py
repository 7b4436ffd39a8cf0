# src/positions_calc/exchanges/htx/exchange.py
from __future__ import annotations

import gzip
import time
from typing import Any, Optional

from src.positions_calc.exchanges.base.exchange import MarketDataClient, split_symbol
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig

SPOT_REST = "https://api.huobi.pro/market/trade"
FUTURES_REST = "https://api.hbdm.com/linear-swap-ex/market/trade"

SPOT_WS = "wss://api.huobi.pro/ws"
FUTURES_WS = "wss://api.hbdm.com/linear-swap-ws"


def _last_trade_price(data: Any) -> Any:
    if not isinstance(data, dict):
        return None
    trades = (data.get("tick") or {}).get("data") or []
    return trades[0].get("price") if trades else None


class HtxClient(MarketDataClient):
    """
    HTX (Huobi). Stream frames are gzip-compressed JSON; the server sends
    {"ping": ts} and expects {"pong": ts}.
    """

    name = "htx"
    taker_fees = {"spot": 0.002, "futures": 0.0005}

    heartbeat = HeartbeatConfig(timeout=60.0, auto_pong=True)

    def map_symbol(self, symbol: str) -> str:
        base, quote = split_symbol(symbol)
        if self.is_spot:
            return f"{base}{quote}".lower()
        return f"{base}-{quote}" if quote else base

    def _request_initial_price(self, symbol: str) -> Any:
        mapped = self.map_symbol(symbol)
        if self.is_spot:
            data = self.rest.get(SPOT_REST, params={"symbol": mapped})
        else:
            data = self.rest.get(FUTURES_REST, params={"contract_code": mapped})
        return _last_trade_price(data)

    def stream_url(self, symbol: str) -> str:
        return SPOT_WS if self.is_spot else FUTURES_WS

    def subscribe_payload(self, symbol: str) -> Optional[dict]:
        return {"sub": f"market.{self.map_symbol(symbol)}.trade.detail", "id": str(int(time.time() * 1000))}

    def decode_frame(self, raw: Any) -> Any:
        if isinstance(raw, (bytes, bytearray)):
            return gzip.decompress(raw).decode("utf-8")
        return raw

    def parse_tick(self, data: Any) -> Any:
        return _last_trade_price(data)
