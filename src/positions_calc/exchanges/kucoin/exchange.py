# src/positions_calc/exchanges/kucoin/exchange.py
from __future__ import annotations

import json
import time
from typing import Any, Optional

from src.positions_calc.exchanges.base.exchange import MarketDataClient, split_symbol
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig

SPOT_API = "https://api.kucoin.com"
FUTURES_API = "https://api-futures.kucoin.com"


def _ping_message() -> str:
    return json.dumps({"id": str(int(time.time() * 1000)), "type": "ping"})


class KucoinClient(MarketDataClient):
    """
    KuCoin spot / USDT-M futures.
    The stream endpoint is not fixed: a public token ("bullet") is
    requested over REST before every connect.
    """

    name = "kucoin"
    taker_fees = {"spot": 0.001, "futures": 0.0006}

    heartbeat = HeartbeatConfig(timeout=60.0, ping_interval=20.0, ping_message=_ping_message)

    @property
    def api(self) -> str:
        return SPOT_API if self.is_spot else FUTURES_API

    def map_symbol(self, symbol: str) -> str:
        base, quote = split_symbol(symbol)
        if self.is_spot:
            return f"{base}-{quote}" if quote else base
        # futures contracts: BTC -> XBT, suffix M
        if base == "BTC":
            base = "XBT"
        return f"{base}{quote}M"

    def _request_initial_price(self, symbol: str) -> Any:
        mapped = self.map_symbol(symbol)
        if self.is_spot:
            data = self.rest.get(f"{self.api}/api/v1/market/orderbook/level1", params={"symbol": mapped})
        else:
            data = self.rest.get(f"{self.api}/api/v1/ticker", params={"symbol": mapped})
        return ((data or {}).get("data") or {}).get("price")

    def stream_url(self, symbol: str) -> str:
        resp = self.rest.post(f"{self.api}/api/v1/bullet-public")
        data = (resp or {}).get("data") or {}
        token = data.get("token")
        servers = data.get("instanceServers") or []
        if not token or not servers:
            raise RuntimeError(f"kucoin bullet-public returned no token/servers: {resp!r}")
        endpoint = servers[0].get("endpoint")
        return f"{endpoint}?token={token}&connectId={int(time.time() * 1000)}"

    def subscribe_payload(self, symbol: str) -> Optional[dict]:
        topic = "/market/ticker" if self.is_spot else "/contractMarket/ticker"
        return {
            "id": int(time.time() * 1000),
            "type": "subscribe",
            "topic": f"{topic}:{self.map_symbol(symbol)}",
            "privateChannel": False,
            "response": True,
        }

    def parse_tick(self, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("topic"):
            return None
        payload = data.get("data") or {}
        return payload.get("price") if isinstance(payload, dict) else None
