from __future__ import annotations
from enum import Enum


class MarketType(str, Enum):
    SPOT = "SPOT"
    FUTURES = "FUTURES"

    @classmethod
    def parse(cls, value: str | "MarketType" | None) -> "MarketType":
        # anything that is not SPOT is accounted as a derivative
        if isinstance(value, MarketType):
            return value
        return cls.SPOT if str(value or "").strip().upper() == "SPOT" else cls.FUTURES


class TransactionType(str, Enum):
    TRADE = "TRADE"
    FUNDING = "FUNDING"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class Venue(str, Enum):
    BINANCE = "binance"
    BYBIT = "bybit"
    KUCOIN = "kucoin"
    HTX = "htx"
    COINEX = "coinex"
    POLONIEX = "poloniex"
