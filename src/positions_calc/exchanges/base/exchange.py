# src/positions_calc/exchanges/base/exchange.py
from __future__ import annotations

import json
import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from src.positions_calc.core.models.enums import ConnectionState, MarketType
from src.positions_calc.core.utils.numeric import to_number_safe
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig, HeartbeatMonitor
from src.positions_calc.exchanges.base.rest import PublicREST
from src.positions_calc.exchanges.base.ws import StreamSocket


# -------- callbacks --------

PriceCallback = Callable[[float], None]
StatusCallback = Callable[[ConnectionState], None]
TimeoutCallback = Callable[[], None]
SocketFactory = Callable[..., Any]

_UNSET: Any = object()


def split_symbol(symbol: str) -> tuple[str, str]:
    """'btc/usdt' -> ('BTC', 'USDT'); 'BTCUSDT' -> ('BTCUSDT', '')"""
    s = symbol.strip().upper()
    if "/" in s:
        base, quote = s.split("/", 1)
        return base, quote
    return s, ""


# -------- base client --------

class MarketDataClient(ABC):
    """
    Live price source for one (venue, market).

    One REST request for the initial price, then one streaming
    subscription whose ticks are normalized to a float and handed to
    `on_price`. The client never reconnects on its own; the owner decides.

    Every socket gets an epoch; callbacks of a superseded socket are
    dropped, and once close_ws() returns no further price/status callback
    fires for that socket.
    """

    name: str = "base"

    # taker fee rate by market, used for unrealized pnl
    taker_fees: dict[str, float] = {"spot": 0.001, "futures": 0.0005}

    # application-level heartbeat; None -> websocket-level ping frames only
    heartbeat: Optional[HeartbeatConfig] = HeartbeatConfig(timeout=60.0)
    ws_ping_interval: float = 0
    ws_ping_timeout: Optional[float] = None

    def __init__(
        self,
        market: MarketType | str = MarketType.SPOT,
        *,
        on_price: Optional[PriceCallback] = None,
        on_status: Optional[StatusCallback] = None,
        on_timeout: Optional[TimeoutCallback] = None,
        rest: Optional[PublicREST] = None,
        socket_factory: Optional[SocketFactory] = None,
        heartbeat: Any = _UNSET,
        taker_fees: Optional[dict[str, float]] = None,
    ):
        self.market = MarketType.parse(market)
        self.logger = logging.getLogger(f"positions_calc.exchanges.{self.name}")

        self.on_price = on_price
        self.on_status = on_status
        self.on_timeout = on_timeout

        self.rest = rest or PublicREST()
        self._socket_factory = socket_factory or StreamSocket
        if heartbeat is not _UNSET:
            self.heartbeat = heartbeat
        if taker_fees:
            self.taker_fees = {**self.taker_fees, **taker_fees}

        self.state = ConnectionState.DISCONNECTED
        self.symbol: Optional[str] = None

        self._lock = threading.RLock()
        self._epoch = 0
        self._sock: Any = None
        self._hb: Optional[HeartbeatMonitor] = None
        self._timed_out_epoch: Optional[int] = None

    # ------------------------------------------------------------------
    # venue specifics
    # ------------------------------------------------------------------

    @property
    def is_spot(self) -> bool:
        return self.market == MarketType.SPOT

    @property
    def taker_fee(self) -> float:
        return float(self.taker_fees["spot" if self.is_spot else "futures"])

    @abstractmethod
    def map_symbol(self, symbol: str) -> str:
        """Generic BASE/QUOTE -> venue wire symbol."""

    @abstractmethod
    def _request_initial_price(self, symbol: str) -> Any:
        """REST call; returns the raw price field (or None)."""

    @abstractmethod
    def stream_url(self, symbol: str) -> str:
        ...

    def subscribe_payload(self, symbol: str) -> Optional[dict]:
        return None

    @abstractmethod
    def parse_tick(self, data: Any) -> Any:
        """Inbound payload -> raw last price, or None if not a tick."""

    def decode_frame(self, raw: Any) -> Any:
        return raw

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    def fetch_initial_price(self, symbol: str) -> Optional[float]:
        try:
            raw = self._request_initial_price(symbol)
        except Exception as e:
            self.logger.error("[%s] REST error for %s: %s", self.name, symbol, e)
            return None

        px = to_number_safe(raw)
        if not math.isfinite(px):
            self.logger.warning("[%s] no usable price for %s in REST response: %r", self.name, symbol, raw)
            return None

        if self.on_price:
            self.on_price(px)
        return px

    # ------------------------------------------------------------------
    # WS lifecycle
    # ------------------------------------------------------------------

    def is_open_or_connecting(self) -> bool:
        with self._lock:
            return self._sock is not None and self.state in (
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
            )

    def connect_ws(self, symbol: str) -> None:
        with self._lock:
            if self.is_open_or_connecting():
                self.logger.info("[%s] WS already open/connecting", self.name)
                return

            self._teardown()
            self._epoch += 1
            epoch = self._epoch
            self.symbol = symbol
            self._emit(ConnectionState.CONNECTING)

            try:
                url = self.stream_url(symbol)
                sock = self._socket_factory(
                    url=url,
                    name=f"{self.name}-{self.market.value.lower()}-{epoch}",
                    on_open=lambda: self._on_open(epoch, symbol),
                    on_message=lambda raw: self._on_raw(epoch, raw),
                    on_error=lambda err: self._on_error(epoch, err),
                    on_close=lambda: self._on_close(epoch),
                    ping_interval=self.ws_ping_interval,
                    ping_timeout=self.ws_ping_timeout,
                )
            except Exception as e:
                self.logger.error("[%s] WS setup failed for %s: %s", self.name, symbol, e)
                self._emit(ConnectionState.ERROR)
                return

            self._sock = sock
            if self.heartbeat is not None:
                self._hb = HeartbeatMonitor.from_config(
                    sock,
                    self.heartbeat,
                    on_status=lambda st: self._on_hb_status(epoch, st),
                    decode=self.decode_frame,
                    name=f"{self.name}-hb-{epoch}",
                )

            sock.start()
            if self._hb is not None:
                self._hb.start(on_timeout=lambda: self._on_heartbeat_timeout(epoch))

    def close_ws(self) -> None:
        with self._lock:
            self._epoch += 1
            self._teardown()
            self._emit(ConnectionState.DISCONNECTED)

    def _teardown(self) -> None:
        hb, self._hb = self._hb, None
        sock, self._sock = self._sock, None
        if hb is not None:
            hb.stop()
        if sock is not None:
            try:
                sock.close()
            except Exception as e:
                self.logger.debug("[%s] socket close failed: %r", self.name, e)

    # ------------------------------------------------------------------
    # socket callbacks (run on the socket / heartbeat threads)
    # ------------------------------------------------------------------

    def _current(self, epoch: int) -> bool:
        return epoch == self._epoch and self._sock is not None

    def _on_open(self, epoch: int, symbol: str) -> None:
        with self._lock:
            if not self._current(epoch):
                return
            self._emit(ConnectionState.CONNECTED)
            payload = self.subscribe_payload(symbol)
            if payload is not None:
                self.logger.info("[%s] ws open, subscribing %s", self.name, payload)
                self._sock.send(json.dumps(payload))

    def _on_raw(self, epoch: int, raw: Any) -> None:
        with self._lock:
            if not self._current(epoch):
                return
            if self._hb is not None:
                self._hb.handle_message(raw, self._dispatch)
                return
            try:
                data = json.loads(self.decode_frame(raw))
            except Exception:
                return
            self._dispatch(data)

    def _dispatch(self, data: Any) -> None:
        try:
            raw_px = self.parse_tick(data)
        except Exception:
            self.logger.debug("[%s] unparseable tick: %r", self.name, data)
            return
        if raw_px is None:
            return

        px = to_number_safe(raw_px)
        if not math.isfinite(px):
            self.logger.warning("[%s] bad price in tick: %r", self.name, raw_px)
            return
        if self.on_price:
            self.on_price(px)

    def _on_error(self, epoch: int, err: Any) -> None:
        with self._lock:
            if not self._current(epoch):
                return
            self.logger.error("[%s] ws error: %s", self.name, err)
            self._epoch += 1
            self._teardown()
            self._emit(ConnectionState.ERROR)

    def _on_close(self, epoch: int) -> None:
        with self._lock:
            if not self._current(epoch):
                return
            self.logger.info("[%s] ws close", self.name)
            self._epoch += 1
            self._teardown()
            self._emit(ConnectionState.DISCONNECTED)

    def _on_hb_status(self, epoch: int, st: ConnectionState) -> None:
        with self._lock:
            if not self._current(epoch):
                return
            if st == ConnectionState.RECONNECTING:
                # the monitor closes the socket itself; its close event is stale from here on
                self._epoch += 1
                self._hb = None
                self._sock = None
                self._timed_out_epoch = epoch
            self._emit(st)

    def _on_heartbeat_timeout(self, epoch: int) -> None:
        with self._lock:
            if self._timed_out_epoch != epoch:
                return
            self._timed_out_epoch = None
        # outside the lock: the owner may close/replace this client
        if self.on_timeout:
            self.on_timeout()

    def _emit(self, st: ConnectionState) -> None:
        self.state = st
        if self.on_status:
            try:
                self.on_status(st)
            except Exception:
                self.logger.exception("[%s] status callback failed", self.name)
