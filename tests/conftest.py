from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest

from src.positions_calc.core.models.enums import ConnectionState


class FakeSocket:
    """Stands in for StreamSocket: nothing runs until the test drives it."""

    def __init__(
        self,
        *,
        url: str,
        on_message: Callable[[Any], None],
        name: str = "fake",
        on_open: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Any], None]] = None,
        ping_interval: float = 0,
        ping_timeout: Optional[float] = None,
    ):
        self.url = url
        self.name = name
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._on_message = on_message
        self._on_open = on_open
        self._on_close = on_close
        self._on_error = on_error

        self.started = False
        self.closed = False
        self.is_open = False
        self.sent: List[str] = []

    def start(self) -> None:
        self.started = True

    def send(self, text: str) -> None:
        if not self.is_open:
            raise RuntimeError("socket is not open")
        self.sent.append(text)

    def close(self) -> None:
        self.closed = True
        self.is_open = False

    # ---- test drivers ----
    def open(self) -> None:
        self.is_open = True
        if self._on_open:
            self._on_open()

    def deliver(self, raw: Any) -> None:
        self._on_message(raw)

    def drop(self) -> None:
        self.is_open = False
        if self._on_close:
            self._on_close()

    def fail(self, err: Any) -> None:
        if self._on_error:
            self._on_error(err)


class SocketRecorder:
    def __init__(self) -> None:
        self.sockets: List[FakeSocket] = []

    def __call__(self, **kwargs: Any) -> FakeSocket:
        sock = FakeSocket(**kwargs)
        self.sockets.append(sock)
        return sock

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


class FakeREST:
    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses = dict(responses or {})
        self.calls: List[tuple] = []

    def _reply(self, method: str, url: str, params: Any) -> Any:
        self.calls.append((method, url, params))
        resp = self.responses.get(url)
        if isinstance(resp, Exception):
            raise resp
        return resp

    def get(self, url: str, *, params: Any = None) -> Any:
        return self._reply("GET", url, params)

    def post(self, url: str, *, params: Any = None, json_body: Any = None) -> Any:
        return self._reply("POST", url, params)


class FakeTimer:
    created: List["FakeTimer"] = []

    def __init__(self, interval: float, function: Callable, args: tuple = ()) -> None:
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function(*self.args)


class FakeClient:
    """MarketDataClient double for controller tests."""

    def __init__(
        self,
        venue: str,
        market: Any,
        *,
        on_price=None,
        on_status=None,
        on_timeout=None,
        price: Optional[float] = 100.0,
    ) -> None:
        self.name = str(venue)
        self.market = market
        self.on_price = on_price
        self.on_status = on_status
        self.on_timeout = on_timeout
        self.price = price
        self.taker_fee = 0.0

        self.connected = False
        self.fetches: List[str] = []
        self.connects: List[str] = []
        self.closes = 0

    def is_open_or_connecting(self) -> bool:
        return self.connected

    def fetch_initial_price(self, symbol: str) -> Optional[float]:
        self.fetches.append(symbol)
        if self.price is not None and self.on_price:
            self.on_price(self.price)
        return self.price

    def connect_ws(self, symbol: str) -> None:
        if self.connected:
            return
        self.connects.append(symbol)
        self.connected = True
        if self.on_status:
            self.on_status(ConnectionState.CONNECTING)

    def close_ws(self) -> None:
        self.closes += 1
        self.connected = False
        if self.on_status:
            self.on_status(ConnectionState.DISCONNECTED)


class ClientRecorder:
    def __init__(self, price: Optional[float] = 100.0) -> None:
        self.clients: List[FakeClient] = []
        self.price = price

    def __call__(self, venue: str, market: Any, **kwargs: Any) -> FakeClient:
        client = FakeClient(venue, market, price=self.price, **kwargs)
        self.clients.append(client)
        return client


@pytest.fixture
def sockets() -> SocketRecorder:
    return SocketRecorder()


@pytest.fixture
def fake_timers():
    FakeTimer.created = []
    yield FakeTimer
    FakeTimer.created = []


@pytest.fixture
def clients() -> ClientRecorder:
    return ClientRecorder()
