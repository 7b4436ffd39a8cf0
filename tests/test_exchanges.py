import gzip
import json
import threading

import pytest

from conftest import FakeREST
from src.positions_calc.core.models.enums import ConnectionState, MarketType, Venue
from src.positions_calc.exchanges.base.exchange import split_symbol
from src.positions_calc.exchanges.base.heartbeat import HeartbeatConfig
from src.positions_calc.exchanges.binance.exchange import BinanceClient
from src.positions_calc.exchanges.bybit.exchange import BybitClient
from src.positions_calc.exchanges.coinex.exchange import CoinexClient
from src.positions_calc.exchanges.htx.exchange import HtxClient
from src.positions_calc.exchanges.kucoin.exchange import KucoinClient
from src.positions_calc.exchanges.poloniex.exchange import PoloniexClient
from src.positions_calc.exchanges.registry import CLIENTS, build_client, parse_venue


class Recorder:
    def __init__(self):
        self.prices = []
        self.statuses = []
        self.timeouts = 0

    def on_timeout(self):
        self.timeouts += 1

    def kwargs(self):
        return {"on_price": self.prices.append, "on_status": self.statuses.append, "on_timeout": self.on_timeout}


@pytest.fixture
def rec():
    return Recorder()


class TestRegistry:
    def test_every_venue_has_a_client(self):
        assert set(CLIENTS) == set(Venue)

    @pytest.mark.parametrize(
        "name, cls",
        [("binance", BinanceClient), ("Bybit", BybitClient), ("kucoin", KucoinClient),
         ("htx", HtxClient), ("huobi", HtxClient), ("coinex", CoinexClient), (" poloniex ", PoloniexClient)],
    )
    def test_build(self, name, cls):
        client = build_client(name, "FUTURES", rest=FakeREST())
        assert isinstance(client, cls)
        assert client.market == MarketType.FUTURES

    def test_unknown_venue(self):
        with pytest.raises(ValueError, match="Unknown exchange"):
            build_client("mtgox", "SPOT")
        with pytest.raises(ValueError):
            parse_venue("")

    def test_split_symbol(self):
        assert split_symbol("btc/usdt") == ("BTC", "USDT")
        assert split_symbol("BTCUSDT") == ("BTCUSDT", "")


class TestSymbolsAndUrls:
    @pytest.mark.parametrize(
        "cls, market, expected",
        [
            (BinanceClient, "SPOT", "BTCUSDT"),
            (BybitClient, "FUTURES", "BTCUSDT"),
            (KucoinClient, "SPOT", "BTC-USDT"),
            (KucoinClient, "FUTURES", "XBTUSDTM"),
            (KucoinClient, "FUTURES", "ETHUSDTM"),
            (HtxClient, "SPOT", "btcusdt"),
            (HtxClient, "FUTURES", "BTC-USDT"),
            (CoinexClient, "SPOT", "BTCUSDT"),
            (PoloniexClient, "SPOT", "BTC_USDT"),
            (PoloniexClient, "FUTURES", "BTCUSDT"),
        ],
    )
    def test_map_symbol(self, cls, market, expected):
        symbol = "ETH/USDT" if expected.startswith("ETH") else "BTC/USDT"
        assert cls(market, rest=FakeREST()).map_symbol(symbol) == expected

    def test_binance_stream_urls(self):
        assert BinanceClient("SPOT").stream_url("BTC/USDT") == "wss://stream.binance.com:9443/ws/btcusdt@ticker"
        assert BinanceClient("FUTURES").stream_url("BTC/USDT") == "wss://fstream.binance.com/ws/btcusdt@ticker"

    def test_bybit_category(self):
        assert BybitClient("SPOT").stream_url("BTC/USDT").endswith("/v5/public/spot")
        assert BybitClient("FUTURES").stream_url("BTC/USDT").endswith("/v5/public/linear")
        assert BybitClient("SPOT").subscribe_payload("BTC/USDT") == {"op": "subscribe", "args": ["tickers.BTCUSDT"]}

    def test_taker_fee_by_market(self):
        assert BinanceClient("SPOT").taker_fee == 0.001
        assert BinanceClient("FUTURES").taker_fee == 0.0004
        assert BinanceClient("FUTURES", taker_fees={"futures": 0.0002}).taker_fee == 0.0002


class TestInitialPrice:
    def test_binance(self, rec):
        rest = FakeREST({"https://api.binance.com/api/v3/ticker/price": {"symbol": "BTCUSDT", "price": "65000.5"}})
        client = BinanceClient("SPOT", rest=rest, **rec.kwargs())
        assert client.fetch_initial_price("BTC/USDT") == 65000.5
        assert rec.prices == [65000.5]
        assert rest.calls == [("GET", "https://api.binance.com/api/v3/ticker/price", {"symbol": "BTCUSDT"})]

    def test_bybit(self, rec):
        rest = FakeREST({"https://api.bybit.com/v5/market/tickers": {"result": {"list": [{"lastPrice": "3000"}]}}})
        client = BybitClient("FUTURES", rest=rest, **rec.kwargs())
        assert client.fetch_initial_price("ETH/USDT") == 3000
        assert rest.calls[0][2] == {"category": "linear", "symbol": "ETHUSDT"}

    def test_kucoin_futures(self, rec):
        rest = FakeREST({"https://api-futures.kucoin.com/api/v1/ticker": {"data": {"price": "64000"}}})
        client = KucoinClient("FUTURES", rest=rest, **rec.kwargs())
        assert client.fetch_initial_price("BTC/USDT") == 64000
        assert rest.calls[0][2] == {"symbol": "XBTUSDTM"}

    def test_htx(self, rec):
        rest = FakeREST({"https://api.huobi.pro/market/trade": {"tick": {"data": [{"price": 64100.1}]}}})
        assert HtxClient("SPOT", rest=rest, **rec.kwargs()).fetch_initial_price("BTC/USDT") == 64100.1

    def test_coinex(self, rec):
        rest = FakeREST({"https://api.coinex.com/v1/market/ticker": {"data": {"ticker": {"last": "1.25"}}}})
        assert CoinexClient("SPOT", rest=rest, **rec.kwargs()).fetch_initial_price("XRP/USDT") == 1.25

    def test_poloniex(self, rec):
        spot = FakeREST({"https://api.poloniex.com/markets/BTC_USDT/ticker24h": {"close": "1", "price": "64000"}})
        assert PoloniexClient("SPOT", rest=spot).fetch_initial_price("BTC/USDT") == 64000
        fut = FakeREST({"https://futures-api.poloniex.com/v1/ticker": {"data": {"price": "63999"}}})
        assert PoloniexClient("FUTURES", rest=fut).fetch_initial_price("BTC/USDT") == 63999

    def test_rest_error_is_logged_not_raised(self, rec, caplog):
        rest = FakeREST({"https://api.binance.com/api/v3/ticker/price": RuntimeError("HTTP 400")})
        client = BinanceClient("SPOT", rest=rest, **rec.kwargs())
        assert client.fetch_initial_price("BTC/USDT") is None
        assert rec.prices == []
        assert "REST error" in caplog.text

    def test_missing_price(self, rec):
        rest = FakeREST({"https://api.binance.com/api/v3/ticker/price": {"code": -1121}})
        assert BinanceClient("SPOT", rest=rest, **rec.kwargs()).fetch_initial_price("BTC/USDT") is None
        assert rec.prices == []


class TestParseTick:
    def test_binance(self):
        c = BinanceClient("SPOT")
        assert c.parse_tick({"e": "24hrTicker", "c": "65000.1"}) == "65000.1"
        assert c.parse_tick([1, 2]) is None

    def test_bybit(self):
        c = BybitClient("SPOT")
        assert c.parse_tick({"topic": "tickers.BTCUSDT", "data": {"lastPrice": "1"}}) == "1"
        assert c.parse_tick({"op": "pong", "success": True}) is None
        assert c.parse_tick({"topic": "tickers.BTCUSDT", "data": {"markPrice": "1"}}) is None

    def test_kucoin(self):
        c = KucoinClient("SPOT")
        assert c.parse_tick({"type": "message", "topic": "/market/ticker:BTC-USDT", "data": {"price": "2"}}) == "2"
        assert c.parse_tick({"type": "welcome"}) is None

    def test_htx(self):
        c = HtxClient("SPOT")
        assert c.parse_tick({"ch": "market.btcusdt.trade.detail", "tick": {"data": [{"price": 3}]}}) == 3
        assert c.parse_tick({"ping": 1}) is None

    def test_coinex(self):
        c = CoinexClient("SPOT")
        assert c.parse_tick({"method": "ticker.update", "params": ["BTCUSDT", {"last": "4"}]}) == "4"
        assert c.parse_tick({"method": "ticker.update", "params": [{"last": "5"}]}) == "5"
        assert c.parse_tick({"id": 1, "result": "pong"}) is None

    def test_poloniex(self):
        c = PoloniexClient("SPOT")
        assert c.parse_tick({"channel": "ticker", "data": [{"close": "6"}]}) == "6"
        assert c.parse_tick({"event": "pong"}) is None

    def test_htx_gzip_frame(self):
        c = HtxClient("SPOT")
        raw = gzip.compress(b'{"ping": 1}')
        assert json.loads(c.decode_frame(raw)) == {"ping": 1}
        assert c.decode_frame('{"a": 1}') == '{"a": 1}'


class TestLifecycle:
    def test_open_subscribes_and_streams(self, rec, sockets):
        c = BybitClient("SPOT", socket_factory=sockets, heartbeat=None, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        sock = sockets.last
        assert sock.started
        assert sock.url == "wss://stream.bybit.com/v5/public/spot"
        assert c.is_open_or_connecting()

        sock.open()
        assert json.loads(sock.sent[0]) == {"op": "subscribe", "args": ["tickers.BTCUSDT"]}

        sock.deliver('{"topic": "tickers.BTCUSDT", "data": {"lastPrice": "65000"}}')
        sock.deliver('{"topic": "tickers.BTCUSDT", "data": {"lastPrice": "n/a"}}')
        sock.deliver("garbage")
        assert rec.prices == [65000]
        assert rec.statuses == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

    def test_second_connect_is_a_noop(self, rec, sockets):
        c = BinanceClient("SPOT", socket_factory=sockets, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        c.connect_ws("BTC/USDT")
        sockets.last.open()
        c.connect_ws("BTC/USDT")
        assert len(sockets.sockets) == 1

    def test_binance_uses_ws_ping_frames(self, sockets):
        c = BinanceClient("SPOT", socket_factory=sockets)
        c.connect_ws("BTC/USDT")
        assert (sockets.last.ping_interval, sockets.last.ping_timeout) == (20, 10)
        c.close_ws()

    def test_close_silences_old_socket(self, rec, sockets):
        c = BinanceClient("SPOT", socket_factory=sockets, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        old = sockets.last
        old.open()
        c.close_ws()
        assert old.closed
        assert rec.statuses[-1] == ConnectionState.DISCONNECTED

        n = len(rec.statuses)
        old.deliver('{"c": "1"}')
        old.drop()
        old.fail("late")
        assert rec.prices == []
        assert len(rec.statuses) == n
        assert not c.is_open_or_connecting()

    def test_close_is_idempotent(self, rec, sockets):
        c = BinanceClient("SPOT", socket_factory=sockets, **rec.kwargs())
        c.close_ws()
        c.close_ws()
        assert rec.statuses == [ConnectionState.DISCONNECTED, ConnectionState.DISCONNECTED]
        assert sockets.sockets == []

    def test_reconnect_after_close_uses_fresh_socket(self, rec, sockets):
        c = BinanceClient("SPOT", socket_factory=sockets, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        first = sockets.last
        c.close_ws()
        c.connect_ws("BTC/USDT")
        second = sockets.last
        assert second is not first
        second.open()
        first.deliver('{"c": "1"}')
        second.deliver('{"c": "2"}')
        assert rec.prices == [2]

    def test_remote_close(self, rec, sockets):
        c = BinanceClient("SPOT", socket_factory=sockets, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        sockets.last.open()
        sockets.last.drop()
        assert c.state == ConnectionState.DISCONNECTED
        assert not c.is_open_or_connecting()

    def test_socket_error(self, rec, sockets):
        c = BinanceClient("SPOT", socket_factory=sockets, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        sockets.last.fail(ConnectionResetError("reset"))
        assert c.state == ConnectionState.ERROR
        assert sockets.last.closed

    def test_htx_pong_and_gzip_ticks(self, rec, sockets):
        c = HtxClient("SPOT", socket_factory=sockets, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        sock = sockets.last
        sock.open()
        sub = json.loads(sock.sent[0])
        assert sub["sub"] == "market.btcusdt.trade.detail"

        sock.deliver(gzip.compress(b'{"ping": 1700000000000}'))
        assert json.loads(sock.sent[1]) == {"pong": 1700000000000}

        sock.deliver(gzip.compress(b'{"ch": "x", "tick": {"data": [{"price": 64000.5}]}}'))
        assert rec.prices == [64000.5]
        c.close_ws()

    def test_heartbeat_timeout_closes_and_reports(self, rec, sockets):
        done = threading.Event()
        rec_timeout = rec.on_timeout

        def on_timeout():
            rec_timeout()
            done.set()

        c = BybitClient(
            "SPOT",
            socket_factory=sockets,
            heartbeat=HeartbeatConfig(timeout=0.2),
            on_price=rec.prices.append,
            on_status=rec.statuses.append,
            on_timeout=on_timeout,
        )
        c.connect_ws("BTC/USDT")
        sockets.last.open()

        assert done.wait(2.0)
        assert rec.timeouts == 1
        assert ConnectionState.RECONNECTING in rec.statuses
        assert sockets.last.closed
        assert not c.is_open_or_connecting()

        # a late close event from the dead socket changes nothing
        sockets.last.drop()
        assert c.state == ConnectionState.RECONNECTING

    def test_kucoin_bullet_token(self, rec, sockets):
        rest = FakeREST({
            "https://api.kucoin.com/api/v1/bullet-public": {
                "data": {"token": "tok", "instanceServers": [{"endpoint": "wss://ws-api-spot.kucoin.com/"}]},
            },
        })
        c = KucoinClient("SPOT", rest=rest, socket_factory=sockets, heartbeat=None, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        assert sockets.last.url.startswith("wss://ws-api-spot.kucoin.com/?token=tok&connectId=")
        assert rest.calls[0][0] == "POST"

        sockets.last.open()
        sub = json.loads(sockets.last.sent[0])
        assert sub["topic"] == "/market/ticker:BTC-USDT"
        assert sub["type"] == "subscribe"

    def test_kucoin_bullet_failure_is_error(self, rec, sockets):
        rest = FakeREST({"https://api.kucoin.com/api/v1/bullet-public": {"code": "400100"}})
        c = KucoinClient("SPOT", rest=rest, socket_factory=sockets, **rec.kwargs())
        c.connect_ws("BTC/USDT")
        assert sockets.sockets == []
        assert rec.statuses == [ConnectionState.CONNECTING, ConnectionState.ERROR]
        assert not c.is_open_or_connecting()
