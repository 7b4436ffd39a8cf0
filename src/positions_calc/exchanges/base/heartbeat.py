# src/positions_calc/exchanges/base/heartbeat.py
"""
Liveness tracking for one duplex stream.

While active, two daemon threads run:
  - pinger   every `ping_interval` s sends `ping_message` (if configured
             and the socket is open)
  - checker  every min(5, timeout/2) s compares the silence since the last
             inbound message with `timeout`

On timeout the monitor stops itself, reports RECONNECTING, force-closes
the socket and calls `on_timeout` exactly once.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Union

from src.positions_calc.core.models.enums import ConnectionState

log = logging.getLogger("positions_calc.exchanges.heartbeat")

PingMessage = Union[str, Callable[[], str]]
StatusCallback = Callable[[ConnectionState], None]


class Pingable(Protocol):
    @property
    def is_open(self) -> bool:
        ...

    def send(self, text: str) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass(frozen=True)
class HeartbeatConfig:
    timeout: float = 60.0
    ping_interval: Optional[float] = None
    ping_message: Optional[PingMessage] = None
    auto_pong: bool = False


def _now_ms() -> int:
    return int(time.time() * 1000)


class HeartbeatMonitor:
    def __init__(
        self,
        sock: Pingable,
        *,
        timeout: float = 30.0,
        ping_interval: Optional[float] = None,
        ping_message: Optional[PingMessage] = None,
        auto_pong: bool = False,
        on_status: Optional[StatusCallback] = None,
        decode: Optional[Callable[[Any], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "heartbeat",
    ):
        self.sock = sock
        self.timeout = float(timeout)
        self.ping_interval = ping_interval
        self.ping_message = ping_message
        self.auto_pong = auto_pong
        self.on_status = on_status
        self.decode = decode
        self.clock = clock
        self.name = name

        self.last_message_time = clock()

        self._lock = threading.Lock()
        self._stop_evt: Optional[threading.Event] = None
        self._on_timeout: Optional[Callable[[], None]] = None

    @classmethod
    def from_config(cls, sock: Pingable, cfg: HeartbeatConfig, **kwargs) -> "HeartbeatMonitor":
        return cls(
            sock,
            timeout=cfg.timeout,
            ping_interval=cfg.ping_interval,
            ping_message=cfg.ping_message,
            auto_pong=cfg.auto_pong,
            **kwargs,
        )

    @property
    def check_interval(self) -> float:
        return min(5.0, self.timeout / 2)

    @property
    def active(self) -> bool:
        return self._stop_evt is not None

    # ------------------------------------------------------------------
    def start(self, on_timeout: Optional[Callable[[], None]] = None) -> None:
        with self._lock:
            if self._stop_evt is not None:
                return
            stop_evt = threading.Event()
            self._stop_evt = stop_evt
            self._on_timeout = on_timeout
            self.last_message_time = self.clock()

        log.debug("[%s] start timeout=%.1fs ping=%s", self.name, self.timeout, self.ping_interval)

        if self.ping_interval and self.ping_message:
            threading.Thread(
                target=self._loop,
                args=(stop_evt, float(self.ping_interval), self.send_ping),
                daemon=True,
                name=f"{self.name}-ping",
            ).start()

        threading.Thread(
            target=self._loop,
            args=(stop_evt, self.check_interval, self.check),
            daemon=True,
            name=f"{self.name}-check",
        ).start()

    def stop(self) -> None:
        with self._lock:
            stop_evt, self._stop_evt = self._stop_evt, None
        if stop_evt is not None:
            stop_evt.set()
            log.debug("[%s] stop", self.name)

    def _loop(self, stop_evt: threading.Event, interval: float, fn: Callable[[], Any]) -> None:
        while not stop_evt.wait(interval):
            try:
                fn()
            except Exception:
                log.exception("[%s] timer callback failed", self.name)

    # ------------------------------------------------------------------
    def send_ping(self) -> None:
        if not self.active or not self.sock.is_open:
            return
        msg = self.ping_message() if callable(self.ping_message) else self.ping_message
        try:
            self.sock.send(msg)
            log.debug("[%s] ping sent: %s", self.name, msg)
        except Exception as e:
            log.debug("[%s] ping send failed: %r", self.name, e)

    def check(self) -> bool:
        """One liveness evaluation. Returns True if it fired the timeout."""
        with self._lock:
            if self._stop_evt is None:
                return False
            if self.clock() - self.last_message_time <= self.timeout:
                return False
            stop_evt, self._stop_evt = self._stop_evt, None
            on_timeout, self._on_timeout = self._on_timeout, None
        stop_evt.set()

        log.warning("[%s] no inbound messages for %.1fs, closing", self.name, self.timeout)
        if self.on_status:
            self.on_status(ConnectionState.RECONNECTING)
        try:
            self.sock.close()
        except Exception as e:
            log.debug("[%s] close failed: %r", self.name, e)
        if on_timeout:
            on_timeout()
        return True

    # ------------------------------------------------------------------
    def handle_message(self, raw: Any, on_message: Callable[[Any], None]) -> None:
        self.last_message_time = self.clock()

        try:
            if self.decode is not None:
                raw = self.decode(raw)
            data = json.loads(raw)
        except Exception:
            return

        if self.auto_pong and isinstance(data, dict):
            pong = None
            if data.get("ping"):
                pong = json.dumps({"pong": data["ping"]})
            elif data.get("op") == "ping":
                pong = json.dumps({"op": "pong", "ts": _now_ms()})
            if pong is not None:
                try:
                    self.sock.send(pong)
                    log.debug("[%s] pong sent: %s", self.name, pong)
                except Exception as e:
                    log.debug("[%s] pong send failed: %r", self.name, e)

        on_message(data)
