# src/positions_calc/exchanges/base/ws.py
from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Any, Callable, Optional

import websocket

log = logging.getLogger("positions_calc.exchanges.ws")

HANDSHAKE_TIMEOUT = 10.0
_WATCH_INTERVAL = 0.05


class StreamSocket(threading.Thread):
    """
    One streaming connection. No reconnect loop here: when the socket
    closes the thread ends and the owner decides what to do next.

    Once close() returns no hook fires any more; a handshake still in
    progress is cut off and the thread winds down on its own.
    """

    def __init__(
        self,
        *,
        url: str,
        on_message: Callable[[Any], None],
        name: str = "StreamSocket",
        on_open: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Any], None]] = None,
        ping_interval: float = 0,
        ping_timeout: Optional[float] = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ):
        super().__init__(daemon=True, name=name)
        self.url = url
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.handshake_timeout = float(handshake_timeout)

        self._on_message_hook = on_message
        self._on_open_hook = on_open
        self._on_close_hook = on_close
        self._on_error_hook = on_error

        self._ws: websocket.WebSocketApp | None = None
        self._lock = threading.Lock()
        self._closing = threading.Event()
        self._done = threading.Event()
        self.connected = threading.Event()

    # ---- state ----

    @property
    def is_open(self) -> bool:
        return self.connected.is_set()

    # ---- lifecycle ----

    def run(self):
        def _on_open(_ws):
            if self._closing.is_set():
                self._interrupt()
                return
            self.connected.set()
            log.info("[%s] WS CONNECTED", self.name)
            self._safe(self._on_open_hook)

        def _on_close(_ws, *_a):
            self.connected.clear()
            log.info("[%s] WS CLOSED", self.name)
            if not self._closing.is_set():
                self._safe(self._on_close_hook)

        def _on_error(_ws, err):
            if self._closing.is_set():
                log.debug("[%s] WS error after close: %r", self.name, err)
                return
            log.error("[%s] WS ERROR: %s", self.name, err)
            self._safe(self._on_error_hook, err)

        def _on_message(_ws, msg):
            if not self._closing.is_set():
                self._safe(self._on_message_hook, msg)

        try:
            with self._lock:
                if self._closing.is_set():
                    return
                self._ws = websocket.WebSocketApp(
                    self.url,
                    on_open=_on_open,
                    on_message=_on_message,
                    on_error=_on_error,
                    on_close=_on_close,
                )

            log.info("[%s] connecting → %s", self.name, self.url)
            threading.Thread(target=self._watch_handshake, daemon=True, name=f"{self.name}-handshake").start()
            self._ws.run_forever(ping_interval=self.ping_interval, ping_timeout=self.ping_timeout, reconnect=0)
        except Exception as e:
            log.exception("[%s] WS exception: %s", self.name, e)
            if not self._closing.is_set():
                self._safe(self._on_error_hook, e)
        finally:
            self.connected.clear()
            self._done.set()

    def _watch_handshake(self) -> None:
        # keeps cutting the socket until the handshake is done or the thread has ended
        deadline = time.monotonic() + self.handshake_timeout
        while not self._done.wait(_WATCH_INTERVAL):
            if self.connected.is_set():
                return
            if self._closing.is_set():
                self._interrupt()
            elif time.monotonic() >= deadline:
                log.warning("[%s] no handshake after %.1fs, giving up", self.name, self.handshake_timeout)
                self._closing.set()
                self._interrupt()
                self._safe(self._on_error_hook, TimeoutError(f"handshake timed out: {self.url}"))

    def send(self, text: str) -> None:
        if self._ws is None or not self.connected.is_set():
            raise RuntimeError(f"[{self.name}] socket is not open")
        self._ws.send(text)

    def close(self) -> None:
        with self._lock:
            self._closing.set()
            ws = self._ws
        was_open = self.connected.is_set()
        self.connected.clear()
        if ws is None:
            return

        if was_open and ws.sock is not None:
            try:
                ws.sock.send_close()
            except Exception as e:
                log.debug("[%s] close frame not sent: %r", self.name, e)
        self._interrupt()

    def _interrupt(self) -> None:
        # stops run_forever and wakes any recv blocked on the raw socket (handshake included)
        ws = self._ws
        if ws is None:
            return
        ws.keep_running = False
        conn = ws.sock
        raw = getattr(conn, "sock", None) if conn is not None else None
        if raw is None:
            return
        try:
            raw.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            log.debug("[%s] socket already down: %r", self.name, e)

    def _safe(self, fn, *args):
        if fn is None:
            return
        try:
            fn(*args)
        except Exception:
            log.exception("[%s] callback %s failed", self.name, getattr(fn, "__name__", fn))
