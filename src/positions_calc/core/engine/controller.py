# src/positions_calc/core/engine/controller.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from src.positions_calc.core.models.enums import ConnectionState, MarketType
from src.positions_calc.core.models.position import Position
from src.positions_calc.core.position.position_state import PositionState
from src.positions_calc.core.position.unrealized import UnrealizedPnl, compute_for_state
from src.positions_calc.exchanges.base.exchange import MarketDataClient
from src.positions_calc.exchanges.registry import build_client

SessionListener = Callable[["PriceSession"], None]
ClientFactory = Callable[..., MarketDataClient]
TimerFactory = Callable[..., Any]


class PriceSession:
    """
    Live view of one watched position: connection status, last price and
    the pnl derived from it. Owned by ConnectionController and handed to
    the display layer on every change.
    """

    def __init__(
        self,
        *,
        position_id: int,
        venue: str,
        market: MarketType,
        symbol: str,
        taker_fee: float,
    ) -> None:
        self.position_id = position_id
        self.venue = venue
        self.market = market
        self.symbol = symbol
        self.taker_fee = taker_fee

        self.status = ConnectionState.DISCONNECTED
        self.last_price: Optional[float] = None

        self.state: Optional[PositionState] = None
        self.selected: Optional[PositionState] = None
        self.unrealized: Optional[UnrealizedPnl] = None
        self.selected_unrealized: Optional[UnrealizedPnl] = None

        self._lock = threading.Lock()

    def _recompute(self) -> None:
        self.unrealized = compute_for_state(self.last_price, self.state, self.taker_fee)
        self.selected_unrealized = compute_for_state(self.last_price, self.selected, self.taker_fee)

    def apply_price(self, price: float) -> None:
        with self._lock:
            self.last_price = price
            self._recompute()

    def set_state(self, state: Optional[PositionState], selected: Optional[PositionState] = None) -> None:
        with self._lock:
            self.state = state
            self.selected = selected
            self._recompute()

    def set_status(self, status: ConnectionState) -> None:
        with self._lock:
            self.status = status

    def snapshot(self) -> dict:
        """Display payload; None marks a placeholder."""
        with self._lock:
            st = self.state
            return {
                "position_id": self.position_id,
                "venue": self.venue,
                "market": self.market.value,
                "symbol": self.symbol,
                "status": self.status.value,
                "last_price": self.last_price,
                "position": st.position if st is not None else None,
                "avg_price": st.display_avg_price if st is not None else None,
                "realized_pnl": st.realized_pnl if st is not None else None,
                "unrealized_pnl": self.unrealized.unrealized_pnl if self.unrealized else None,
                "cost": self.unrealized.cost if self.unrealized else None,
                "selected_position": self.selected.position if self.selected is not None else None,
                "selected_avg_price": self.selected.display_avg_price if self.selected is not None else None,
                "selected_unrealized_pnl": (
                    self.selected_unrealized.unrealized_pnl if self.selected_unrealized else None
                ),
            }


class ConnectionController:
    """
    Keeps exactly one MarketDataClient matched to the watched position's
    (venue, market, symbol, status).

      OPEN      -> initial REST price + one live subscription
      not OPEN  -> no subscription, a single REST price

    Repeated refreshes with an unchanged position are no-ops. Callbacks
    from replaced clients are dropped by generation.
    """

    def __init__(
        self,
        *,
        client_factory: ClientFactory = build_client,
        on_update: Optional[SessionListener] = None,
        reconnect_delay: float = 5.0,
        timer_factory: TimerFactory = threading.Timer,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client_factory = client_factory
        self.on_update = on_update
        self.reconnect_delay = float(reconnect_delay)
        self.timer_factory = timer_factory
        self.logger = logger or logging.getLogger("positions_calc.core.engine.controller")

        self._lock = threading.RLock()
        self._timer_lock = threading.Lock()

        self._generation = 0
        self._client: Optional[MarketDataClient] = None
        self._session: Optional[PriceSession] = None
        self._position: Optional[Position] = None
        self._identity: Optional[tuple] = None
        self._mode: Optional[str] = None  # "stream" | "rest"
        self._reconnect_timer: Any = None

    # ------------------------------------------------------------
    @property
    def client(self) -> Optional[MarketDataClient]:
        return self._client

    @property
    def session(self) -> Optional[PriceSession]:
        return self._session

    # ------------------------------------------------------------
    def refresh(
        self,
        position: Position,
        state: Optional[PositionState] = None,
        selected: Optional[PositionState] = None,
    ) -> PriceSession:
        """
        Called on every position-state refresh. Raises ValueError for an
        unknown venue (nothing is torn down in that case).
        """
        with self._lock:
            identity = position.identity
            if self._client is None or identity != self._identity:
                self._replace_client(position, identity)

            self._position = position
            session = self._session
            if state is not None or selected is not None:
                session.set_state(state, selected)

            venue, _market, symbol = identity
            client = self._client

            if position.is_open:
                if client.is_open_or_connecting():
                    self.logger.debug("[PNL] %s %s: WS already open/connecting, skip", venue, symbol)
                else:
                    self.logger.info("[PNL] %s %s: status OPEN -> ensure WS up", venue, symbol)
                    self._cancel_reconnect()
                    client.close_ws()
                    client.fetch_initial_price(position.symbol)
                    client.connect_ws(position.symbol)
                    self._mode = "stream"
            elif self._mode != "rest":
                self.logger.info("[PNL] %s %s: status %s -> WS closed, REST only", venue, symbol, position.status.value)
                self._cancel_reconnect()
                client.close_ws()
                client.fetch_initial_price(position.symbol)
                self._mode = "rest"

        self._notify(session)
        return session

    def update_state(self, state: Optional[PositionState], selected: Optional[PositionState] = None) -> None:
        """Accounting changed (rows edited / selection changed) without a position change."""
        session = self._session
        if session is None:
            return
        session.set_state(state, selected)
        self._notify(session)

    def close(self) -> None:
        """Viewer went away."""
        with self._lock:
            self._generation += 1
            self._cancel_reconnect()
            client, self._client = self._client, None
            self._identity = None
            self._mode = None
            self._position = None
            if client is not None:
                client.close_ws()
                self.logger.info("[PNL] %s client closed", client.name)

    # ------------------------------------------------------------
    def _replace_client(self, position: Position, identity: tuple) -> None:
        venue, market, symbol = identity
        generation = self._generation + 1

        client = self.client_factory(
            venue,
            market,
            on_price=lambda px: self._on_price(generation, px),
            on_status=lambda st: self._on_status(generation, st),
            on_timeout=lambda: self._on_timeout(generation),
        )

        old = self._client
        self._generation = generation
        self._client = client
        self._identity = identity
        self._mode = None
        self._session = PriceSession(
            position_id=position.id,
            venue=venue,
            market=market,
            symbol=symbol,
            taker_fee=client.taker_fee,
        )
        self._cancel_reconnect()

        if old is not None:
            self.logger.info("[PNL] identity changed -> replacing %s client", old.name)
            old.close_ws()

    def _on_price(self, generation: int, px: float) -> None:
        session = self._session
        if generation != self._generation or session is None:
            return
        session.apply_price(px)
        self._notify(session)

    def _on_status(self, generation: int, st: ConnectionState) -> None:
        session = self._session
        if generation != self._generation or session is None:
            return
        session.set_status(st)
        self._notify(session)

    def _on_timeout(self, generation: int) -> None:
        position = self._position
        if generation != self._generation or position is None or not position.is_open:
            return

        self.logger.warning("[PNL] heartbeat timeout, reconnect in %.1fs", self.reconnect_delay)
        with self._timer_lock:
            # close() or a client swap may have run since the check above
            if generation != self._generation:
                return
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
            timer = self.timer_factory(self.reconnect_delay, self._reconnect, args=(generation,))
            timer.daemon = True
            self._reconnect_timer = timer
            timer.start()

    def _reconnect(self, generation: int) -> None:
        with self._lock:
            with self._timer_lock:
                self._reconnect_timer = None
            position = self._position
            client = self._client
            if generation != self._generation or client is None or position is None:
                return
            if not position.is_open or client.is_open_or_connecting():
                return
            self.logger.info("[PNL] reconnecting %s %s", client.name, position.symbol)
            client.connect_ws(position.symbol)

    def _cancel_reconnect(self) -> None:
        with self._timer_lock:
            timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None:
            timer.cancel()

    def _notify(self, session: PriceSession) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(session)
        except Exception:
            self.logger.exception("[PNL] update listener failed")
