# src/positions_calc/run_tracker.py
from __future__ import annotations

import argparse
import logging
import signal
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from src.positions_calc.config import TrackerConfig, load_config, load_env
from src.positions_calc.core.engine.controller import ConnectionController, PriceSession
from src.positions_calc.core.models.enums import MarketType, PositionStatus
from src.positions_calc.core.models.position import Position
from src.positions_calc.core.models.transaction import Transaction
from src.positions_calc.core.position.accountant import find_problems
from src.positions_calc.core.position.position_manager import InMemoryTransactionStore, PositionManager
from src.positions_calc.core.utils.numeric import format_adaptive_price, format_fixed

log = logging.getLogger("positions_calc.run_tracker")


# ============================================================
# LOGGING / INPUT
# ============================================================

def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s",
    )


def load_position_file(path: str | Path) -> Tuple[Position, List[Transaction]]:
    with Path(path).open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    p = raw.get("position") or {}
    missing = [k for k in ("id", "symbol", "venue", "market") if not p.get(k)]
    if missing:
        raise ValueError(f"{path}: position is missing {missing}")

    position = Position(
        id=int(p["id"]),
        symbol=str(p["symbol"]),
        venue=str(p["venue"]),
        market=MarketType.parse(p["market"]),
        status=PositionStatus(str(p.get("status") or "OPEN").upper()),
    )
    txs = [Transaction.from_row(r) for r in (raw.get("transactions") or [])]
    return position, txs


def build_manager(position: Position, txs: List[Transaction]) -> PositionManager:
    store = InMemoryTransactionStore()
    for tx in txs:
        store.add(position.id, tx)
    return PositionManager(store=store, positions={position.id: position})


# ============================================================
# OUTPUT
# ============================================================

def _print_summary(summary: Dict[str, Any]) -> None:
    print(
        f"[{summary['venue']} {summary['market']} {summary['symbol']}] status={summary['status']} "
        f"position={format_fixed(summary['final_position'])} "
        f"avg={format_adaptive_price(summary['final_avg_price'])} "
        f"realized={format_fixed(summary['realized_pnl'])} "
        f"fees={format_fixed(summary['fee_total'])} fee_base={format_fixed(summary['fee_base_total'])} "
        f"funding={format_fixed(summary['funding_total'])} rows={summary['trans_count']}"
    )


def _log_session(session: PriceSession) -> None:
    snap = session.snapshot()
    log.info(
        "[%s] last=%s unrealized=%s cost=%s%s",
        snap["status"],
        format_fixed(snap["last_price"]),
        format_fixed(snap["unrealized_pnl"]),
        format_fixed(snap["cost"]),
        (
            f" | selected pos={format_fixed(snap['selected_position'])} "
            f"avg={format_adaptive_price(snap['selected_avg_price'])} "
            f"pnl={format_fixed(snap['selected_unrealized_pnl'])}"
        ) if snap["selected_position"] is not None else "",
    )


# ============================================================
# MAIN
# ============================================================

def run(
    *,
    position_file: str,
    cfg: TrackerConfig,
    selected: Optional[List[int]] = None,
    duration: Optional[float] = None,
    stop_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    position, txs = load_position_file(position_file)

    # before the store normalizes funding rows
    problems = find_problems(txs)
    if problems:
        raise ValueError("invalid transactions:\n- " + "\n- ".join(problems))

    manager = build_manager(position, txs)

    summary = manager.summary(position.id)
    _print_summary(summary)

    state = manager.state(position.id)
    sel_state = manager.fold_selected(position.id, selected) if selected else None

    stop = stop_event or threading.Event()
    controller = ConnectionController(
        client_factory=cfg.client_factory(),
        on_update=_log_session,
        reconnect_delay=cfg.reconnect_delay,
    )
    try:
        controller.refresh(position, state, sel_state)
        if position.is_open:
            stop.wait(duration)
    finally:
        controller.close()

    return summary


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Position average price / PnL tracker with live prices")
    ap.add_argument("--position", required=True, help="YAML file with `position` and `transactions`")
    ap.add_argument("--config", default=None, help="tracker YAML config (default: config/tracker.yaml)")
    ap.add_argument("--selected", type=int, nargs="*", default=None, help="transaction ids to fold separately")
    ap.add_argument("--duration", type=float, default=None, help="seconds to stream (default: until Ctrl-C)")
    args = ap.parse_args(argv)

    load_env()
    cfg = load_config(args.config)
    _setup_logging(cfg.log_level)

    stop = threading.Event()

    def _on_signal(signum, _frame):
        log.info("signal %s received, stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    run(
        position_file=args.position,
        cfg=cfg,
        selected=args.selected,
        duration=args.duration,
        stop_event=stop,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
