# src/positions_calc/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from src.positions_calc.exchanges.base.exchange import MarketDataClient
from src.positions_calc.exchanges.base.rest import PublicREST
from src.positions_calc.exchanges.registry import CLIENTS, build_client, parse_venue

log = logging.getLogger("positions_calc.config")

CONFIG_ENV = "POSITIONS_CALC_CONFIG"
LOG_LEVEL_ENV = "POSITIONS_CALC_LOG_LEVEL"
CONFIG_RELPATH = Path("config") / "tracker.yaml"


def _f(x: Any, d: Optional[float]) -> Optional[float]:
    if x is None:
        return d
    try:
        return float(x)
    except (TypeError, ValueError):
        raise ValueError(f"expected a number, got {x!r}")


def _i(x: Any, d: int) -> int:
    if x is None:
        return d
    try:
        return int(x)
    except (TypeError, ValueError):
        raise ValueError(f"expected an integer, got {x!r}")


# ============================================================
# MODELS
# ============================================================

@dataclass(frozen=True)
class RestSettings:
    timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 1.5


@dataclass(frozen=True)
class VenueSettings:
    taker_fee_spot: Optional[float] = None
    taker_fee_futures: Optional[float] = None
    heartbeat_timeout: Optional[float] = None
    ping_interval: Optional[float] = None

    def client_kwargs(self, cls: type[MarketDataClient]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}

        fees: Dict[str, float] = {}
        if self.taker_fee_spot is not None:
            fees["spot"] = self.taker_fee_spot
        if self.taker_fee_futures is not None:
            fees["futures"] = self.taker_fee_futures
        if fees:
            out["taker_fees"] = fees

        hb = cls.heartbeat
        if hb is not None and (self.heartbeat_timeout is not None or self.ping_interval is not None):
            changes: Dict[str, Any] = {}
            if self.heartbeat_timeout is not None:
                changes["timeout"] = self.heartbeat_timeout
            if self.ping_interval is not None and hb.ping_message is not None:
                changes["ping_interval"] = self.ping_interval
            out["heartbeat"] = replace(hb, **changes)
        return out


@dataclass(frozen=True)
class TrackerConfig:
    log_level: str = "INFO"
    rest: RestSettings = RestSettings()
    reconnect_delay: float = 5.0
    venues: Dict[str, VenueSettings] = field(default_factory=dict)
    path: Optional[str] = None

    def client_factory(self) -> Callable[..., MarketDataClient]:
        """(venue, market, **callbacks) -> configured MarketDataClient"""

        def factory(venue: str, market: Any, **kwargs: Any) -> MarketDataClient:
            v = parse_venue(venue)
            settings = self.venues.get(v.value) or VenueSettings()
            kw: Dict[str, Any] = {
                "rest": PublicREST(
                    timeout=self.rest.timeout,
                    max_retries=self.rest.max_retries,
                    backoff_base=self.rest.backoff_base,
                ),
                **settings.client_kwargs(CLIENTS[v]),
            }
            kw.update(kwargs)
            return build_client(v, market, **kw)

        return factory


# ============================================================
# LOAD
# ============================================================

def _find_cfg_candidate(base: Path) -> Optional[Path]:
    base = base.resolve()
    for _ in range(0, 12):
        p = (base / CONFIG_RELPATH).resolve()
        if p.exists():
            return p
        if base.parent == base:
            break
        base = base.parent
    return None


def resolve_cfg_path(explicit: str | os.PathLike | None = None) -> Optional[Path]:
    """
    Explicit path (must exist) > $POSITIONS_CALC_CONFIG (must exist) >
    config/tracker.yaml searched upward from cwd, then from this package.
    Returns None when nothing is found.
    """
    for raw, origin in ((explicit, "argument"), (os.environ.get(CONFIG_ENV), CONFIG_ENV)):
        if not raw:
            continue
        cand = Path(raw).expanduser()
        cand = (Path.cwd() / cand).resolve() if not cand.is_absolute() else cand.resolve()
        if not cand.exists():
            raise FileNotFoundError(f"config file from {origin} not found: {cand}")
        return cand

    return _find_cfg_candidate(Path.cwd()) or _find_cfg_candidate(Path(__file__).resolve().parent)


def parse_config(raw: Dict[str, Any], *, path: Optional[str] = None) -> TrackerConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"config root must be a mapping, got {type(raw).__name__}")

    logging_cfg = raw.get("logging") or {}
    rest_cfg = raw.get("rest") or {}
    ctl_cfg = raw.get("controller") or {}

    venues: Dict[str, VenueSettings] = {}
    for name, vcfg in (raw.get("venues") or {}).items():
        venue = parse_venue(name)
        vcfg = vcfg or {}
        fee = vcfg.get("taker_fee") or {}
        hb = vcfg.get("heartbeat") or {}
        venues[venue.value] = VenueSettings(
            taker_fee_spot=_f(fee.get("spot"), None),
            taker_fee_futures=_f(fee.get("futures"), None),
            heartbeat_timeout=_f(hb.get("timeout"), None),
            ping_interval=_f(hb.get("ping_interval"), None),
        )

    level = os.environ.get(LOG_LEVEL_ENV) or logging_cfg.get("level") or "INFO"

    return TrackerConfig(
        log_level=str(level).upper(),
        rest=RestSettings(
            timeout=_f(rest_cfg.get("timeout"), 10.0),
            max_retries=_i(rest_cfg.get("max_retries"), 3),
            backoff_base=_f(rest_cfg.get("backoff_base"), 1.5),
        ),
        reconnect_delay=_f(ctl_cfg.get("reconnect_delay"), 5.0),
        venues=venues,
        path=path,
    )


def load_config(path: str | os.PathLike | None = None) -> TrackerConfig:
    cfg_path = resolve_cfg_path(path)
    if cfg_path is None:
        log.info("no config file found, using defaults")
        return parse_config({})

    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    cfg = parse_config(raw, path=str(cfg_path))
    log.info("config loaded from %s", cfg_path)
    return cfg


def load_env(path: str | os.PathLike | None = None) -> bool:
    """Load .env (searched upward from cwd when no path given)."""
    if path is not None:
        return load_dotenv(path, override=False)
    return load_dotenv(find_dotenv(usecwd=True), override=False)
