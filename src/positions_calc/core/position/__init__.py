# src/positions_calc/core/position/__init__.py
from .position_state import PositionState
from .accountant import InvalidTransactionError, fold, fold_selected, position_epsilon
from .unrealized import UnrealizedPnl, compute_for_state, compute_unrealized
from .position_manager import InMemoryTransactionStore, PositionManager

__all__ = [
    "PositionState",
    "InvalidTransactionError",
    "fold",
    "fold_selected",
    "position_epsilon",
    "UnrealizedPnl",
    "compute_unrealized",
    "compute_for_state",
    "InMemoryTransactionStore",
    "PositionManager",
]
