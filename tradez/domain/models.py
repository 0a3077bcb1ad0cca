# tradez/domain/models.py
"""Plain records used by the FIFO lot matcher."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class TradeExecution:
    """A single execution as seen by the matcher (read-only input)."""
    id: str
    instrument_key: str
    quantity_signed: float  # positive = buy, negative = sell
    timestamp: datetime
    proceeds_local: float
    proceeds_base: float

    @property
    def is_buy(self) -> bool:
        return self.quantity_signed > 0


@dataclass
class OpenLot:
    """Unconsumed part of an execution waiting for an offsetting trade."""
    source_execution: TradeExecution
    remaining_quantity: float  # same sign as the source execution


@dataclass(frozen=True)
class ClosedTrade:
    """One FIFO match between a buy (open) and a sell (close) execution."""
    instrument_key: str
    open_execution_id: str
    close_execution_id: str
    matched_quantity: float
    result: float
    result_base_currency: float


@dataclass
class MatchRun:
    """Everything a matching run produced."""
    closed_trades: List[ClosedTrade] = field(default_factory=list)
    open_lots: List[OpenLot] = field(default_factory=list)
    skipped: List[Optional[str]] = field(default_factory=list)
