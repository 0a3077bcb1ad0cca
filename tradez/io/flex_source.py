# tradez/io/flex_source.py
"""
Trade source for the matcher.
Holds already-parsed FlexStatements and turns stored trades into TradeExecutions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Union
import pytz

from tradez.db.models import Trade, CashTransaction
from tradez.domain.models import TradeExecution

# IBKR reports trade times in US/Eastern
IBKR_TZ = pytz.timezone("US/Eastern")

# Trade attributes usable as instrument key
INSTRUMENT_KEYS = ("description", "symbol", "conid")

# Timestamp column and its raw-value column per record type
_TIME_FIELDS = {
    Trade: ("trade_datetime", "trade_datetime_raw"),
    CashTransaction: ("date_time", "date_time_raw"),
}


def to_utc(ts: datetime) -> datetime:
    """Naive IBKR timestamps are US/Eastern; aware ones are converted."""
    if ts.tzinfo is None:
        ts = IBKR_TZ.localize(ts)
    return ts.astimezone(pytz.UTC)


def as_utc(ts: datetime) -> datetime:
    """Timestamp read back from the database, where naive values are already UTC."""
    if ts.tzinfo is None:
        return pytz.UTC.localize(ts)
    return ts.astimezone(pytz.UTC)


def normalize_times(row: Union[Trade, CashTransaction]) -> None:
    """
    Convert a record's timestamp to aware UTC in place.
    The value as delivered by IBKR is kept in the raw column the first time.
    """
    ts_field, raw_field = _TIME_FIELDS[type(row)]
    ts = getattr(row, ts_field)
    if ts is None:
        return
    if not getattr(row, raw_field):
        setattr(row, raw_field, ts.isoformat(sep=" "))
    setattr(row, ts_field, to_utc(ts))


@dataclass
class FlexStatement:
    """
    One account's statement as delivered by the flex reader.
    Timestamps of its rows are normalised to UTC on construction.
    """
    account_id: str
    trades: List[Trade] = field(default_factory=list)
    cash_transactions: List[CashTransaction] = field(default_factory=list)

    def __post_init__(self):
        for row in self.trades:
            normalize_times(row)
        for row in self.cash_transactions or []:
            normalize_times(row)


def to_execution(trade: Trade, key: str = "description") -> TradeExecution:
    """
    Map a trade (from a FlexStatement or read back from the store) to a matcher input.

    Args:
        trade: Trade row with a UTC trade_datetime
        key: Trade attribute that groups executions into instruments

    Returns:
        TradeExecution with net cash as local proceeds and
        net cash * fx rate as base proceeds
    """
    if key not in INSTRUMENT_KEYS:
        raise ValueError(f"Unsupported instrument key: {key}")

    instrument = getattr(trade, key)
    return TradeExecution(
        id=trade.trade_id,
        instrument_key=str(instrument) if instrument is not None else "",
        quantity_signed=trade.quantity,
        timestamp=as_utc(trade.trade_datetime),
        proceeds_local=trade.net_cash,
        proceeds_base=trade.net_cash * trade.fx_rate_to_base,
    )


def executions_from_trades(trades: Iterable[Trade], key: str = "description") -> List[TradeExecution]:
    return [to_execution(t, key=key) for t in trades]


def executions_from_statements(
    statements: Iterable[FlexStatement],
    key: str = "description",
) -> List[TradeExecution]:
    """All trades of all statements as TradeExecutions."""
    return [to_execution(t, key=key) for st in statements for t in st.trades]
