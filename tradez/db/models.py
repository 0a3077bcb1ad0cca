# tradez/db/models.py
"""
SQLModel definitions for IBKR flex records and matched trades.
Designed for SQLite locally; any SQLAlchemy backend works.
"""

from datetime import datetime, date
from typing import Optional
from sqlmodel import SQLModel, Field


class Trade(SQLModel, table=True):
    """Trade execution from the Trades section of an IBKR FlexStatement."""
    __tablename__ = "trade"

    trade_id: str = Field(primary_key=True)  # tradeID from IBKR
    account_id: str = Field(index=True)

    conid: Optional[int] = Field(default=None, index=True)
    symbol: str = Field(index=True)
    description: str = Field(default="", index=True)
    underlying_symbol: Optional[str] = Field(default=None)
    asset_category: str = Field(default="STK")  # STK, OPT, FUT, CASH ...
    currency: str = Field(default="USD")
    expiry: Optional[date] = Field(default=None)

    # Stored in UTC; the raw IBKR value (US/Eastern) is kept for audit
    trade_datetime: datetime = Field(index=True)
    trade_datetime_raw: str = Field(default="")
    report_date: Optional[date] = Field(default=None)

    buy_sell: str = Field()  # BUY or SELL
    quantity: float = Field()  # Signed, negative for sells
    trade_price: float = Field(default=0.0)
    proceeds: float = Field(default=0.0)
    ib_commission: float = Field(default=0.0)  # Negative in IBKR data
    net_cash: float = Field(default=0.0)  # proceeds + commission
    fx_rate_to_base: float = Field(default=1.0)

    open_close_indicator: Optional[str] = Field(default=None)  # O or C
    notes: str = Field(default="")  # IBKR notes codes, e.g. "Ep;O"


class CashTransaction(SQLModel, table=True):
    """Dividends, interest, fees etc. from the CashTransactions section."""
    __tablename__ = "cash_transaction"

    transaction_id: str = Field(primary_key=True)
    account_id: str = Field(index=True)

    currency: str = Field(default="USD")
    fx_rate_to_base: float = Field(default=1.0)
    symbol: Optional[str] = Field(default=None, index=True)
    description: str = Field(default="")
    conid: Optional[int] = Field(default=None)

    date_time: datetime = Field(index=True)  # UTC
    date_time_raw: str = Field(default="")
    amount: float = Field()
    type: str = Field()  # e.g. "Dividends", "Withholding Tax"
    trade_id: Optional[str] = Field(default=None)

    report_date: Optional[date] = Field(default=None)
    settle_date: Optional[date] = Field(default=None)


class ClosedTradeRecord(SQLModel, table=True):
    """FIFO match of an opening (buy) and a closing (sell) trade."""
    __tablename__ = "closed_trade"

    open_trade_id: str = Field(primary_key=True)
    close_trade_id: str = Field(primary_key=True)

    instrument_key: str = Field(index=True)
    quantity: float = Field()
    result: float = Field(default=0.0)
    result_base_currency: float = Field(default=0.0)
