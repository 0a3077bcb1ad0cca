# tests/conftest.py
"""Test configuration and fixtures."""

from datetime import datetime

import pytest
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

from tradez.db.models import Trade, CashTransaction
from tradez.io.flex_source import FlexStatement


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine shared by all connections of a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


def _kmi_trade(trade_id, day, side, qty, net_cash):
    return Trade(
        trade_id=trade_id,
        account_id="U1234567",
        conid=30943301,
        symbol="KMI",
        description="KINDER MORGAN INC",
        currency="USD",
        trade_datetime=datetime(2025, 1, day, 10, 0, 0),
        buy_sell=side,
        quantity=qty,
        trade_price=abs(net_cash / qty),
        proceeds=net_cash,
        ib_commission=0.0,
        net_cash=net_cash,
        fx_rate_to_base=0.95,
        open_close_indicator="O" if side == "BUY" else "C",
        notes="",
    )


@pytest.fixture(name="kmi_statement")
def kmi_statement_fixture():
    """Buy 100, buy 100, sell 100, sell 100 of KMI plus one dividend."""
    return FlexStatement(
        account_id="U1234567",
        trades=[
            _kmi_trade("1001", 2, "BUY", 100, -1000.0),
            _kmi_trade("1002", 3, "BUY", 100, -1100.0),
            _kmi_trade("1003", 6, "SELL", -100, 1129.0),
            _kmi_trade("1004", 7, "SELL", -100, 1279.0),
        ],
        cash_transactions=[
            CashTransaction(
                transaction_id="5001",
                account_id="U1234567",
                currency="USD",
                fx_rate_to_base=0.95,
                symbol="KMI",
                description="KMI CASH DIVIDEND USD 0.2875 PER SHARE",
                conid=30943301,
                date_time=datetime(2025, 1, 5, 20, 20, 0),
                amount=28.75,
                type="Dividends",
            ),
        ],
    )
