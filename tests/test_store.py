from __future__ import annotations

from datetime import datetime

import pytest
import pytz

from tradez.db.models import Trade, ClosedTradeRecord
from tradez.domain.models import ClosedTrade
from tradez.io.flex_source import FlexStatement, as_utc
from tradez.io.store import TradeStore


def test_save_flex_statements_counts_new_rows(session, kmi_statement):
    result = TradeStore.save_flex_statements(session, [kmi_statement])

    assert result.trades.total == 4
    assert result.trades.new == 4
    assert result.cash.total == 1
    assert result.cash.new == 1
    assert result.trades.errors == []


def test_saving_again_replaces_instead_of_duplicating(session, kmi_statement):
    TradeStore.save_flex_statements(session, [kmi_statement])

    kmi_statement.trades[0].notes = "P"
    result = TradeStore.save_flex_statements(session, [kmi_statement])

    assert result.trades.total == 4
    assert result.trades.new == 0
    assert result.cash.new == 0

    trades = TradeStore.trades(session)
    assert len(trades) == 4
    assert trades[0].notes == "P"


def test_rows_without_primary_key_are_reported(session):
    statement = FlexStatement(
        account_id="U1234567",
        trades=[
            Trade(
                trade_id="",
                account_id="U1234567",
                symbol="KMI",
                trade_datetime=datetime(2025, 1, 2, 10, 0),
                buy_sell="BUY",
                quantity=1,
            )
        ],
    )

    result = TradeStore.save_flex_statements(session, [statement])

    assert result.trades.total == 1
    assert result.trades.new == 0
    assert len(result.trades.errors) == 1
    assert TradeStore.trades(session) == []


def test_query_accessors(session, kmi_statement):
    TradeStore.save_flex_statements(session, [kmi_statement])

    trades = TradeStore.trades(session)
    assert [t.trade_id for t in trades] == ["1001", "1002", "1003", "1004"]
    assert trades[0].symbol == "KMI"
    assert TradeStore.trades(session, symbol="GME") == []

    cash = TradeStore.cash_transactions(session)
    assert len(cash) == 1
    assert cash[0].type == "Dividends"


def test_table_count_create_and_drop(engine):
    assert TradeStore.table_count(engine) == 3

    TradeStore.drop_tables(engine)
    assert TradeStore.table_count(engine) == 0

    TradeStore.create_tables(engine)
    assert TradeStore.table_count(engine) == 3


def test_trades_frame_derived_columns(session, kmi_statement):
    kmi_statement.trades[3].notes = "Ep;C"
    TradeStore.save_flex_statements(session, [kmi_statement])

    df = TradeStore.trades_frame(session)

    assert len(df) == 4
    assert df["base_amount"].iloc[0] == pytest.approx(-950.0)
    assert list(df["is_buy"]) == [True, True, False, False]
    assert list(df["code"]) == ["O", "O", "C", "C"]
    assert list(df["is_expired"]) == [False, False, False, True]


def test_trades_frame_empty(session):
    df = TradeStore.trades_frame(session)

    assert df.empty
    assert "base_amount" in df.columns


def test_save_closed_trades_is_idempotent(session):
    closed = [
        ClosedTrade("KMI", "1001", "1003", 100, 129.0, 122.55),
        ClosedTrade("KMI", "1002", "1004", 100, 179.0, 170.05),
    ]

    first = TradeStore.save_closed_trades(session, closed)
    second = TradeStore.save_closed_trades(session, closed)

    assert (first.new, first.total) == (2, 2)
    assert (second.new, second.total) == (0, 2)
    assert len(TradeStore.closed_trades(session)) == 2


def test_match_and_save_from_stored_trades(session, kmi_statement):
    TradeStore.save_flex_statements(session, [kmi_statement])

    run, stats = TradeStore.match_and_save(session)

    assert stats.new == 2
    assert run.open_lots == []
    records = TradeStore.closed_trades(session)
    assert [(r.open_trade_id, r.close_trade_id) for r in records] == [
        ("1001", "1003"),
        ("1002", "1004"),
    ]
    assert records[0].instrument_key == "KINDER MORGAN INC"
    assert records[0].result == pytest.approx(129)
    assert records[1].result == pytest.approx(179)
    assert records[0].result_base_currency == pytest.approx(122.55)

    run, stats = TradeStore.match_and_save(session)
    assert stats.new == 0
    assert len(TradeStore.closed_trades(session)) == 2


def test_match_and_save_drops_stale_matches(session, kmi_statement):
    session.add(
        ClosedTradeRecord(
            open_trade_id="1002",
            close_trade_id="1003",
            instrument_key="KINDER MORGAN INC",
            quantity=100,
        )
    )
    session.commit()
    TradeStore.save_flex_statements(session, [kmi_statement])

    TradeStore.match_and_save(session)

    pairs = {(r.open_trade_id, r.close_trade_id) for r in TradeStore.closed_trades(session)}
    assert pairs == {("1001", "1003"), ("1002", "1004")}


def _trade(trade_id, ts, side, qty, net_cash):
    return Trade(
        trade_id=trade_id,
        account_id="U1234567",
        symbol="AAPL",
        description="APPLE INC",
        trade_datetime=ts,
        buy_sell=side,
        quantity=qty,
        net_cash=net_cash,
    )


def test_naive_and_aware_times_are_stored_as_utc_and_matched(session):
    berlin = pytz.timezone("Europe/Berlin")
    statement = FlexStatement(
        account_id="U1234567",
        trades=[
            # 14:00 UTC
            _trade("A", datetime(2025, 1, 2, 9, 0), "BUY", 5, -500.0),
            # 14:30 UTC
            _trade("B", berlin.localize(datetime(2025, 1, 2, 15, 30)), "BUY", 5, -520.0),
            # 15:00 UTC
            _trade("C", datetime(2025, 1, 2, 10, 0), "SELL", -5, 560.0),
        ],
    )

    TradeStore.save_flex_statements(session, [statement])
    session.expire_all()

    stored = {t.trade_id: t for t in TradeStore.trades(session)}
    assert as_utc(stored["A"].trade_datetime) == datetime(2025, 1, 2, 14, 0, tzinfo=pytz.UTC)
    assert as_utc(stored["B"].trade_datetime) == datetime(2025, 1, 2, 14, 30, tzinfo=pytz.UTC)
    assert stored["A"].trade_datetime_raw == "2025-01-02 09:00:00"
    assert [t.trade_id for t in TradeStore.trades(session)] == ["A", "B", "C"]

    run, _ = TradeStore.match_and_save(session)

    assert [(c.open_execution_id, c.close_execution_id) for c in run.closed_trades] == [("A", "C")]
    assert run.closed_trades[0].result == pytest.approx(60.0)
    assert [lot.source_execution.id for lot in run.open_lots] == ["B"]


def test_cash_transaction_times_are_stored_as_utc(session, kmi_statement):
    TradeStore.save_flex_statements(session, [kmi_statement])
    session.expire_all()

    cash = TradeStore.cash_transactions(session)[0]

    assert as_utc(cash.date_time) == datetime(2025, 1, 6, 1, 20, tzinfo=pytz.UTC)
    assert cash.date_time_raw == "2025-01-05 20:20:00"
