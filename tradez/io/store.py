# tradez/io/store.py
"""Idempotent storage and querying of flex records and closed trades."""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, select

from tradez.db.models import Trade, CashTransaction, ClosedTradeRecord
from tradez.domain.matcher import FifoMatcher
from tradez.domain.models import ClosedTrade, MatchRun
from tradez.domain.statistics import SaveResult, Statistics
from tradez.io.flex_source import FlexStatement, executions_from_trades, normalize_times

logger = logging.getLogger(__name__)

TRADES_FRAME_COLUMNS = [
    "trade_id", "conid", "account_id", "description", "symbol", "underlying_symbol",
    "quantity", "trade_price", "report_date", "trade_datetime", "net_cash",
    "fx_rate_to_base", "base_amount", "ib_commission", "open_close_indicator",
    "buy_sell", "asset_category", "expiry", "is_open_position", "is_expired",
    "is_buy", "proceeds", "code",
]


class TradeStore:
    """Insert-or-replace persistence and thin query accessors."""

    @staticmethod
    def create_tables(engine: Engine) -> None:
        SQLModel.metadata.create_all(engine)

    @staticmethod
    def drop_tables(engine: Engine) -> None:
        SQLModel.metadata.drop_all(engine)

    @staticmethod
    def table_count(engine: Engine) -> int:
        """Number of tables in the database."""
        return len(inspect(engine).get_table_names())

    @staticmethod
    def save_flex_statements(
        session: Session,
        statements: Sequence[FlexStatement],
    ) -> SaveResult:
        """
        Save all trades and cash transactions of the statements.

        Rows are inserted or replaced by primary key in a single transaction.
        `new` counts rows that were not stored before this call.
        Timestamps are stored as aware UTC.
        """
        result = SaveResult()
        try:
            for statement in statements:
                for row in statement.trades + (statement.cash_transactions or []):
                    normalize_times(row)
                TradeStore._upsert(
                    session, Trade, "trade_id", statement.trades, result.trades
                )
                TradeStore._upsert(
                    session,
                    CashTransaction,
                    "transaction_id",
                    statement.cash_transactions or [],
                    result.cash,
                )
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info(
            "Saved flex statements: trades %d/%d new, cash %d/%d new",
            result.trades.new, result.trades.total, result.cash.new, result.cash.total,
        )
        return result

    @staticmethod
    def save_closed_trades(
        session: Session,
        closed_trades: Iterable[ClosedTrade],
    ) -> Statistics:
        """Upsert closed trades keyed by (open_trade_id, close_trade_id)."""
        records = [
            ClosedTradeRecord(
                open_trade_id=ct.open_execution_id,
                close_trade_id=ct.close_execution_id,
                instrument_key=ct.instrument_key,
                quantity=ct.matched_quantity,
                result=ct.result,
                result_base_currency=ct.result_base_currency,
            )
            for ct in closed_trades
        ]
        stats = Statistics()
        try:
            TradeStore._upsert(
                session, ClosedTradeRecord, ("open_trade_id", "close_trade_id"), records, stats
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info("Saved closed trades: %d/%d new", stats.new, stats.total)
        return stats

    @staticmethod
    def match_and_save(
        session: Session,
        key: str = "description",
    ) -> Tuple[MatchRun, Statistics]:
        """
        Run FIFO matching over all stored trades and store the closed trades.
        Closed trades from earlier runs that no longer match are removed.
        """
        trades = TradeStore.trades(session)
        run = FifoMatcher.run(executions_from_trades(trades, key=key))

        current = {(ct.open_execution_id, ct.close_execution_id) for ct in run.closed_trades}
        stale = [
            rec for rec in TradeStore.closed_trades(session)
            if (rec.open_trade_id, rec.close_trade_id) not in current
        ]
        for rec in stale:
            session.delete(rec)
        if stale:
            logger.info("Removing %d stale closed trades", len(stale))

        stats = TradeStore.save_closed_trades(session, run.closed_trades)
        return run, stats

    @staticmethod
    def trades(session: Session, symbol: Optional[str] = None) -> List[Trade]:
        stmt = select(Trade)
        if symbol is not None:
            stmt = stmt.where(Trade.symbol == symbol)
        stmt = stmt.order_by(Trade.trade_datetime, Trade.trade_id)
        return list(session.exec(stmt).all())

    @staticmethod
    def cash_transactions(session: Session) -> List[CashTransaction]:
        stmt = select(CashTransaction).order_by(
            CashTransaction.date_time, CashTransaction.transaction_id
        )
        return list(session.exec(stmt).all())

    @staticmethod
    def closed_trades(session: Session) -> List[ClosedTradeRecord]:
        stmt = select(ClosedTradeRecord).order_by(
            ClosedTradeRecord.instrument_key,
            ClosedTradeRecord.open_trade_id,
            ClosedTradeRecord.close_trade_id,
        )
        return list(session.exec(stmt).all())

    @staticmethod
    def trades_frame(session: Session) -> pd.DataFrame:
        """
        Compact view of the stored trades with a few derived columns
        for grouping and calculations.
        """
        trades = TradeStore.trades(session)
        if not trades:
            return pd.DataFrame(columns=TRADES_FRAME_COLUMNS)

        df = pd.DataFrame([t.model_dump() for t in trades])
        df["base_amount"] = df["net_cash"] * df["fx_rate_to_base"]
        df["is_open_position"] = df["open_close_indicator"] == "O"
        df["is_expired"] = df["notes"].fillna("").str.split(";").apply(lambda codes: "Ep" in codes)
        df["is_buy"] = df["buy_sell"] == "BUY"
        df["code"] = df["is_open_position"].map({True: "O", False: "C"})
        return df[TRADES_FRAME_COLUMNS]

    @staticmethod
    def _upsert(session: Session, model, pk, rows, stats: Statistics) -> None:
        """Merge rows by primary key, counting the ones not stored before."""
        pk_fields = (pk,) if isinstance(pk, str) else tuple(pk)
        seen = set()

        for row in rows:
            stats.total += 1
            ident = tuple(getattr(row, f) for f in pk_fields)
            if any(v is None or v == "" for v in ident):
                msg = f"Skipped {model.__name__} with missing {'/'.join(pk_fields)}"
                logger.warning(msg)
                stats.errors.append(msg)
                continue

            key = ident[0] if len(ident) == 1 else ident
            if ident not in seen and session.get(model, key) is None:
                stats.new += 1
            seen.add(ident)
            session.merge(row)
