# tradez/domain/matcher.py
"""
FIFO lot matching.
Pairs buy and sell executions of the same instrument into closed trades
and computes the realized result in trade and base currency.
"""

import logging
import math
import numbers
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Tuple
import pytz

from tradez.domain.errors import InvalidExecutionError, MatchingInvariantError
from tradez.domain.models import ClosedTrade, MatchRun, OpenLot, TradeExecution

logger = logging.getLogger(__name__)

# Remaining quantities below this are treated as fully consumed
QTY_EPSILON = 1e-9


def validate_execution(exe: TradeExecution) -> None:
    """Raise InvalidExecutionError if the execution cannot be matched."""
    if not exe.id:
        raise InvalidExecutionError(exe.id, "missing id")
    if exe.instrument_key is None or exe.instrument_key == "":
        raise InvalidExecutionError(exe.id, "missing instrument key")
    if not isinstance(exe.timestamp, datetime):
        raise InvalidExecutionError(exe.id, "missing timestamp")

    for name in ("quantity_signed", "proceeds_local", "proceeds_base"):
        value = getattr(exe, name)
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise InvalidExecutionError(exe.id, f"{name} is not a number: {value!r}")
        if not math.isfinite(value):
            raise InvalidExecutionError(exe.id, f"{name} is not finite: {value!r}")


def _comparable_time(ts: datetime) -> datetime:
    """Naive timestamps sort as UTC so they can be ordered against aware ones."""
    if ts.tzinfo is None:
        return pytz.UTC.localize(ts)
    return ts


class _LotQueue:
    """
    Lots in arrival order.
    Exhausted lots stay in the list; `head` points at the first live one.
    """

    def __init__(self):
        self.lots: List[OpenLot] = []
        self.head = 0

    def __bool__(self) -> bool:
        return self.head < len(self.lots)

    def front(self) -> OpenLot:
        return self.lots[self.head]

    def push(self, lot: OpenLot) -> None:
        self.lots.append(lot)

    def pop(self) -> None:
        self.head += 1

    def live(self) -> List[OpenLot]:
        return self.lots[self.head:]


class FifoMatcher:
    """Matches executions first-in-first-out, one instrument at a time."""

    @staticmethod
    def match(executions: Iterable[TradeExecution]) -> List[ClosedTrade]:
        """Closed trades for all instruments, grouped by key in sorted order."""
        return FifoMatcher.run(executions).closed_trades

    @staticmethod
    def run(executions: Iterable[TradeExecution]) -> MatchRun:
        """
        Full matching run.

        Invalid executions are skipped and reported in `MatchRun.skipped`;
        everything else is grouped by instrument key and matched.

        Args:
            executions: Executions in any order, for any number of instruments

        Returns:
            MatchRun with closed trades, remaining open lots and skipped ids
        """
        run = MatchRun()
        by_instrument: Dict[str, List[TradeExecution]] = defaultdict(list)

        for exe in executions:
            try:
                validate_execution(exe)
            except InvalidExecutionError as e:
                logger.warning("Skipping execution: %s", e)
                run.skipped.append(e.execution_id)
                continue
            by_instrument[exe.instrument_key].append(exe)

        for key in sorted(by_instrument):
            closed, open_lots = FifoMatcher.match_instrument(key, by_instrument[key])
            run.closed_trades.extend(closed)
            run.open_lots.extend(open_lots)

        logger.info(
            "FIFO matching done: %d instruments, %d closed trades, %d open lots, %d skipped",
            len(by_instrument),
            len(run.closed_trades),
            len(run.open_lots),
            len(run.skipped),
        )
        return run

    @staticmethod
    def match_instrument(
        instrument_key: str,
        executions: List[TradeExecution],
    ) -> Tuple[List[ClosedTrade], List[OpenLot]]:
        """
        Match the executions of a single instrument.

        Executions are processed by ascending timestamp; equal timestamps keep
        their input order. The buy side of each match is reported as the open
        execution, the sell side as the close execution.

        Returns:
            (closed_trades, open_lots_left)
        """
        ordered = sorted(executions, key=lambda e: _comparable_time(e.timestamp))

        buys = _LotQueue()
        sells = _LotQueue()
        consumed: Dict[str, float] = defaultdict(float)
        closed: List[ClosedTrade] = []

        for exe in ordered:
            if exe.instrument_key != instrument_key:
                raise MatchingInvariantError(
                    instrument_key, f"execution {exe.id} belongs to {exe.instrument_key!r}"
                )
            if exe.quantity_signed == 0:
                logger.debug("Ignoring zero-quantity execution %s", exe.id)
                continue

            own, opposing = (buys, sells) if exe.is_buy else (sells, buys)
            remaining = exe.quantity_signed

            while opposing and abs(remaining) > QTY_EPSILON:
                lot = opposing.front()
                delta = min(abs(remaining), abs(lot.remaining_quantity))

                buy_exe, sell_exe = (
                    (exe, lot.source_execution) if exe.is_buy else (lot.source_execution, exe)
                )
                closed.append(
                    FifoMatcher._closed_trade(instrument_key, buy_exe, sell_exe, delta)
                )

                remaining = FifoMatcher._reduce(instrument_key, exe.id, remaining, delta)
                lot.remaining_quantity = FifoMatcher._reduce(
                    instrument_key, lot.source_execution.id, lot.remaining_quantity, delta
                )

                for side in (buy_exe, sell_exe):
                    consumed[side.id] += delta
                    if consumed[side.id] > abs(side.quantity_signed) + QTY_EPSILON:
                        raise MatchingInvariantError(
                            instrument_key,
                            f"execution {side.id} matched {consumed[side.id]} "
                            f"of {abs(side.quantity_signed)}",
                        )

                if lot.remaining_quantity == 0:
                    opposing.pop()

            if remaining != 0:
                own.push(OpenLot(source_execution=exe, remaining_quantity=remaining))

        open_lots = buys.live() + sells.live()
        logger.debug(
            "%s: %d closed trades, %d open lots", instrument_key, len(closed), len(open_lots)
        )
        return closed, open_lots

    @staticmethod
    def _reduce(instrument_key: str, exe_id: str, remaining: float, delta: float) -> float:
        """Move a signed remaining quantity `delta` units towards zero."""
        if delta > abs(remaining) + QTY_EPSILON:
            raise MatchingInvariantError(
                instrument_key,
                f"cannot consume {delta} from execution {exe_id} with {remaining} remaining",
            )
        left = remaining - math.copysign(delta, remaining)
        if abs(left) <= QTY_EPSILON:
            return 0.0
        return left

    @staticmethod
    def _closed_trade(
        instrument_key: str,
        buy_exe: TradeExecution,
        sell_exe: TradeExecution,
        quantity: float,
    ) -> ClosedTrade:
        """Pro-rate both sides' proceeds to the matched quantity and sum them."""
        buy_share = quantity / abs(buy_exe.quantity_signed)
        sell_share = quantity / abs(sell_exe.quantity_signed)

        result = buy_exe.proceeds_local * buy_share + sell_exe.proceeds_local * sell_share
        result_base = buy_exe.proceeds_base * buy_share + sell_exe.proceeds_base * sell_share

        logger.debug(
            "%s: matched %s open=%s close=%s result=%.4f",
            instrument_key, quantity, buy_exe.id, sell_exe.id, result,
        )
        return ClosedTrade(
            instrument_key=instrument_key,
            open_execution_id=buy_exe.id,
            close_execution_id=sell_exe.id,
            matched_quantity=quantity,
            result=result,
            result_base_currency=result_base,
        )
