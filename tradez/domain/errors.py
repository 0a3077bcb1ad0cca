# tradez/domain/errors.py
"""Exceptions raised by the matcher."""

from typing import Optional


class InvalidExecutionError(ValueError):
    """Execution cannot take part in matching (missing or non-finite field)."""

    def __init__(self, execution_id: Optional[str], reason: str):
        super().__init__(f"Invalid execution {execution_id!r}: {reason}")
        self.execution_id = execution_id
        self.reason = reason


class MatchingInvariantError(RuntimeError):
    """Lot bookkeeping went wrong while matching one instrument."""

    def __init__(self, instrument_key: str, message: str):
        super().__init__(f"[{instrument_key}] {message}")
        self.instrument_key = instrument_key
