# tradez/domain/statistics.py
"""Counters reported by the store after saving statements or closed trades."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class Statistics:
    """Rows processed (`total`), rows not stored before (`new`) and per-row errors."""
    new: int = 0
    total: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SaveResult:
    """Statistics for one save of flex statements."""
    trades: Statistics = field(default_factory=Statistics)
    cash: Statistics = field(default_factory=Statistics)
