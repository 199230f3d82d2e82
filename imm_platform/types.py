"""
imm_platform/types.py
=====================
Python dataclasses mirroring the dashboard's TypeScript data shapes.
All record and result structures used across the platform.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Literal, Tuple, Any

# ─── Constants ────────────────────────────────────────────────────────────────

ANALYSIS_YEARS: Tuple[int, ...] = (2017, 2018, 2019, 2020, 2021)
FIRST_YEAR = ANALYSIS_YEARS[0]
LAST_YEAR = ANALYSIS_YEARS[-1]

TOP_FIRMS_LIMIT = 50
SEARCH_LIMIT = 10

ViewState = Literal["no_data", "no_selection", "insufficient_data"]


# ─── Core Data Types ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FinancialRecord:
    """One firm-year fact as produced by ingestion. Never mutated."""
    name: str
    year: int
    profit: float
    sales: float
    market_value: float


# FirmSeries: {year: record}; a later record for the same year replaces the earlier one
FirmSeries = Dict[int, FinancialRecord]

# Companies: {firm name: FirmSeries}, insertion-ordered by first appearance
Companies = Dict[str, FirmSeries]


@dataclass(frozen=True)
class MetricPoint:
    year_prev: int
    year_curr: int
    n: float
    m: float

    @property
    def year_pair(self) -> Tuple[int, int]:
        return (self.year_prev, self.year_curr)

    @property
    def label(self) -> str:
        return f"{self.year_prev}-{self.year_curr}"


@dataclass(frozen=True)
class RankEntry:
    name: str
    latest_year: int
    market_value: float


@dataclass
class MetricRun:
    """Result of one timed metric computation for a selected firm."""
    firm: str
    points: List[MetricPoint] = field(default_factory=list)
    elapsed_ms: Optional[float] = None


# ─── Ingestion Types ──────────────────────────────────────────────────────────

@dataclass
class IngestReport:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IngestOptions:
    strict_mode: bool = False
    column_aliases: Optional[Dict[str, str]] = None
