"""
imm_platform/engine.py
======================
Metamorphosis engine: firm grouping, coverage validation, N/M metric
derivation, market-value ranking and firm lookup.

Every function is a pure transform of its inputs. Degenerate numeric cases
(zero denominators, non-finite results) are dropped from the output, never
raised.

    N = curr.profit / curr.sales − prev.profit / prev.sales
    M = ((curr.mv − prev.mv) / prev.mv) / N
"""
from __future__ import annotations

import logging
import math
import time
from typing import Iterable, List, Optional, Sequence

from .types import (
    ANALYSIS_YEARS, FIRST_YEAR, LAST_YEAR, SEARCH_LIMIT, TOP_FIRMS_LIMIT,
    Companies, FinancialRecord, FirmSeries, MetricPoint, MetricRun, RankEntry,
    ViewState,
)

logger = logging.getLogger(__name__)


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _ieee_div(num: float, den: float) -> float:
    """Float division that yields ±inf / nan on a zero denominator instead of raising."""
    if den == 0:
        if num == 0 or math.isnan(num):
            return math.nan
        return math.copysign(math.inf, num) * math.copysign(1.0, den)
    return num / den


def _adjacent_pairs() -> List[tuple]:
    return list(zip(ANALYSIS_YEARS, ANALYSIS_YEARS[1:]))


# ─── Firm Grouping Index ──────────────────────────────────────────────────────

def group_by_firm(records: Iterable[FinancialRecord]) -> Companies:
    """
    Group records by exact firm name, keeping only years in the analysis window.
    A duplicate (firm, year) record overwrites the one seen before it.
    """
    companies: Companies = {}
    dropped = 0
    for rec in records:
        if FIRST_YEAR <= rec.year <= LAST_YEAR:
            companies.setdefault(rec.name, {})[rec.year] = rec
        else:
            dropped += 1
    if dropped:
        logger.debug("Dropped %d records outside %d-%d", dropped, FIRST_YEAR, LAST_YEAR)
    logger.debug("Grouped %d firms", len(companies))
    return companies


def firm_names(companies: Companies) -> List[str]:
    return sorted(companies.keys())


# ─── Coverage Validator ───────────────────────────────────────────────────────

def has_valid_data(series: FirmSeries) -> bool:
    """True when at least one adjacent year pair of the window is fully present."""
    year_set = set(series.keys())
    for y_prev, y_curr in _adjacent_pairs():
        if y_prev in year_set and y_curr in year_set:
            return True
    return False


# ─── Metric Engine ────────────────────────────────────────────────────────────

def compute_metrics(series: FirmSeries) -> List[MetricPoint]:
    """
    Chronological (N, M) points for every adjacent year pair present in `series`.

    A pair is skipped when N == 0, prev market value == 0, or either sales is 0,
    and afterwards when M is not finite. Very large finite M values are kept.
    """
    points: List[MetricPoint] = []
    for y_prev, y_curr in _adjacent_pairs():
        prev = series.get(y_prev)
        curr = series.get(y_curr)
        if prev is None or curr is None:
            continue

        n_val = _ieee_div(curr.profit, curr.sales) - _ieee_div(prev.profit, prev.sales)

        if n_val != 0 and prev.market_value != 0 and curr.sales != 0 and prev.sales != 0:
            mv_growth = (curr.market_value - prev.market_value) / prev.market_value
            m_val = _ieee_div(mv_growth, n_val)
            if math.isfinite(m_val):
                points.append(MetricPoint(year_prev=y_prev, year_curr=y_curr, n=n_val, m=m_val))
            else:
                logger.debug("%s %d-%d: non-finite M skipped", curr.name, y_prev, y_curr)
        else:
            logger.debug("%s %d-%d: degenerate pair skipped", curr.name, y_prev, y_curr)
    return points


def run_metrics(companies: Companies, selected: Optional[str]) -> MetricRun:
    """Look up `selected` and compute its metrics, timing the pass in milliseconds."""
    if not selected or selected not in companies:
        return MetricRun(firm=selected or "")

    start = time.perf_counter()
    points = compute_metrics(companies[selected])
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    return MetricRun(firm=selected, points=points, elapsed_ms=elapsed_ms)


# ─── Ranking Engine ───────────────────────────────────────────────────────────

def rank_firms(companies: Companies) -> List[RankEntry]:
    """Top firms with analyzable data, by latest-year market value (descending)."""
    if not companies:
        return []

    entries: List[RankEntry] = []
    for name, series in companies.items():
        if not has_valid_data(series):
            continue
        latest = series[max(series)]
        entries.append(RankEntry(name=name, latest_year=latest.year, market_value=latest.market_value))

    # sorted() is stable, so equal market values keep grouping order
    ranked = sorted(entries, key=lambda e: e.market_value, reverse=True)[:TOP_FIRMS_LIMIT]
    logger.debug("Ranked %d of %d valid firms", len(ranked), len(entries))
    return ranked


# ─── Lookup Index ─────────────────────────────────────────────────────────────

def search_firms(names: Sequence[str], query: str) -> List[str]:
    """Case-insensitive substring match over the catalog, first 10 hits."""
    if not query:
        return []
    needle = query.lower()
    hits: List[str] = []
    for name in names:
        if needle in name.lower():
            hits.append(name)
            if len(hits) == SEARCH_LIMIT:
                break
    return hits


# ─── Empty States ─────────────────────────────────────────────────────────────

def resolve_view_state(
    record_count: int, selected: Optional[str], points: Sequence[MetricPoint]
) -> Optional[ViewState]:
    if record_count == 0:
        return "no_data"
    if not selected:
        return "no_selection"
    if not points:
        return "insufficient_data"
    return None
