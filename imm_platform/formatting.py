"""
imm_platform/formatting.py
===========================
Number, duration and year-pair formatting for dashboard display.
"""
from __future__ import annotations
from typing import Optional


def format_market_value(value: Optional[float]) -> str:
    """Thousands-separated, no decimals. e.g. 1234567.8 → 1,234,568"""
    if value is None:
        return "—"
    return f"{value:,.0f}"


def format_duration_ms(elapsed_ms: Optional[float]) -> str:
    if elapsed_ms is None:
        return "—"
    return f"{elapsed_ms:.2f}ms"


def format_metric(value: Optional[float], decimals: int = 4) -> str:
    if value is None:
        return "—"
    return f"{value:,.{decimals}f}"


def year_pair_label(year_prev: int, year_curr: int) -> str:
    return f"{year_prev}-{year_curr}"


def get_quadrant_color(n: float, m: float) -> str:
    """Colour for an (N, M) point: market value outpacing profitability is flagged red."""
    if m > 0 and n > 0:
        return "#10b981"
    if m > 0:
        return "#ef4444"
    if n > 0:
        return "#f59e0b"
    return "#6b7280"
