"""
tests/test_formatting.py
=========================
Display formatting helpers.
"""

from imm_platform.formatting import (
    format_market_value,
    format_duration_ms,
    format_metric,
    year_pair_label,
    get_quadrant_color,
)


class TestFormatting:
    def test_market_value(self):
        assert format_market_value(1234567.8) == "1,234,568"
        assert format_market_value(0) == "0"
        assert format_market_value(None) == "—"

    def test_duration(self):
        assert format_duration_ms(0.123456) == "0.12ms"
        assert format_duration_ms(None) == "—"

    def test_metric(self):
        assert format_metric(6.666666) == "6.6667"
        assert format_metric(-0.03, decimals=2) == "-0.03"
        assert format_metric(None) == "—"

    def test_year_pair_label(self):
        assert year_pair_label(2019, 2020) == "2019-2020"

    def test_quadrant_colors(self):
        assert get_quadrant_color(0.1, 2.0) == "#10b981"
        assert get_quadrant_color(-0.1, 2.0) == "#ef4444"
        assert get_quadrant_color(0.1, -2.0) == "#f59e0b"
        assert get_quadrant_color(-0.1, -2.0) == "#6b7280"
